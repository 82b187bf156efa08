"""HTTP route definitions for the identity service."""

from __future__ import annotations

import logging
from datetime import datetime

import redis
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel

from ..config import get_settings
from ..domain.account import Account, Approver, RequestedRole, Role
from ..domain.errors import NotFound, RateLimited
from ..domain.service import AccountService
from ..security.rate_limiter import SlidingWindowRateLimiter
from ..security.redis_rate_limiter import RedisSlidingWindowRateLimiter
from .dependencies import get_current_account, get_service, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApproverResponse(_CamelModel):
    """Public identity of the approving account."""

    id: str
    name: str
    email: str

    @classmethod
    def from_domain(cls, approver: Approver) -> "ApproverResponse":
        return cls(id=approver.account_id, name=approver.name, email=approver.email)


class AccountResponse(_CamelModel):
    """Serialised `Account` without its password hash."""

    id: str
    name: str
    email: str
    role: Role
    requested_role: RequestedRole
    is_approved: bool
    is_active: bool
    approved_by: ApproverResponse | str | None = None
    approved_at: datetime | None = None
    last_login: datetime | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, account: Account, approver: Approver | None = None) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            id=account.account_id,
            name=account.name,
            email=account.email,
            role=account.role,
            requested_role=account.requested_role,
            is_approved=account.is_approved,
            is_active=account.is_active,
            approved_by=ApproverResponse.from_domain(approver) if approver else account.approved_by,
            approved_at=account.approved_at,
            last_login=account.last_login,
            created_at=account.created_at,
        )


class RegisterRequest(_CamelModel):
    """Payload accepted when registering a new account."""

    name: str
    email: EmailStr
    password: str
    requested_role: str = RequestedRole.user.value


class RegisterResponse(_CamelModel):
    success: bool = True
    message: str
    token: str | None = None
    expires_in: int | None = None
    requires_approval: bool = False
    user: AccountResponse


class LoginRequest(_CamelModel):
    """Credentials plus the role the client is signing in as."""

    email: EmailStr
    password: str
    role: str


class LoginResponse(_CamelModel):
    success: bool = True
    token: str
    expires_in: int
    user: AccountResponse


class MeResponse(_CamelModel):
    success: bool = True
    user: AccountResponse


class AccountListResponse(_CamelModel):
    success: bool = True
    users: list[AccountResponse]
    count: int


class ApproveRequest(_CamelModel):
    approve: bool


class ApproveResponse(_CamelModel):
    success: bool = True
    message: str
    user: AccountResponse | None = None


settings = get_settings()


def _build_rate_limiter() -> SlidingWindowRateLimiter | RedisSlidingWindowRateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except redis.RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


rate_limiter = _build_rate_limiter()


def _enforce_rate_limit(key: str) -> None:
    decision = rate_limiter.hit(key)
    if not decision.allowed:
        raise RateLimited(retry_after=decision.retry_after)


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    service: AccountService = Depends(get_service),
) -> RegisterResponse:
    """Register a user (approved at once) or file an admin access request."""
    _enforce_rate_limit(f"register:{_client_address(request)}")
    result = service.register(
        name=payload.name,
        email=payload.email,
        password=payload.password,
        requested_role=payload.requested_role,
    )
    if result.requires_approval:
        return RegisterResponse(
            message=(
                "Admin registration request submitted! Please wait for super admin "
                "approval before logging in."
            ),
            requires_approval=True,
            user=AccountResponse.from_domain(result.account),
        )
    return RegisterResponse(
        message="User registration successful!",
        token=result.token,
        expires_in=result.expires_in,
        user=AccountResponse.from_domain(result.account),
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_service),
) -> LoginResponse:
    """Authenticate credentials for the claimed role and issue a bearer token."""
    rate_key = f"login:{payload.email.strip().lower()}"
    _enforce_rate_limit(rate_key)
    result = service.login(email=payload.email, password=payload.password, role=payload.role)
    rate_limiter.reset(rate_key)
    return LoginResponse(
        token=result.token,
        expires_in=result.expires_in,
        user=AccountResponse.from_domain(result.account),
    )


@router.get("/me", response_model=MeResponse)
def me(account: Account = Depends(get_current_account)) -> MeResponse:
    return MeResponse(user=AccountResponse.from_domain(account))


@router.get("/pending-users", response_model=AccountListResponse)
def list_pending_users(
    _: Account = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    """List admin access requests awaiting a decision, newest first."""
    users = [AccountResponse.from_domain(account) for account in service.list_pending()]
    return AccountListResponse(users=users, count=len(users))


@router.put("/approve-user/{account_id}", response_model=ApproveResponse)
def approve_user(
    account_id: str,
    payload: ApproveRequest,
    approver: Account = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> ApproveResponse:
    """Approve or reject a pending admin access request."""
    updated = service.resolve_request(account_id, approve=payload.approve, approver=approver)
    if payload.approve:
        if updated is None:
            raise NotFound()
        return ApproveResponse(
            message="Admin access approved successfully. User can now login as admin.",
            user=AccountResponse.from_domain(updated),
        )
    if updated is None:
        return ApproveResponse(message="Admin request rejected and account removed.")
    return ApproveResponse(
        message="Admin request rejected.",
        user=AccountResponse.from_domain(updated),
    )


@router.get("/users", response_model=AccountListResponse)
def list_users(
    _: Account = Depends(require_admin),
    service: AccountService = Depends(get_service),
) -> AccountListResponse:
    """List approved accounts with their approver resolved."""
    users = [
        AccountResponse.from_domain(account, approver)
        for account, approver in service.list_approved()
    ]
    return AccountListResponse(users=users, count=len(users))
