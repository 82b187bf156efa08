"""Account service orchestrating registration, login, approval and auditing."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from .account import Account, Approver, RequestedRole, Role
from .approval import ApprovalStateMachine, RejectionPolicy
from .authorization import ensure_active, ensure_login_role, parse_role
from .contracts import CreateAccountInput, LoginResult, RegistrationResult
from .errors import (
    IdentityError,
    InvalidCredentials,
    InvalidRole,
    NotFound,
    StorageUnavailable,
    SuperAdminExists,
    Unauthenticated,
    ValidationError,
)
from ..config import Settings, get_settings
from ..metrics import APPROVAL_DECISIONS, LOGIN_ATTEMPTS, REGISTRATIONS
from ..repository import AccountRepository
from ..security.passwords import hash_password, verify_password
from ..security.tokens import issue_access_token, verify_access_token

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Validate the address format and return its trimmed, lower-cased form."""
    try:
        validated = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Please provide a valid email") from exc
    return validated.normalized.lower()


class AccountService:
    """Identity workflows backed by the account store."""

    def __init__(self, repository: AccountRepository, *, settings: Settings | None = None) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._approvals = ApprovalStateMachine(
            repository,
            rejection_policy=RejectionPolicy(self._settings.rejection_policy),
        )

    def register(
        self,
        *,
        name: str,
        email: str,
        password: str,
        requested_role: str = RequestedRole.user.value,
    ) -> RegistrationResult:
        """Create an account; only plain users are approved and handed a token at once."""
        try:
            role = RequestedRole(requested_role)
        except ValueError as exc:
            raise InvalidRole() from exc
        name, email = self._validate_identity(name, email, password)

        account = self._approvals.register(
            name=name,
            email=email,
            password_hash=hash_password(password),
            requested_role=role,
        )
        REGISTRATIONS.labels(requested_role=role.value).inc()
        self._audit(
            account_id=account.account_id,
            event_type="account.registered",
            actor=account.account_id,
            metadata={"email": account.email, "requested_role": role.value},
        )

        if role is RequestedRole.admin:
            logger.info("admin access requested by account %s", account.account_id)
            return RegistrationResult(account=account)

        token, expires_in = issue_access_token(account.account_id, settings=self._settings)
        logger.info("user account %s registered", account.account_id)
        return RegistrationResult(account=account, token=token, expires_in=expires_in)

    def login(self, *, email: str, password: str, role: str) -> LoginResult:
        """Verify credentials and the claimed role, then issue a bearer token.

        Unknown emails, rejected requests and wrong passwords all raise the same
        ``InvalidCredentials`` so callers cannot probe which accounts exist.
        """
        claimed = parse_role(role)
        normalized = email.strip().lower()
        account = self._repository.get_account_by_email(normalized)
        if account is not None and account.is_rejected:
            account = None

        if not verify_password(password, account.password_hash if account else None):
            LOGIN_ATTEMPTS.labels(outcome="invalid_credentials").inc()
            logger.info("failed login for %s", normalized)
            raise InvalidCredentials()

        try:
            ensure_active(account)
            ensure_login_role(account, claimed)
        except IdentityError as exc:
            LOGIN_ATTEMPTS.labels(outcome=type(exc).__name__.lower()).inc()
            raise

        now = datetime.now(timezone.utc)
        self._repository.record_login(account.account_id, now)
        account.last_login = now
        self._audit(
            account_id=account.account_id,
            event_type="account.login",
            actor=account.account_id,
            metadata={"role": claimed.value},
        )
        LOGIN_ATTEMPTS.labels(outcome="success").inc()

        token, expires_in = issue_access_token(account.account_id, settings=self._settings)
        return LoginResult(account=account, token=token, expires_in=expires_in)

    def authenticate(self, token: str) -> Account:
        """Resolve the account behind a bearer token using its current stored state."""
        account_id = verify_access_token(token, settings=self._settings)
        account = self._repository.get_account(account_id)
        if account is None or account.is_rejected:
            raise Unauthenticated("Not authorized, user not found")
        ensure_active(account)
        return account

    def get_account(self, account_id: str) -> Account | None:
        return self._repository.get_account(account_id)

    def list_pending(self) -> list[Account]:
        return self._repository.list_pending()

    def list_approved(self) -> list[tuple[Account, Approver | None]]:
        return self._repository.list_approved()

    def resolve_request(self, account_id: str, *, approve: bool, approver: Account) -> Account | None:
        """Approve or reject a pending admin request on behalf of ``approver``.

        Returns the updated account, or ``None`` when rejection purged it.
        """
        target = self._repository.get_account(account_id)
        if target is None:
            raise NotFound()
        result = self._approvals.transition(target, grant=approve, approver=approver)

        decision = "approved" if approve else "rejected"
        APPROVAL_DECISIONS.labels(decision=decision).inc()
        self._audit(
            account_id=account_id,
            event_type=f"account.{decision}",
            actor=approver.account_id,
            metadata={
                "email": target.email,
                "rejection_policy": None if approve else self._approvals.rejection_policy.value,
            },
        )
        return result

    def provision_super_admin(self, *, name: str, email: str, password: str) -> Account:
        """Create the single super admin account out of band."""
        name, email = self._validate_identity(name, email, password)
        existing = self._repository.find_super_admin()
        if existing is not None:
            raise SuperAdminExists(f"Super admin already exists: {existing.email}")

        account = self._repository.create_account(
            CreateAccountInput(
                name=name,
                email=email,
                password_hash=hash_password(password),
                role=Role.super_admin,
                requested_role=RequestedRole.user,
                is_approved=True,
                approved_at=datetime.now(timezone.utc),
            )
        )
        self._audit(
            account_id=account.account_id,
            event_type="account.super_admin_provisioned",
            actor=None,
            metadata={"email": account.email},
        )
        logger.info("super admin %s provisioned", account.account_id)
        return account

    def _audit(
        self,
        *,
        account_id: str,
        event_type: str,
        actor: str | None,
        metadata: dict,
    ) -> None:
        """Record an audit event for a change that has already committed.

        A failed audit write is logged, not raised.
        """
        try:
            self._repository.write_audit_event(
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata,
            )
        except StorageUnavailable:
            logger.exception("audit event %s for account %s was not recorded", event_type, account_id)

    def _validate_identity(self, name: str, email: str, password: str) -> tuple[str, str]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        normalized = normalize_email(email or "")
        minimum = self._settings.password_min_length
        if len(password or "") < minimum:
            raise ValidationError(f"Password must be at least {minimum} characters")
        return name, normalized
