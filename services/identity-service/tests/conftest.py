from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from identity_service.api import routes
from identity_service.api.errors import install_error_handlers
from identity_service.config import Settings, get_settings
from identity_service.domain.account import Account, Approver, RequestedRole, Role
from identity_service.domain.contracts import CreateAccountInput
from identity_service.domain.errors import DuplicateEmail
from identity_service.domain.service import AccountService


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviours.

    Every method runs under one lock so conditional transitions are atomic, as
    the ``UPDATE ... WHERE <pending>`` statements are in Postgres.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = Lock()
        self._last_created: datetime | None = None
        self.audit_log: list[FakeAuditLogRecord] = []

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now

    def _pending(self, account: Account) -> bool:
        return (
            account.requested_role is RequestedRole.admin
            and not account.is_approved
            and account.rejected_at is None
        )

    def create_account(self, payload: CreateAccountInput) -> Account:
        with self._lock:
            if any(existing.email == payload.email for existing in self._accounts.values()):
                raise DuplicateEmail()
            account = Account(
                account_id=str(uuid.uuid4()),
                name=payload.name,
                email=payload.email,
                password_hash=payload.password_hash,
                role=payload.role,
                requested_role=payload.requested_role,
                is_approved=payload.is_approved,
                approved_at=payload.approved_at,
                is_active=payload.is_active,
                created_at=self._now(),
            )
            self._accounts[account.account_id] = account
            return dataclasses.replace(account)

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return dataclasses.replace(account) if account else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.email == email:
                    return dataclasses.replace(account)
        return None

    def find_super_admin(self) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.role is Role.super_admin:
                    return dataclasses.replace(account)
        return None

    def record_login(self, account_id: str, logged_in_at: datetime) -> None:
        with self._lock:
            if account_id in self._accounts:
                self._accounts[account_id].last_login = logged_in_at

    def approve_pending(self, account_id: str, *, approver_id: str, approved_at: datetime):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or not self._pending(account):
                return None
            account.role = Role.admin
            account.is_approved = True
            account.approved_by = approver_id
            account.approved_at = approved_at
            return dataclasses.replace(account)

    def reject_pending(self, account_id: str, *, rejected_at: datetime):
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or not self._pending(account):
                return None
            account.rejected_at = rejected_at
            account.is_active = False
            return dataclasses.replace(account)

    def delete_pending(self, account_id: str) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or not self._pending(account):
                return False
            del self._accounts[account_id]
            return True

    def list_pending(self) -> list[Account]:
        with self._lock:
            pending = [dataclasses.replace(a) for a in self._accounts.values() if self._pending(a)]
        return sorted(pending, key=lambda a: a.created_at, reverse=True)

    def list_approved(self) -> list[tuple[Account, Approver | None]]:
        with self._lock:
            results = []
            for account in self._accounts.values():
                if not account.is_approved:
                    continue
                approver = self._accounts.get(account.approved_by) if account.approved_by else None
                summary = (
                    Approver(approver.account_id, approver.name, approver.email) if approver else None
                )
                results.append((dataclasses.replace(account), summary))
        return sorted(results, key=lambda pair: pair[0].created_at, reverse=True)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self.audit_log.append(
            FakeAuditLogRecord(
                audit_id=len(self.audit_log) + 1,
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
        )

    def set_active(self, account_id: str, active: bool) -> None:
        """Operator toggle; not part of the repository contract."""
        with self._lock:
            self._accounts[account_id].is_active = active


SUPER_ADMIN_EMAIL = "root@example.com"
SUPER_ADMIN_PASSWORD = "RootPass1"


@pytest.fixture
def settings() -> Settings:
    return dataclasses.replace(get_settings(), password_min_length=6, rejection_policy="delete")


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def service(repository: FakeRepository, settings: Settings) -> AccountService:
    return AccountService(repository, settings=settings)


@pytest.fixture
def super_admin(service: AccountService) -> Account:
    return service.provision_super_admin(
        name="Super Admin", email=SUPER_ADMIN_EMAIL, password=SUPER_ADMIN_PASSWORD
    )


def build_app(service: AccountService) -> FastAPI:
    app = FastAPI()
    install_error_handlers(app)
    app.include_router(routes.router)
    app.state.account_service = service
    return app


@pytest.fixture
def api_client(service: AccountService):
    """Provide a FastAPI test client with isolated state."""
    app = build_app(service)

    original_limiter = routes.rate_limiter
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=100, window_seconds=60)

    with TestClient(app) as client:
        yield client, service

    routes.rate_limiter = original_limiter


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
