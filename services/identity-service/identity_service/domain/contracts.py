"""Domain-level request and result contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .account import Account, RequestedRole, Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated, already-hashed inputs required to persist a new account."""

    name: str
    email: str
    password_hash: str
    role: Role
    requested_role: RequestedRole
    is_approved: bool
    approved_at: datetime | None = None
    is_active: bool = True


@dataclass(slots=True)
class RegistrationResult:
    """Outcome of a registration: a token only for auto-approved accounts."""

    account: Account
    token: str | None = None
    expires_in: int | None = None

    @property
    def requires_approval(self) -> bool:
        return self.token is None


@dataclass(slots=True)
class LoginResult:
    """Authenticated account together with its freshly issued bearer token."""

    account: Account
    token: str
    expires_in: int
