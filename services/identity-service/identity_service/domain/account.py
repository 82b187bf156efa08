from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Effective privilege tier of an account."""

    user = "user"
    admin = "admin"
    super_admin = "super_admin"


class RequestedRole(str, Enum):
    """Privilege an account asked for at registration."""

    user = "user"
    admin = "admin"


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered identity and its elevation status."""

    account_id: str
    name: str
    email: str
    password_hash: str
    role: Role
    requested_role: RequestedRole
    is_approved: bool
    created_at: datetime
    approved_by: str | None = None
    approved_at: datetime | None = None
    is_active: bool = True
    last_login: datetime | None = None
    rejected_at: datetime | None = None

    @property
    def is_pending_admin(self) -> bool:
        return (
            self.requested_role is RequestedRole.admin
            and not self.is_approved
            and self.rejected_at is None
        )

    @property
    def is_rejected(self) -> bool:
        return self.rejected_at is not None


@dataclass(slots=True)
class Approver:
    """Public identity of the account that approved another one."""

    account_id: str
    name: str
    email: str
