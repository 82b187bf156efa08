"""Role and status checks shared by login and the per-request gate."""

from __future__ import annotations

from typing import Iterable

from .account import Account, Role
from .errors import AccountDisabled, ApprovalPending, Forbidden, InvalidRole

ADMIN_ROLES: frozenset[Role] = frozenset({Role.admin, Role.super_admin})

# Stored roles allowed to sign in under each claimed role.
_LOGIN_GRANTS: dict[Role, frozenset[Role]] = {
    Role.user: frozenset({Role.user}),
    Role.admin: ADMIN_ROLES,
    Role.super_admin: frozenset({Role.super_admin}),
}

_DENIAL_MESSAGES: dict[Role, str] = {
    Role.user: "Access denied. This account is not a regular user account.",
    Role.admin: "Access denied. You do not have admin privileges.",
    Role.super_admin: "Access denied. Super admin access required.",
}


def parse_role(value: str | Role) -> Role:
    """Coerce a client-supplied role name, raising ``InvalidRole`` when unknown."""
    try:
        return Role(value)
    except ValueError as exc:
        raise InvalidRole() from exc


def ensure_active(account: Account) -> None:
    if not account.is_active:
        raise AccountDisabled()


def ensure_role(account: Account, allowed: Iterable[Role], *, message: str | None = None) -> None:
    """Reject ``account`` unless its current role is one of ``allowed``.

    A pending admin request denied an admin-only resource gets ``ApprovalPending``
    instead of a plain ``Forbidden`` so clients can explain the wait.
    """
    allowed = frozenset(allowed)
    if account.role in allowed:
        return
    if account.is_pending_admin and Role.admin in allowed:
        raise ApprovalPending()
    raise Forbidden(message or f"User role {account.role.value} is not authorized to access this route")


def ensure_login_role(account: Account, claimed: Role) -> None:
    """Apply the sign-in role gate for the role the client claims."""
    ensure_role(account, _LOGIN_GRANTS[claimed], message=_DENIAL_MESSAGES[claimed])
