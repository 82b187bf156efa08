"""Per-request authorization gate for protected routes."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..domain.account import Account, Role
from ..domain.authorization import ADMIN_ROLES, ensure_role
from ..domain.errors import Unauthenticated
from ..domain.service import AccountService

bearer_scheme = HTTPBearer(auto_error=False)


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_current_account(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AccountService = Depends(get_service),
) -> Account:
    """Authenticate the bearer token and load the account's current stored state."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Not authorized, no token")
    return service.authenticate(credentials.credentials)


def require_roles(*roles: Role) -> Callable[..., Account]:
    """Build a dependency admitting only accounts whose current role is in ``roles``."""
    allowed = frozenset(roles)

    def dependency(account: Account = Depends(get_current_account)) -> Account:
        ensure_role(account, allowed)
        return account

    return dependency


require_admin = require_roles(*ADMIN_ROLES)
