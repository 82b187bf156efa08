"""Lifecycle of an account's request for admin privilege.

::

    register(user)  ──► ACTIVE_USER
    register(admin) ──► PENDING_ADMIN ──approve──► ACTIVE_ADMIN
                                      └─reject───► REJECTED (purged or retained)

``SUPER_ADMIN`` accounts are provisioned out of band and never reached through
these transitions. Callers are expected to have authorized the approver already.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from .account import Account, RequestedRole, Role
from .contracts import CreateAccountInput
from .errors import InvalidState, NotFound

if TYPE_CHECKING:
    from ..repository import AccountRepository

logger = logging.getLogger(__name__)


class ApprovalState(str, Enum):
    ACTIVE_USER = "active_user"
    PENDING_ADMIN = "pending_admin"
    ACTIVE_ADMIN = "active_admin"
    SUPER_ADMIN = "super_admin"
    REJECTED = "rejected"


class RejectionPolicy(str, Enum):
    delete = "delete"
    retain = "retain"


def state_of(account: Account) -> ApprovalState:
    """Classify an account into exactly one lifecycle state."""
    if account.role is Role.super_admin:
        return ApprovalState.SUPER_ADMIN
    if account.is_rejected:
        return ApprovalState.REJECTED
    if account.role is Role.admin:
        return ApprovalState.ACTIVE_ADMIN
    if account.is_pending_admin:
        return ApprovalState.PENDING_ADMIN
    return ApprovalState.ACTIVE_USER


class ApprovalStateMachine:
    """Applies registration and elevation transitions against the account store."""

    def __init__(
        self,
        repository: "AccountRepository",
        *,
        rejection_policy: RejectionPolicy = RejectionPolicy.delete,
    ) -> None:
        self._repository = repository
        self._rejection_policy = RejectionPolicy(rejection_policy)

    @property
    def rejection_policy(self) -> RejectionPolicy:
        return self._rejection_policy

    def register(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        requested_role: RequestedRole,
    ) -> Account:
        """Create an account in its initial state for ``requested_role``."""
        now = datetime.now(timezone.utc)
        if requested_role is RequestedRole.user:
            payload = CreateAccountInput(
                name=name,
                email=email,
                password_hash=password_hash,
                role=Role.user,
                requested_role=RequestedRole.user,
                is_approved=True,
                approved_at=now,
            )
        else:
            # elevation is only granted through resolve()
            payload = CreateAccountInput(
                name=name,
                email=email,
                password_hash=password_hash,
                role=Role.user,
                requested_role=RequestedRole.admin,
                is_approved=False,
            )
        return self._repository.create_account(payload)

    def resolve(self, account_id: str, *, grant: bool, approver: Account) -> Account | None:
        """Approve or reject a pending admin request.

        Returns the elevated account, the retained rejected account, or ``None``
        when the rejected account was purged.

        Raises
        ------
        NotFound
            When no account has ``account_id``.
        InvalidState
            When the account is not a pending admin request, including when a
            concurrent approver resolved it first.
        """
        account = self._repository.get_account(account_id)
        if account is None:
            raise NotFound()
        return self.transition(account, grant=grant, approver=approver)

    def transition(self, account: Account, *, grant: bool, approver: Account) -> Account | None:
        """Resolve the request for an already loaded ``account``."""
        self._require_pending(account)

        account_id = account.account_id
        now = datetime.now(timezone.utc)
        if grant:
            updated = self._repository.approve_pending(
                account_id, approver_id=approver.account_id, approved_at=now
            )
            if updated is None:
                self._raise_lost_transition(account_id)
            logger.info("admin request %s approved by %s", account_id, approver.account_id)
            return updated

        if self._rejection_policy is RejectionPolicy.retain:
            rejected = self._repository.reject_pending(account_id, rejected_at=now)
            if rejected is None:
                self._raise_lost_transition(account_id)
            logger.info("admin request %s rejected and retained by %s", account_id, approver.account_id)
            return rejected

        if not self._repository.delete_pending(account_id):
            self._raise_lost_transition(account_id)
        logger.info("admin request %s rejected and purged by %s", account_id, approver.account_id)
        return None

    def _require_pending(self, account: Account) -> None:
        state = state_of(account)
        if state is ApprovalState.PENDING_ADMIN:
            return
        if account.requested_role is not RequestedRole.admin or state is ApprovalState.SUPER_ADMIN:
            raise InvalidState("This user did not request admin access")
        raise InvalidState("This admin request has already been resolved")

    def _raise_lost_transition(self, account_id: str) -> None:
        # the conditional write matched nothing: re-read to report why
        current = self._repository.get_account(account_id)
        if current is None:
            raise NotFound()
        self._require_pending(current)
        raise InvalidState("This admin request has already been resolved")
