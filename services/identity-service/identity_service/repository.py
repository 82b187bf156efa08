"""Database repository for identity/account data."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

import psycopg
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool, PoolTimeout

from .domain.account import Account, Approver, RequestedRole, Role
from .domain.contracts import CreateAccountInput
from .domain.errors import DuplicateEmail, StorageUnavailable

logger = logging.getLogger(__name__)

_COLUMNS = (
    "account_id",
    "name",
    "email",
    "password_hash",
    "role",
    "requested_role",
    "is_approved",
    "approved_by",
    "approved_at",
    "is_active",
    "last_login",
    "created_at",
    "rejected_at",
)
_SELECT = ", ".join(_COLUMNS)
_SELECT_ALIASED = ", ".join(f"a.{column}" for column in _COLUMNS)

# Rows still awaiting a decision; every transition is conditioned on this at write time.
_PENDING = "requested_role = 'admin' AND is_approved = FALSE AND rejected_at IS NULL"


def build_pool(
    database_url: str,
    *,
    timeout: float,
    statement_timeout_ms: int,
    min_size: int = 1,
    max_size: int = 10,
) -> ConnectionPool:
    """Create an unopened pool whose waits and statements are both bounded."""
    return ConnectionPool(
        database_url,
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        kwargs={"options": f"-c statement_timeout={statement_timeout_ms}"},
        open=False,
    )


class AccountRepository:
    """Postgres-backed account persistence with conditional state transitions."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        """Yield a cursor, surfacing pool exhaustion and outages as ``StorageUnavailable``."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
        except PoolTimeout as exc:
            logger.error("account store connection wait timed out: %s", exc)
            raise StorageUnavailable() from exc
        except psycopg.OperationalError as exc:
            logger.error("account store unavailable: %s", exc)
            raise StorageUnavailable() from exc

    def create_account(self, payload: CreateAccountInput) -> Account:
        """Insert a new account; the unique email index rejects duplicates atomically."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO accounts (
                        account_id, name, email, password_hash, role, requested_role,
                        is_approved, approved_at, is_active, created_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_SELECT}
                    """,
                    (
                        account_id,
                        payload.name,
                        payload.email,
                        payload.password_hash,
                        payload.role.value,
                        payload.requested_role.value,
                        payload.is_approved,
                        payload.approved_at,
                        payload.is_active,
                        now,
                    ),
                )
                row = cur.fetchone()
                cur.connection.commit()
        except UniqueViolation as exc:
            raise DuplicateEmail() from exc
        return self._map_record(row)

    def get_account(self, account_id: str) -> Account | None:
        return self._fetch_one(f"SELECT {_SELECT} FROM accounts WHERE account_id = %s", (account_id,))

    def get_account_by_email(self, email: str) -> Account | None:
        """Look up an account by its already-normalised email."""
        return self._fetch_one(f"SELECT {_SELECT} FROM accounts WHERE email = %s", (email,))

    def find_super_admin(self) -> Account | None:
        return self._fetch_one(
            f"SELECT {_SELECT} FROM accounts WHERE role = %s ORDER BY created_at LIMIT 1",
            (Role.super_admin.value,),
        )

    def record_login(self, account_id: str, logged_in_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET last_login = %s WHERE account_id = %s",
                (logged_in_at, account_id),
            )
            cur.connection.commit()

    def approve_pending(
        self, account_id: str, *, approver_id: str, approved_at: datetime
    ) -> Account | None:
        """Elevate a pending admin request; ``None`` if it was no longer pending."""
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE accounts
                SET role = %s, is_approved = TRUE, approved_by = %s, approved_at = %s
                WHERE account_id = %s AND {_PENDING}
                RETURNING {_SELECT}
                """,
                (Role.admin.value, approver_id, approved_at, account_id),
            )
            row = cur.fetchone()
            cur.connection.commit()
        return self._map_record(row) if row else None

    def reject_pending(self, account_id: str, *, rejected_at: datetime) -> Account | None:
        """Mark a pending request rejected and disable it, keeping the row."""
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE accounts
                SET rejected_at = %s, is_active = FALSE
                WHERE account_id = %s AND {_PENDING}
                RETURNING {_SELECT}
                """,
                (rejected_at, account_id),
            )
            row = cur.fetchone()
            cur.connection.commit()
        return self._map_record(row) if row else None

    def delete_pending(self, account_id: str) -> bool:
        """Purge a pending request; ``False`` if it was no longer pending."""
        with self._cursor() as cur:
            cur.execute(
                f"DELETE FROM accounts WHERE account_id = %s AND {_PENDING} RETURNING account_id",
                (account_id,),
            )
            row = cur.fetchone()
            cur.connection.commit()
        return row is not None

    def list_pending(self) -> list[Account]:
        """Return pending admin requests, newest first."""
        with self._cursor() as cur:
            cur.execute(f"SELECT {_SELECT} FROM accounts WHERE {_PENDING} ORDER BY created_at DESC")
            rows = cur.fetchall()
        return [self._map_record(row) for row in rows]

    def list_approved(self) -> list[tuple[Account, Approver | None]]:
        """Return approved accounts paired with the account that approved them."""
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_SELECT_ALIASED}, p.account_id, p.name, p.email
                FROM accounts a
                LEFT JOIN accounts p ON p.account_id = a.approved_by
                WHERE a.is_approved = TRUE
                ORDER BY a.created_at DESC
                """
            )
            rows = cur.fetchall()
        width = len(_COLUMNS)
        results: list[tuple[Account, Approver | None]] = []
        for row in rows:
            approver_row = row[width:]
            approver = Approver(*approver_row) if approver_row[0] is not None else None
            results.append((self._map_record(row[:width]), approver))
        return results

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry; rows outlive purged accounts."""
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO identity_audit_log (account_id, event_type, actor, metadata)
                VALUES (%s, %s, %s, %s)
                """,
                (account_id, event_type, actor, Json(metadata or {})),
            )
            cur.connection.commit()

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> Account | None:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            name=row[1],
            email=row[2],
            password_hash=row[3],
            role=Role(row[4]),
            requested_role=RequestedRole(row[5]),
            is_approved=row[6],
            approved_by=row[7],
            approved_at=row[8],
            is_active=row[9],
            last_login=row[10],
            created_at=row[11],
            rejected_at=row[12],
        )
