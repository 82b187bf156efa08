"""Utilities for issuing and validating bearer JWTs."""

from __future__ import annotations

import time
from typing import Any

import jwt

from ..config import Settings, get_settings
from ..domain.errors import TokenExpired, TokenInvalid


def issue_access_token(account_id: str, *, settings: Settings | None = None) -> tuple[str, int]:
    """Create a signed JWT binding the bearer to ``account_id``.

    The token deliberately carries no role: authorization always re-reads the
    persisted account, so approvals and deactivations apply on the next request.

    Parameters
    ----------
    account_id:
        Account identifier embedded in the ``sub`` claim.
    settings:
        Optional settings override; defaults to the process settings.

    Returns
    -------
    tuple[str, int]
        The encoded JWT string and its TTL in seconds.
    """

    settings = settings or get_settings()
    now = int(time.time())
    expires_in = settings.jwt_ttl_seconds
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": account_id,
        "iat": now,
        "exp": now + expires_in,
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_in


def decode_access_token(token: str, *, settings: Settings | None = None) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    TokenExpired
        When the ``exp`` claim lies in the past.
    TokenInvalid
        When the token is malformed, signed with another key or by another issuer.
    """

    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "sub", "iss"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except jwt.PyJWTError as exc:
        raise TokenInvalid() from exc


def verify_access_token(token: str, *, settings: Settings | None = None) -> str:
    """Return the account id bound to a valid token."""
    claims = decode_access_token(token, settings=settings)
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenInvalid()
    return subject
