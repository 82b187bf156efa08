"""Argon2id password hashing for the credential store."""

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_hasher = PasswordHasher()

# Verified against when the email is unknown so both login failures cost the same.
_DUMMY_HASH = _hasher.hash("identity-service-timing-equaliser")


def hash_password(password: str) -> str:
    """Return a salted Argon2id hash for ``password``."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check ``password`` against a stored hash.

    Parameters
    ----------
    password:
        Raw password supplied by the client.
    password_hash:
        Stored Argon2 hash, or ``None`` when no account matched. A dummy hash is
        verified in that case and the result is always ``False``.

    Returns
    -------
    bool
        ``True`` only when the password matches. Malformed hashes yield ``False``.
    """
    if password_hash is None:
        try:
            _hasher.verify(_DUMMY_HASH, password)
        except VerificationError:
            pass
        return False
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False
