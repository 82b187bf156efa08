"""Error taxonomy shared by the identity domain and its HTTP surface.

Each error carries the HTTP status and default message it maps to.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for failures scoped to a single identity request."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(IdentityError):
    status_code = 400
    default_message = "Invalid request"


class InvalidRole(ValidationError):
    default_message = "Invalid role specified"


class InvalidState(IdentityError):
    status_code = 400
    default_message = "This user did not request admin access"


class DuplicateEmail(IdentityError):
    status_code = 400
    default_message = "User already exists"


AlreadyExists = DuplicateEmail


class SuperAdminExists(InvalidState):
    default_message = "A super admin account already exists"


class Unauthenticated(IdentityError):
    status_code = 401
    default_message = "Not authorized"


class TokenInvalid(Unauthenticated):
    default_message = "Not authorized, token invalid"


class TokenExpired(Unauthenticated):
    default_message = "Not authorized, token expired"


class InvalidCredentials(IdentityError):
    status_code = 401
    default_message = "Invalid credentials"


class Forbidden(IdentityError):
    status_code = 403
    default_message = "Access denied"


class ApprovalPending(Forbidden):
    default_message = (
        "Your admin access request is still pending approval from the super administrator."
    )


class AccountDisabled(Forbidden):
    default_message = "Your account has been deactivated."


class NotFound(IdentityError):
    status_code = 404
    default_message = "User not found"


class RateLimited(IdentityError):
    status_code = 429
    default_message = "rate limited"

    def __init__(self, message: str | None = None, *, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StorageUnavailable(IdentityError):
    status_code = 503
    default_message = "Account storage is temporarily unavailable"
