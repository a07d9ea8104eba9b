"""
Identity - Error Taxonomy

Expected, user-facing outcomes of the identity operations are raised as
IdentityError subclasses. Each carries a stable machine code and the HTTP
status the API layer should answer with.

Infrastructure failures (store down, clock/random source broken) live in a
separate hierarchy so they are never confused with the taxonomy above.
"""

from typing import Any, Dict, Optional


class IdentityError(Exception):
    """Base class for expected identity failures."""

    code: str = "identity_error"
    http_status: int = 400
    default_message: str = "Identity operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ValidationError(IdentityError):
    code = "validation_error"
    http_status = 400
    default_message = "Invalid request"

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"{field} is required")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["parameter"] = self.field
        return data


class DuplicateEmailError(IdentityError):
    code = "duplicate_email"
    http_status = 409
    default_message = "This email is already registered. Please try signing in instead."


class InvalidCredentialsError(IdentityError):
    code = "invalid_credentials"
    http_status = 401
    default_message = "Invalid email or password"


class EmailNotConfirmedError(IdentityError):
    code = "email_not_confirmed"
    http_status = 403
    default_message = "Please verify your email before logging in"


class PendingApprovalError(IdentityError):
    code = "pending_approval"
    http_status = 403

    def __init__(self, status: str, message: Optional[str] = None):
        self.status = status
        if message is None:
            if status == "rejected":
                message = "Your account registration was not approved."
            else:
                message = ("Your account is pending approval. "
                           "Please wait for admin approval before logging in.")
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class AlreadyVerifiedError(IdentityError):
    code = "already_verified"
    http_status = 409
    default_message = "Email has already been verified. Please log in to continue."


class TokenExpiredError(IdentityError):
    code = "token_expired"
    http_status = 401
    default_message = "Token has expired"


class InvalidTokenError(IdentityError):
    code = "invalid_token"
    http_status = 401
    default_message = "Invalid or expired token"


class InvalidCurrentPasswordError(IdentityError):
    code = "invalid_current_password"
    http_status = 400
    default_message = "Current password is incorrect"


class RecordNotFoundError(IdentityError):
    code = "record_not_found"
    http_status = 404
    default_message = "Record not found"


# ==================== INFRASTRUCTURE ====================

class InfrastructureError(Exception):
    """Unexpected failure of a backing collaborator."""

    code = "service_unavailable"
    http_status = 503


class StoreUnavailableError(InfrastructureError):
    """The record store could not complete an operation."""


def error_response(exc: Exception) -> Dict[str, Any]:
    """
    Build the structured error body for an identity failure.

    Taxonomy errors expose their own message; infrastructure and unknown
    errors are collapsed into a generic failure so internals never leak.
    """
    if isinstance(exc, IdentityError):
        return exc.to_dict()
    if isinstance(exc, InfrastructureError):
        return {
            "error": InfrastructureError.code,
            "message": "The service is temporarily unavailable. Please try again later.",
        }
    return {"error": "internal_error", "message": "Internal server error"}


def error_status(exc: Exception) -> int:
    """HTTP status to answer with for an identity failure."""
    if isinstance(exc, (IdentityError, InfrastructureError)):
        return exc.http_status
    return 500
