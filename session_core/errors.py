"""
Error taxonomy for the Session Core service.

Every error raised by the core carries the HTTP status code and a short
machine readable code, so the API layer can translate it without knowing
which component produced it.
"""
from typing import Any, Dict, Optional


class AuthServiceError(Exception):
    """Base exception for all errors surfaced to callers."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a response body."""
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AuthServiceError):
    """Malformed or missing input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UserExistsError(ValidationError):
    """Registration for an identifier that already exists."""

    code = "USER_EXISTS"


class InvalidCredentialsError(AuthServiceError):
    """Unknown identifier or wrong secret; the two are never distinguished."""

    status_code = 401
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid credentials", locked: bool = False):
        super().__init__(message)
        self.locked = locked

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.locked:
            body["locked"] = True
            body["error"] = (
                "Account temporarily locked due to too many failed attempts. "
                "Please try again later."
            )
        return body


class TokenRejectedError(AuthServiceError):
    """Signature, claims or store mismatch on an access or refresh token."""

    status_code = 403
    code = "TOKEN_REJECTED"

    def __init__(self, message: str = "Invalid or expired token", reason: str = "invalid_token",
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code


class RateLimitedError(AuthServiceError):
    """Request window exceeded."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Too many requests, please try again later", retry_after: int = 1):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retry_after"] = self.retry_after
        return body


class NotFoundError(AuthServiceError):
    """Resource absent."""

    status_code = 404
    code = "NOT_FOUND"


class IdentityNotFoundError(NotFoundError):
    """The identity source has no user for the requested id."""

    def __init__(self, user_id: Any):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InternalError(AuthServiceError):
    """Unexpected failure in a dependency."""


class TokenIssuanceError(InternalError):
    """Signing a token failed."""

    code = "TOKEN_ISSUANCE_ERROR"
