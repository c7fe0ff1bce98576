"""
auth/errors.py -- Error taxonomy for the access-control core.

Every failure the core can report is an AccessError subclass carrying a
machine-readable code, a generic human message, and the HTTP status the
transport layer should use. Only api/main.py turns these into responses;
nothing below the API layer knows about HTTP objects.

Messages are deliberately generic. They never say which credential was wrong,
whether a username exists, or whether a share token was revoked rather than
never issued.
"""

from __future__ import annotations


class AccessError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.detail = detail
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str]:
        return {}


class AuthenticationFailed(AccessError):
    """Missing, invalid or expired credentials.

    status_code is 401 when the caller is simply not authenticated (no token,
    expired token, bad password) and 403 when a token was presented but is
    structurally unacceptable (malformed, wrong algorithm, bad signature).
    """

    status_code = 401
    code = "unauthorized"
    message = "Authentication required."

    def __init__(self, message: str | None = None, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message, code=code)
        if status_code is not None:
            self.status_code = status_code


class Forbidden(AccessError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class RateLimited(AccessError):
    status_code = 429
    code = "rate_limited"
    message = "Too many failed login attempts. Try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ValidationFailed(AccessError):
    """Bad input. fields names the offending fields, never their values."""

    status_code = 400
    code = "validation_error"
    message = "Request validation failed."

    def __init__(self, message: str | None = None, *, fields: list[str] | None = None, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.fields = fields or []


class PasswordTooLong(ValidationFailed):
    message = "Password must be at most 72 bytes."


class WeakPassword(ValidationFailed):
    message = "Password does not meet the strength requirements."


class NotFound(AccessError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class Conflict(AccessError):
    status_code = 409
    code = "conflict"
    message = "Resource already exists."
