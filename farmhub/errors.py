"""
farmhub.errors — Domain Exceptions
===================================

Services raise these; the API layer turns them into ``HTTPException``
with ``detail={"error": code, "message": message, ...}``.
"""

from __future__ import annotations


class FarmhubError(Exception):
    """Base class for every error a service raises on purpose."""

    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: str | None = None, **extra) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra

    def to_detail(self) -> dict:
        return {"error": self.code, "message": self.message, **self.extra}


class NotFoundError(FarmhubError):
    status_code = 404
    default_code = "not_found"


class ValidationError(FarmhubError):
    status_code = 400
    default_code = "validation_error"


class PermissionDeniedError(FarmhubError):
    status_code = 403
    default_code = "forbidden"


class ConflictError(FarmhubError):
    status_code = 409
    default_code = "conflict"


class RateLimitedError(FarmhubError):
    """Raised when a caller must wait; ``retry_after`` is in seconds."""

    status_code = 429
    default_code = "rate_limited"

    def __init__(self, message: str, code: str | None = None, *, retry_after: int, **extra) -> None:
        super().__init__(message, code, retry_after=retry_after, **extra)
        self.retry_after = retry_after
