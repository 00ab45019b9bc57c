"""Custom exceptions and error handling for the Bookmark Bureau API."""

import enum
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status


class InvalidTokenReason(str, enum.Enum):
    """Why a bearer token was rejected."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    MISSING_JTI = "missing_jti"
    REVOKED = "revoked"


class BlockScope(str, enum.Enum):
    """Which dimension of a login attempt is blocked."""

    USERNAME = "username"
    ADDRESS = "address"


class ConfigurationError(ValueError):
    """Raised when a service is constructed with unusable settings."""


class BookmarkBureauException(HTTPException):
    """Base exception for the Bookmark Bureau API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def to_content(self) -> dict:
        """Body rendered by the API exception handler."""
        return {"detail": self.detail, "error_code": self.error_code}


# Authentication Errors (401)
class InvalidCredentialsError(BookmarkBureauException):
    """Raised when login credentials are invalid."""

    def __init__(self, detail: str = "Invalid credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidTokenError(BookmarkBureauException):
    """Raised when a bearer token is malformed, expired, or revoked."""

    def __init__(self, reason: InvalidTokenReason, detail: str | None = None):
        self.reason = reason
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail or _TOKEN_ERROR_MESSAGES[reason],
            error_code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )

    def to_content(self) -> dict:
        content = super().to_content()
        content["reason"] = self.reason.value
        return content


_TOKEN_ERROR_MESSAGES = {
    InvalidTokenReason.MALFORMED: "Invalid token",
    InvalidTokenReason.EXPIRED: "Token has expired",
    InvalidTokenReason.MISSING_JTI: "CLI token missing required JTI claim",
    InvalidTokenReason.REVOKED: "CLI token has been revoked",
}


# Validation Errors (400)
class WeakPasswordError(BookmarkBureauException):
    """Raised when a new password does not satisfy the strength check."""

    def __init__(self, detail: str = "Password does not meet strength requirements"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="WEAK_PASSWORD",
        )


# Resource Errors (404, 409)
class NotFoundError(BookmarkBureauException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(BookmarkBureauException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


# Rate Limiting (429)
class RateLimitExceededError(BookmarkBureauException):
    """Raised when a login is attempted against an active block."""

    def __init__(
        self,
        scope: BlockScope,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ):
        self.scope = scope
        self.expires_at = expires_at
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=(
                "Rate limit exceeded. Too many failed login attempts. "
                f"Try again after {expires_at.strftime('%Y-%m-%d %H:%M:%S')}."
            ),
            error_code="RATE_LIMIT_EXCEEDED",
            headers={"Retry-After": str(self.retry_after_seconds(now))},
        )

    def retry_after_seconds(self, now: Optional[datetime] = None) -> int:
        """Seconds until the block lifts, never negative."""
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_content(self) -> dict:
        content = super().to_content()
        content["scope"] = self.scope.value
        content["expires_at"] = self.expires_at.isoformat()
        return content


# Server Errors (503)
class StorageError(BookmarkBureauException):
    """Raised when the token registry or rate limit store cannot be reached."""

    def __init__(self, detail: str = "Authentication storage is unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="STORAGE_ERROR",
        )
