"""
Error taxonomy for Disapyr.

Every failure leaving the service is reduced to exactly one ErrorCategory.
The category alone decides the HTTP status and the user-facing message; the
underlying detail is only ever written to the server log.

Usage:
    from disapyr.errors import StorageError, error_response
    raise StorageError("insert failed: connection reset")
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    AUTH = "auth"
    VALIDATION = "validation"
    DATABASE = "database"
    SERVER = "server"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"

    @property
    def status_code(self) -> int:
        return CATEGORY_STATUS[self]

    @property
    def message(self) -> str:
        return CATEGORY_MESSAGE[self]


CATEGORY_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.AUTH: 401,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.DATABASE: 500,
    ErrorCategory.SERVER: 500,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.NOT_FOUND: 404,
}

CATEGORY_MESSAGE: dict[ErrorCategory, str] = {
    ErrorCategory.AUTH: "Authentication failed",
    ErrorCategory.VALIDATION: "Invalid request data",
    ErrorCategory.DATABASE: "Database operation failed",
    ErrorCategory.SERVER: "Internal server error",
    ErrorCategory.RATE_LIMIT: "Too many requests",
    ErrorCategory.NOT_FOUND: "Resource not found",
}


def error_response(category: ErrorCategory) -> dict[str, str]:
    """Return the uniform error envelope for a category."""
    return {"error": category.message}


class DisapyrError(Exception):
    """Base class. The message is log detail, never shown to clients."""

    category: ErrorCategory = ErrorCategory.SERVER


class CryptoError(DisapyrError):
    category = ErrorCategory.SERVER


class StorageError(DisapyrError):
    category = ErrorCategory.DATABASE


class NotFoundError(DisapyrError):
    category = ErrorCategory.NOT_FOUND


class AlreadyConsumedError(NotFoundError):
    """The secret existed but has been read. Same external face as NotFoundError."""


class AuthError(DisapyrError):
    category = ErrorCategory.AUTH


class ValidationError(DisapyrError):
    category = ErrorCategory.VALIDATION


class RateLimitedError(DisapyrError):
    category = ErrorCategory.RATE_LIMIT
