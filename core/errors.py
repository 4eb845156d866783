"""
core/errors.py -- Exception hierarchy for linkshelf.

Every domain error derives from LinkshelfError so callers can catch the whole
family with one clause. Route handlers translate these into HTTP responses at
the boundary; nothing below api/ knows about status codes.

Layer rule: core/ is the kernel. This module imports nothing from the project.
"""

from __future__ import annotations


class LinkshelfError(Exception):
    """Base exception for all linkshelf errors."""


class ConfigurationError(LinkshelfError):
    """Required server configuration is missing (e.g. ADMIN_SECRET unset)."""


class AuthenticationError(LinkshelfError):
    """A credential was missing or did not match.

    reason is one of the authorizer rejection codes ("missing-credential",
    "invalid-credential", ...) so the client can branch without parsing text.
    """

    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason


class RateLimitError(LinkshelfError):
    """Too many requests for this client key. Retry after retry_after seconds."""

    def __init__(self, retry_after: int, message: str = "Too many requests.") -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ValidationError(LinkshelfError):
    """Payload rejected. message is safe to show to the admin who sent it."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class PersistenceError(LinkshelfError):
    """The catalog could not be written to (or read from) durable storage."""
