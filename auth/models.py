"""
auth/models.py -- Authorization outcome types.

Pattern: Data class (pure data container, zero logic). The authorizer decides;
auth/dependencies.py turns a decision into an HTTP response.

Layer rule: no imports from api/, catalog/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Rejection(str, Enum):
    """Why a mutating request was refused. Values are the wire error codes."""

    forbidden_ip = "forbidden-ip"
    suspicious_ip = "suspicious-ip"
    server_misconfigured = "server-misconfigured"
    missing_credential = "missing-credential"
    invalid_credential = "invalid-credential"


# HTTP status returned for each rejection. An oversized token is reported as
# invalid-credential with 400 (see RequestAuthorizer.check).
REJECTION_STATUS: dict[Rejection, int] = {
    Rejection.forbidden_ip: 403,
    Rejection.suspicious_ip: 429,
    Rejection.server_misconfigured: 500,
    Rejection.missing_credential: 401,
    Rejection.invalid_credential: 403,
}


@dataclass(frozen=True)
class AuthDecision:
    """Result of RequestAuthorizer.check().

    delay is True only for a credential mismatch: the caller must wait a
    randomized interval before responding.
    via is "secret" or "session" on success, telling the audit trail which
    kind of bearer credential was presented.
    """

    allowed: bool
    reason: Optional[Rejection] = None
    status_code: int = 200
    message: str = ""
    delay: bool = False
    via: Optional[str] = None

    @classmethod
    def allow(cls, via: str) -> "AuthDecision":
        return cls(allowed=True, via=via)

    @classmethod
    def reject(cls, reason: Rejection, message: str, status_code: Optional[int] = None, delay: bool = False) -> "AuthDecision":
        return cls(
            allowed=False,
            reason=reason,
            status_code=status_code or REJECTION_STATUS[reason],
            message=message,
            delay=delay,
        )
