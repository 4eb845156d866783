"""
auth/authorizer.py -- Decide whether a catalog mutation may proceed.

Checks run in a fixed order and stop at the first failure:

  a. IP allow-list (IP_ALLOWLIST)        -> forbidden-ip          403
  b. IP flagged by the rate limiter      -> suspicious-ip         429
  c. ADMIN_SECRET configured             -> server-misconfigured  500
  d. Authorization: Bearer <token>       -> missing-credential    401
     token longer than MAX_TOKEN_LENGTH  -> invalid-credential    400
  e. digest(token) == digest(secret)     -> invalid-credential    403 (+ delay)
     or token is a live session token

Step (d) bounds the token length BEFORE hashing so an attacker cannot make
us hash megabytes per request. Step (e) compares fixed-length digests with
core.crypto.constant_time_equals, and only this failure asks the caller to
wait a random 100-200 ms before answering [C1].

Every decision is written to the audit log with ip and path. The token, the
secret and their digests are never logged.

Pattern: explicitly owned component. One RequestAuthorizer is built in the
app lifespan from the Settings, RateLimiter and AuditLogger instances and
stored on app.state; tests build their own.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Optional

from auth.models import AuthDecision, Rejection
from auth.tokens import decode_session_token, looks_like_session_token
from core.crypto import constant_time_equals, digest

if TYPE_CHECKING:
    from core.audit import AuditLogger
    from core.config import Settings
    from core.ratelimit import RateLimiter

logger = logging.getLogger("linkshelf.auth")

_BEARER_PREFIX = "bearer "


def ip_allowed(ip: str, allowlist: list[str]) -> bool:
    """True when allowlist is empty or ip matches an entry.

    Entries are exact addresses or contain a single "*" standing for any run
    of characters ("10.0.0.*", "192.168.*.1").
    """
    if not allowlist:
        return True
    for entry in allowlist:
        if entry == ip:
            return True
        if entry.count("*") == 1:
            prefix, suffix = entry.split("*")
            if len(ip) >= len(prefix) + len(suffix) and ip.startswith(prefix) and ip.endswith(suffix):
                return True
    return False


class RequestAuthorizer:
    def __init__(self, settings: Settings, rate_limiter: RateLimiter, audit: AuditLogger) -> None:
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._audit = audit
        self._allowlist = settings.ip_allowlist_entries
        # Hashed once; the secret is immutable for the process lifetime.
        self._secret_digest: Optional[str] = digest(settings.admin_secret) if settings.secret_configured else None

    @property
    def secret_digest(self) -> Optional[str]:
        return self._secret_digest

    def failure_delay(self) -> float:
        """Seconds to wait before answering a credential mismatch."""
        low = self._settings.auth_failure_delay_min_ms
        high = self._settings.auth_failure_delay_max_ms
        return random.uniform(low, high) / 1000

    # ------------------------------------------------------------------
    # Bearer requests
    # ------------------------------------------------------------------

    def check(self, ip: str, path: str, authorization: Optional[str]) -> AuthDecision:
        """Run checks a-e against one request's client IP and Authorization header."""
        self._audit.log("ADMIN_API_REQUEST", {"path": path}, ip=ip)
        decision = self._precheck(ip, path)
        if decision is not None:
            return decision

        if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
            self._audit.log("ADMIN_AUTH_MISSING", {"path": path}, ip=ip)
            return AuthDecision.reject(Rejection.missing_credential, "Authorization header is required.")
        token = authorization[len(_BEARER_PREFIX) :].strip()
        if not token:
            self._audit.log("ADMIN_AUTH_MISSING", {"path": path}, ip=ip)
            return AuthDecision.reject(Rejection.missing_credential, "Authorization header is required.")

        oversized = self._reject_oversized(ip, path, token)
        if oversized is not None:
            return oversized

        if constant_time_equals(digest(token), self._secret_digest):
            self._audit.log("ADMIN_AUTH_SUCCESS", {"path": path, "via": "secret"}, ip=ip)
            return AuthDecision.allow("secret")
        if looks_like_session_token(token) and decode_session_token(self._settings, token) is not None:
            self._audit.log("ADMIN_AUTH_SUCCESS", {"path": path, "via": "session"}, ip=ip)
            return AuthDecision.allow("session")

        self._audit.log("ADMIN_AUTH_FAILED", {"path": path, "reason": "credential mismatch"}, ip=ip)
        return AuthDecision.reject(Rejection.invalid_credential, "Invalid authorization token.", delay=True)

    # ------------------------------------------------------------------
    # Passphrase login (POST /api/session)
    # ------------------------------------------------------------------

    def verify_passphrase(self, ip: str, path: str, passphrase: str) -> AuthDecision:
        """Checks a-c, then a constant-time comparison of digest(passphrase) with the secret digest."""
        decision = self._precheck(ip, path)
        if decision is not None:
            return decision

        oversized = self._reject_oversized(ip, path, passphrase)
        if oversized is not None:
            return oversized

        if constant_time_equals(digest(passphrase), self._secret_digest):
            self._audit.log("ADMIN_LOGIN_SUCCESS", {"path": path}, ip=ip)
            return AuthDecision.allow("secret")
        self._audit.log("ADMIN_LOGIN_FAILED", {"path": path}, ip=ip)
        return AuthDecision.reject(Rejection.invalid_credential, "Invalid passphrase.", status_code=401, delay=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _precheck(self, ip: str, path: str) -> Optional[AuthDecision]:
        if not ip_allowed(ip, self._allowlist):
            self._audit.log("ADMIN_ACCESS_DENIED_IP", {"path": path}, ip=ip)
            return AuthDecision.reject(Rejection.forbidden_ip, "IP address is not in the allow-list.")
        if self._rate_limiter.is_suspicious(ip):
            self._audit.log("SUSPICIOUS_IP_ATTEMPT", {"path": path}, ip=ip)
            return AuthDecision.reject(Rejection.suspicious_ip, "Request refused. Try again later.")
        if self._secret_digest is None:
            logger.error("ADMIN_SECRET is not configured; rejecting %s from %s", path, ip)
            self._audit.log("ADMIN_AUTH_MISCONFIGURED", {"path": path}, ip=ip)
            return AuthDecision.reject(
                Rejection.server_misconfigured,
                "The server has no admin secret configured. Set ADMIN_SECRET.",
            )
        return None

    def _reject_oversized(self, ip: str, path: str, credential: str) -> Optional[AuthDecision]:
        if len(credential) <= self._settings.max_token_length:
            return None
        self._audit.log("ADMIN_AUTH_FAILED", {"path": path, "reason": "credential too long"}, ip=ip)
        return AuthDecision.reject(Rejection.invalid_credential, "Invalid authorization token.", status_code=400)
