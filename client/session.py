"""
client/session.py -- Client-held admin session and login lockout.

A session record proves that this client once presented the admin secret:

    {proof_digest, login_timestamp, token, token_expires_at}

It is valid only while BOTH hold:
  - now - login_timestamp < 24 hours
  - proof_digest equals the digest the server currently reports

Anything else (expired, digest mismatch after a secret rotation, corrupt or
half-written record) clears the record. The passphrase itself is never
stored; token is the short-lived bearer token from POST /api/session.

LoginThrottle refuses further logins for 15 minutes after 5 consecutive
failures. Its counter lives in the same store so it survives restarts.

Layer rule: client/ may import from core/. It never imports api/ or auth/.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from client.storage import KeyValueStore
from core.crypto import constant_time_equals, digest

logger = logging.getLogger("linkshelf.client")

SESSION_KEY = "admin_session"
LOCKOUT_KEY = "login_lockout"

SESSION_TTL_SECONDS = 24 * 60 * 60
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60


@dataclass(frozen=True)
class SessionRecord:
    proof_digest: str
    login_timestamp: float
    token: Optional[str] = None
    token_expires_at: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "SessionRecord":
        """Raises TypeError or ValueError when data is not a well-formed record."""
        if not isinstance(data, dict):
            raise TypeError("session record must be an object")
        proof = data["proof_digest"]
        if not isinstance(proof, str) or len(proof) != 64:
            raise ValueError("malformed proof digest")
        token = data.get("token")
        expires = data.get("token_expires_at")
        return cls(
            proof_digest=proof,
            login_timestamp=float(data["login_timestamp"]),
            token=token if isinstance(token, str) else None,
            token_expires_at=float(expires) if expires is not None else None,
        )


class SessionStore:
    """Persisted admin session. One instance per client profile.

    Usage:
        sessions = SessionStore(KeyValueStore(path))
        sessions.login(passphrase, server_digest, token=token, token_expires_at=exp)
        sessions.is_valid(server_digest)
        sessions.logout()
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float] = time.time,
        ttl: float = SESSION_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self.ttl = ttl

    def login(
        self,
        passphrase: str,
        server_digest: str,
        token: Optional[str] = None,
        token_expires_at: Optional[float] = None,
    ) -> bool:
        """Record a session when digest(passphrase) matches server_digest."""
        if not constant_time_equals(digest(passphrase), server_digest):
            self.logout()
            return False
        record = SessionRecord(
            proof_digest=server_digest,
            login_timestamp=self._clock(),
            token=token,
            token_expires_at=token_expires_at,
        )
        self._store.set(SESSION_KEY, record.to_dict())
        return True

    def current(self) -> Optional[SessionRecord]:
        """The stored record if it parses and is within the 24 hour window."""
        raw = self._store.get(SESSION_KEY)
        if raw is None:
            return None
        try:
            record = SessionRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Stored admin session is malformed; clearing it")
            self.logout()
            return None
        elapsed = self._clock() - record.login_timestamp
        if elapsed < 0 or elapsed >= self.ttl:
            self.logout()
            return None
        return record

    def is_valid(self, server_digest: str) -> bool:
        record = self.current()
        if record is None:
            return False
        if not constant_time_equals(record.proof_digest, server_digest):
            logger.info("Server secret changed since login; clearing session")
            self.logout()
            return False
        return True

    def token(self) -> Optional[str]:
        """Bearer token of the current session, or None once either clock has run out."""
        record = self.current()
        if record is None or not record.token:
            return None
        if record.token_expires_at is not None and self._clock() >= record.token_expires_at:
            return None
        return record.token

    def logout(self) -> None:
        self._store.remove(SESSION_KEY)


class LoginThrottle:
    """Client-side lockout after repeated failed logins."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float] = time.time,
        max_attempts: int = MAX_LOGIN_ATTEMPTS,
        lockout_seconds: float = LOCKOUT_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds

    def _state(self) -> dict[str, float]:
        raw = self._store.get(LOCKOUT_KEY)
        if not isinstance(raw, dict):
            return {"attempts": 0, "locked_until": 0}
        try:
            return {"attempts": int(raw.get("attempts", 0)), "locked_until": float(raw.get("locked_until", 0))}
        except (TypeError, ValueError):
            return {"attempts": 0, "locked_until": 0}

    def locked_for(self) -> int:
        """Seconds until logins are allowed again; 0 when not locked."""
        remaining = self._state()["locked_until"] - self._clock()
        return max(0, int(remaining + 0.999))

    def record_failure(self) -> int:
        """Count a failed login. Returns attempts left before lockout (0 = now locked)."""
        state = self._state()
        state["attempts"] += 1
        if state["attempts"] >= self.max_attempts:
            state = {"attempts": 0, "locked_until": self._clock() + self.lockout_seconds}
            self._store.set(LOCKOUT_KEY, state)
            logger.warning("Too many failed logins; locked for %d minutes", self.lockout_seconds // 60)
            return 0
        self._store.set(LOCKOUT_KEY, state)
        return self.max_attempts - int(state["attempts"])

    def reset(self) -> None:
        self._store.remove(LOCKOUT_KEY)
