"""
core/ratelimit.py -- Per-client fixed-window rate limiter with abuse signals.

Counting is done by the limits library (the backend slowapi is built on):
FixedWindowRateLimiter over a private MemoryStorage, one storage per
RateLimiter instance so tests never share counters. This module adds what
slowapi does not expose to the rest of the app:

  - a "suspicious IP" set the authorizer consults. An IP is added the first
    time any of its keys goes over its limit and stays until clear_suspicious().
  - a soft burst signal: more than 20 requests from a key inside the trailing
    10 seconds records SUSPICIOUS_ACTIVITY_DETECTED without rejecting. The
    request history is independent of the counting window, so a burst that
    straddles a window reset is still seen.
  - sweep(): drops request histories whose window ended more than 60 seconds
    ago. The app lifespan runs it every 5 minutes; the limits storage expires
    its own counters.

Keys are (scope, ip, user_agent[:50]) so the read and write policies of the
same client are counted independently.

retry_after is ceil(window reset - now) from get_window_stats(), at least 1.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from limits import RateLimitItem, RateLimitItemPerSecond
from limits import parse as parse_limit
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

if TYPE_CHECKING:
    from core.audit import AuditLogger

USER_AGENT_PREFIX = 50
BURST_WINDOW_SECONDS = 10.0
BURST_THRESHOLD = 20
STALE_GRACE_SECONDS = 60.0
SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_seconds: float

    @classmethod
    def parse(cls, value: str) -> "RateLimitPolicy":
        """Build a policy from a limits-style string such as "30/minute"."""
        item = parse_limit(value)
        return cls(max_requests=item.amount, window_seconds=float(item.get_expiry()))

    def item(self) -> RateLimitItem:
        return RateLimitItemPerSecond(self.max_requests, max(1, int(self.window_seconds)))


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: int = 0
    count: int = 0


@dataclass
class _History:
    window_seconds: float
    last_seen: float = 0.0
    recent: deque = field(default_factory=deque)


def client_key(scope: str, ip: str, user_agent: Optional[str]) -> tuple[str, str, str]:
    return (scope, ip or "unknown", (user_agent or "unknown")[:USER_AGENT_PREFIX])


class RateLimiter:
    """Fixed-window limiter keyed by endpoint scope and client identity.

    One instance is owned by app.state and injected into the authorizer and
    routes. clock drives the burst history and sweep; tests pass a fake one.
    """

    def __init__(
        self,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._audit = audit
        self._clock = clock
        self._strategy = FixedWindowRateLimiter(MemoryStorage())
        self._history: dict[tuple[str, str, str], _History] = {}
        self._suspicious: set[str] = set()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Counting
    # ------------------------------------------------------------------

    def check(
        self,
        scope: str,
        ip: str,
        user_agent: Optional[str],
        policy: RateLimitPolicy,
    ) -> RateLimitResult:
        """Count one request and decide whether it may proceed."""
        key = client_key(scope, ip, user_agent)
        item = policy.item()
        allowed = self._strategy.hit(item, *key)
        reset_time, remaining = self._strategy.get_window_stats(item, *key)

        if allowed:
            result = RateLimitResult(allowed=True, count=item.amount - remaining)
        else:
            retry_after = max(1, math.ceil(reset_time - time.time()))
            result = RateLimitResult(allowed=False, retry_after=retry_after, count=item.amount + 1)

        burst = self._remember(key, policy)
        if not result.allowed:
            with self._lock:
                self._suspicious.add(key[1])
            self._record("RATE_LIMIT_EXCEEDED", ip, scope=scope, max_requests=policy.max_requests)
        if burst > BURST_THRESHOLD:
            self._record("SUSPICIOUS_ACTIVITY_DETECTED", ip, scope=scope, requests_in_10s=burst)
        return result

    def _remember(self, key: tuple[str, str, str], policy: RateLimitPolicy) -> int:
        """Append to the key's request history; return requests in the trailing burst window."""
        now = self._clock()
        with self._lock:
            history = self._history.get(key)
            if history is None:
                history = self._history[key] = _History(window_seconds=policy.window_seconds)
            history.window_seconds = max(history.window_seconds, policy.window_seconds)
            history.last_seen = now
            history.recent.append(now)
            while history.recent and now - history.recent[0] >= BURST_WINDOW_SECONDS:
                history.recent.popleft()
            return len(history.recent)

    # ------------------------------------------------------------------
    # Suspicious IPs
    # ------------------------------------------------------------------

    def is_suspicious(self, ip: str) -> bool:
        with self._lock:
            return ip in self._suspicious

    def clear_suspicious(self, ip: Optional[str] = None) -> None:
        """Forget one flagged IP, or all of them when ip is None."""
        with self._lock:
            if ip is None:
                self._suspicious.clear()
            else:
                self._suspicious.discard(ip)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Delete histories whose window ended more than 60 seconds ago. Returns entries removed."""
        now = self._clock()
        with self._lock:
            stale = [
                k for k, h in self._history.items() if now > h.last_seen + h.window_seconds + STALE_GRACE_SECONDS
            ]
            for key in stale:
                del self._history[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._history)

    def _record(self, event: str, ip: str, **details) -> None:
        if self._audit is not None:
            self._audit.log(event, details, ip=ip)
