"""
core/audit.py -- Bounded in-memory trail of security-relevant events.

AuditLogger keeps the most recent entries in a deque(maxlen=...) so appends
are O(1) and the oldest entry is evicted automatically once the bound is
reached. Each entry is also forwarded to the "linkshelf.audit" logger so
operators see it on stderr without polling /api/audit.

What is never recorded: secret values, bearer tokens, passphrases, or any
other credential material. Detail keys that look like credentials are dropped
before the entry is stored; callers should only pass outcome classifications
and context (ip, path, counts).

Layer rule: core/ imports nothing from api/, auth/, catalog/, or client/.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("linkshelf.audit")

DEFAULT_MAX_ENTRIES = 1000

# Substrings that mark an event as a warning-level signal.
_ALERT_MARKERS = ("FAILED", "EXCEEDED", "SUSPICIOUS", "DENIED", "SSRF", "MISCONFIGURED", "MISSING")
# Detail keys that must never reach the log, matched case-insensitively.
_REDACTED_KEYS = ("token", "secret", "password", "passphrase", "authorization", "credential")


@dataclass(frozen=True)
class AuditEntry:
    timestamp: str
    event: str
    ip: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _scrub(details: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not details:
        return {}
    return {k: v for k, v in details.items() if not any(marker in k.lower() for marker in _REDACTED_KEYS)}


class AuditLogger:
    """Append-only ring buffer of AuditEntry records.

    Usage:
        audit = AuditLogger()
        audit.log("ADMIN_AUTH_FAILED", {"path": "/api/catalog"}, ip="203.0.113.9")
        audit.recent_logs(20)
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.max_entries = max_entries
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        # Route handlers that run in the threadpool may log concurrently.
        self._lock = threading.Lock()

    def log(self, event: str, details: Optional[dict[str, Any]] = None, ip: Optional[str] = None) -> AuditEntry:
        """Append an entry; the oldest is evicted once max_entries is exceeded."""
        clean = _scrub(details)
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            ip=ip or str(clean.get("ip", "unknown")),
            details=clean,
        )
        with self._lock:
            self._entries.append(entry)

        level = logging.WARNING if any(marker in event for marker in _ALERT_MARKERS) else logging.INFO
        logger.log(level, "[SECURITY] %s ip=%s %s", event, entry.ip, clean)
        return entry

    def recent_logs(self, limit: int = 50) -> list[AuditEntry]:
        """Return up to the last `limit` entries, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            entries = list(self._entries)
        return entries[-limit:]

    def logs_by_event(self, event: str, limit: int = 50) -> list[AuditEntry]:
        """Return up to the last `limit` entries of one event kind, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            matching = [e for e in self._entries if e.event == event]
        return matching[-limit:]

    def __len__(self) -> int:
        return len(self._entries)
