"""
client/api.py -- HTTP client for the linkshelf server.

CatalogClient owns one requests.Session (connection pooling, max_redirects=3)
and the client-local state it needs: the admin session, the login throttle
and the draft catalog.

Saving follows the draft-first rule: the catalog is written to the local
draft BEFORE the upload starts and the draft is cleared only after the server
confirms a durable write. Any failure (network, auth, validation, server)
leaves the draft in place and save_catalog() reports durable=False, so an
edit is never lost just because the server refused or was unreachable.

Errors:
  login() raises AuthenticationError while locked out, RateLimitError on 429
  and ConfigurationError when the server has no secret configured. A wrong
  passphrase is not an exception: it returns False.
  save_catalog() never raises for server-side refusals; it returns SaveResult.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from client.session import LoginThrottle, SessionStore
from client.storage import KeyValueStore
from core.errors import AuthenticationError, ConfigurationError, RateLimitError

logger = logging.getLogger("linkshelf.client")

DRAFT_KEY = "draft_catalog"


@dataclass(frozen=True)
class SaveResult:
    """Outcome of save_catalog(). durable is False when only the local draft holds the edit."""

    durable: bool
    message: str
    stats: dict[str, int] = field(default_factory=dict)
    status_code: Optional[int] = None


def _new_session() -> requests.Session:
    session = requests.Session()
    session.max_redirects = 3
    return session


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {resp.status_code}"


def _error_code(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return ""
    error = body.get("error") if isinstance(body, dict) else None
    return str(error.get("code", "")) if isinstance(error, dict) else ""


def _retry_after(resp: requests.Response) -> int:
    try:
        body = resp.json()
        if isinstance(body, dict) and "retryAfter" in body:
            return int(body["retryAfter"])
    except (ValueError, TypeError):
        pass
    header = resp.headers.get("Retry-After", "")
    return int(header) if header.isdigit() else 60


class CatalogClient:
    def __init__(
        self,
        base_url: str,
        store: KeyValueStore,
        sessions: Optional[SessionStore] = None,
        throttle: Optional[LoginThrottle] = None,
        http: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.sessions = sessions or SessionStore(store)
        self.throttle = throttle or LoginThrottle(store)
        self.http = http or _new_session()
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        token = self.sessions.token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def login(self, passphrase: str) -> bool:
        """Exchange the passphrase for a session token and store the session."""
        locked = self.throttle.locked_for()
        if locked:
            minutes = max(1, (locked + 59) // 60)
            raise AuthenticationError("locked-out", f"Too many failed attempts. Try again in {minutes} minute(s).")

        resp = self.http.post(self._url("/api/session"), json={"passphrase": passphrase}, timeout=self.timeout)
        if resp.status_code == 429:
            raise RateLimitError(_retry_after(resp), _error_message(resp))
        if resp.status_code == 500 and _error_code(resp) == "server-misconfigured":
            raise ConfigurationError(_error_message(resp))
        if resp.status_code in (400, 401, 403):
            left = self.throttle.record_failure()
            self.sessions.logout()
            logger.info("Login rejected (%s); %d attempt(s) left", _error_code(resp) or resp.status_code, left)
            return False
        resp.raise_for_status()

        data = resp.json()
        expires_at = time.time() + int(data.get("expires_in", 0))
        if not self.sessions.login(passphrase, data["proof"], token=data["access_token"], token_expires_at=expires_at):
            return False
        self.throttle.reset()
        return True

    def check_session(self) -> bool:
        """Ask the server whether the stored session still holds. Clears it when not."""
        if self.sessions.token() is None:
            self.sessions.logout()
            return False
        resp = self.http.get(self._url("/api/session"), headers=self._auth_headers(), timeout=self.timeout)
        if resp.status_code in (401, 403):
            self.sessions.logout()
            return False
        resp.raise_for_status()
        return self.sessions.is_valid(resp.json()["proof"])

    def logout(self) -> None:
        self.sessions.logout()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def fetch_catalog(self) -> Optional[dict[str, Any]]:
        """Return the server catalog, or None when the server has none yet."""
        resp = self.http.get(self._url("/api/catalog"), timeout=self.timeout)
        if resp.status_code == 404:
            return None
        if resp.status_code == 429:
            raise RateLimitError(_retry_after(resp), _error_message(resp))
        resp.raise_for_status()
        return resp.json()

    def save_catalog(self, catalog: dict[str, Any]) -> SaveResult:
        """Upload catalog. The local draft is kept unless the server confirms the write."""
        self.save_draft(catalog)
        headers = self._auth_headers()
        if not headers:
            return SaveResult(durable=False, message="Not logged in. Changes saved as a local draft.")

        try:
            resp = self.http.post(self._url("/api/catalog"), json=catalog, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Catalog upload failed: %s", e)
            return SaveResult(durable=False, message="Server unreachable. Changes saved as a local draft.")

        if resp.ok:
            self.discard_draft()
            body = resp.json()
            return SaveResult(
                durable=True,
                message=body.get("message", "Catalog saved."),
                stats=body.get("stats", {}),
                status_code=resp.status_code,
            )

        if resp.status_code in (401, 403):
            self.sessions.logout()
        if resp.status_code == 429:
            message = f"Rate limited; retry in {_retry_after(resp)}s. Changes saved as a local draft."
        else:
            message = f"{_error_message(resp)} Changes saved as a local draft."
        return SaveResult(durable=False, message=message, status_code=resp.status_code)

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    def save_draft(self, catalog: dict[str, Any]) -> None:
        self.store.set(DRAFT_KEY, {"saved_at": time.time(), "catalog": catalog})

    def load_draft(self) -> Optional[dict[str, Any]]:
        raw = self.store.get(DRAFT_KEY)
        if not isinstance(raw, dict) or not isinstance(raw.get("catalog"), dict):
            return None
        return raw["catalog"]

    def draft_saved_at(self) -> Optional[float]:
        raw = self.store.get(DRAFT_KEY)
        return raw.get("saved_at") if isinstance(raw, dict) else None

    def discard_draft(self) -> None:
        self.store.remove(DRAFT_KEY)
