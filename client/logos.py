"""
client/logos.py -- Find an icon URL for an app link.

Checks, in order, the Google favicon service and the site's own
/favicon.ico. Each request is bounded by a 3 second timeout and only SSRF-safe
candidates are requested. Hits are cached per domain in the client store,
at most 100 domains, oldest evicted first.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote, urlsplit

import requests

from client.storage import KeyValueStore
from core.validation import is_safe_url

logger = logging.getLogger("linkshelf.client")

LOOKUP_TIMEOUT_SECONDS = 3
MAX_CACHED_LOGOS = 100
LOGO_TTL_SECONDS = 7 * 24 * 60 * 60
_CACHE_PREFIX = "logo:"

_session = requests.Session()
_session.max_redirects = 3


def domain_of(url: str) -> Optional[str]:
    """Lower-cased host of url (https:// assumed when no scheme), or None."""
    if "://" not in url:
        url = f"https://{url}"
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower().rstrip(".") if host else None


def candidate_logo_urls(domain: str) -> list[str]:
    return [
        f"https://www.google.com/s2/favicons?domain={quote(domain)}&sz=128",
        f"https://{domain}/favicon.ico",
    ]


class LogoCache:
    """Domain -> icon URL map kept in the client KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        max_entries: int = MAX_CACHED_LOGOS,
        ttl: float = LOGO_TTL_SECONDS,
    ) -> None:
        self._store = store
        self.max_entries = max_entries
        self.ttl = ttl

    def get(self, domain: str) -> Optional[str]:
        value = self._store.get(_CACHE_PREFIX + domain)
        return value if isinstance(value, str) else None

    def set(self, domain: str, logo_url: str) -> None:
        self._store.purge_expired()
        self._store.set(_CACHE_PREFIX + domain, logo_url, ttl=self.ttl)
        keys = self._store.keys(_CACHE_PREFIX)
        for key in keys[: max(0, len(keys) - self.max_entries)]:
            self._store.remove(key)

    def __len__(self) -> int:
        return len(self._store.keys(_CACHE_PREFIX))


def _serves_image(http: requests.Session, url: str, timeout: float) -> bool:
    try:
        with http.get(url, timeout=timeout, stream=True) as resp:
            content_type = resp.headers.get("Content-Type", "")
            return resp.ok and content_type.startswith("image/")
    except requests.RequestException as e:
        logger.debug("Logo lookup failed for %s: %s", url, e)
        return False


def find_logo(
    url: str,
    cache: LogoCache,
    http: Optional[requests.Session] = None,
    timeout: float = LOOKUP_TIMEOUT_SECONDS,
) -> Optional[str]:
    """Return a usable icon URL for the site behind url, or None."""
    if not is_safe_url(url):
        return None
    domain = domain_of(url)
    if not domain:
        return None
    cached = cache.get(domain)
    if cached:
        return cached

    http = http or _session
    for candidate in candidate_logo_urls(domain):
        if not is_safe_url(candidate):
            continue
        if _serves_image(http, candidate, timeout):
            cache.set(domain, candidate)
            return candidate
    return None
