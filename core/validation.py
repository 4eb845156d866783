"""
core/validation.py -- Input validation, sanitization, and SSRF guard.

Three layers, applied in order by validate_catalog():

  sanitize_json()     Structural bounds for any JSON payload: nesting depth,
                      array length, key count, string length. Breaches raise
                      ValidationError. Non-finite numbers become 0 and object
                      keys are reduced to [A-Za-z0-9_].

  field sanitizers    sanitize_app_name / sanitize_category_name /
                      sanitize_tags / sanitize_description strip markup
                      characters and clamp to a maximum length. These
                      truncate rather than reject, and are idempotent:
                      sanitize(sanitize(x)) == sanitize(x).

  check_url()         SSRF guard for every href and remote icon. Only http and
                      https are allowed; loopback, private (RFC1918),
                      link-local, unique-local and *.local / *.internal hosts
                      are refused.

Security note: check_url() looks at the literal hostname only. A public name
that resolves to a private address is not caught here -- the server never
fetches catalog URLs itself, so the guard exists to keep internal addresses
out of a document that other clients will follow.
"""

from __future__ import annotations

import ipaddress
import math
import re
import socket
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlsplit

from core.errors import ValidationError
from core.images import MAX_BASE64_LENGTH, is_image_data_url, validate_image_data_url
from core.models import (
    MAX_APPS,
    MAX_CATEGORIES,
    MAX_CATEGORY_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_HREF_LENGTH,
    MAX_ICON_TEXT_LENGTH,
    MAX_NAME_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TAGS,
    App,
    Catalog,
)

if TYPE_CHECKING:
    from core.audit import AuditLogger

# ---------------------------------------------------------------------------
# Structural limits
# ---------------------------------------------------------------------------

MAX_DEPTH = 10
MAX_ARRAY_LENGTH = 1000
MAX_OBJECT_KEYS = 100
MAX_STRING_LENGTH = 10_000
MAX_KEY_LENGTH = 100
# Inline icons carry up to ~2 MB of base64; core/images.py enforces the exact cap.
MAX_DATA_URL_LENGTH = MAX_BASE64_LENGTH + 64

# ---------------------------------------------------------------------------
# SSRF guard
# ---------------------------------------------------------------------------

_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}
_BLOCKED_SUFFIXES = (".localhost", ".local", ".internal")

_BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

# "scheme:" without a dot in the scheme -- "localhost:8080" and "example.com:80"
# are host:port, "javascript:alert(1)" is a scheme.
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+\-]*):(?!\d)")
# Dotted / hex / octal / integer IPv4 spellings that inet_aton accepts.
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$", re.IGNORECASE)


def _with_scheme(url: str) -> str:
    if "://" in url or _SCHEME_RE.match(url):
        return url
    return f"https://{url}"


def _blocked_address(host: str) -> Optional[str]:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        if not _NUMERIC_HOST_RE.match(host):
            return None
        # Browsers normalize "2130706433" and "0x7f.1" to 127.0.0.1.
        try:
            addr = ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return "malformed numeric host"

    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    for network in _BLOCKED_NETWORKS:
        if addr.version == network.version and addr in network:
            return f"private address {network}"
    return None


def check_url(url: str) -> Optional[str]:
    """Return why url is unsafe, or None when it may enter the catalog."""
    if not isinstance(url, str) or not url.strip():
        return "empty URL"
    candidate = _with_scheme(url.strip())
    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
    except ValueError:
        return "unparseable URL"

    if parts.scheme.lower() not in ("http", "https"):
        return f"scheme {parts.scheme or 'none'!r} not allowed"
    if not hostname:
        return "missing host"

    host = hostname.lower().rstrip(".")
    if host in _BLOCKED_HOSTNAMES:
        return "localhost"
    if host.endswith(_BLOCKED_SUFFIXES):
        return "internal domain"
    return _blocked_address(host)


def is_safe_url(url: str) -> bool:
    """True when url is http(s) and does not point at an internal network."""
    return check_url(url) is None


# ---------------------------------------------------------------------------
# Field sanitizers
# ---------------------------------------------------------------------------

_MARKUP_CHARS = re.compile(r"[<>\"'&]")
_TAG_CHARS = re.compile(r"[<>\"'&,]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)


def _clamp(value: str, limit: int) -> str:
    return value.strip()[:limit].rstrip()


def sanitize_app_name(name: str) -> str:
    return _clamp(_MARKUP_CHARS.sub("", name), MAX_NAME_LENGTH)


def sanitize_category_name(name: str) -> str:
    return _clamp(_MARKUP_CHARS.sub("", name), MAX_CATEGORY_LENGTH)


def sanitize_tags(tags: list[str]) -> list[str]:
    cleaned = (_clamp(_TAG_CHARS.sub("", tag), MAX_TAG_LENGTH) for tag in tags)
    return [tag for tag in cleaned if tag][:MAX_TAGS]


def sanitize_description(description: str) -> str:
    """Remove script blocks, javascript: and on*= handlers, then clamp to 500 chars.

    Substitution repeats until nothing changes so nested payloads such as
    "jajavascript:vascript:" cannot reassemble after one pass.
    """
    text = description
    while True:
        cleaned = _SCRIPT_BLOCK.sub("", text)
        cleaned = _JS_SCHEME.sub("", cleaned)
        cleaned = _EVENT_HANDLER.sub("", cleaned)
        if cleaned == text:
            break
        text = cleaned
    return _clamp(text, MAX_DESCRIPTION_LENGTH)


# ---------------------------------------------------------------------------
# Structural sanitization
# ---------------------------------------------------------------------------

_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_json(data: Any, max_depth: int = MAX_DEPTH, _depth: int = 0) -> Any:
    """Return a bounded copy of a decoded JSON value or raise ValidationError."""
    if _depth > max_depth:
        raise ValidationError(f"Payload is nested deeper than {max_depth} levels.")

    if data is None or isinstance(data, bool):
        return data
    if isinstance(data, str):
        limit = MAX_DATA_URL_LENGTH if data.startswith("data:image/") else MAX_STRING_LENGTH
        if len(data) > limit:
            raise ValidationError(f"A string value exceeds {limit} characters.")
        return data
    if isinstance(data, (int, float)):
        if isinstance(data, float) and not math.isfinite(data):
            return 0
        return data
    if isinstance(data, list):
        if len(data) > MAX_ARRAY_LENGTH:
            raise ValidationError(f"An array exceeds {MAX_ARRAY_LENGTH} elements.")
        return [sanitize_json(item, max_depth, _depth + 1) for item in data]
    if isinstance(data, dict):
        if len(data) > MAX_OBJECT_KEYS:
            raise ValidationError(f"An object has more than {MAX_OBJECT_KEYS} keys.")
        result: dict[str, Any] = {}
        for key, value in data.items():
            clean_key = _KEY_CHARS.sub("", str(key))[:MAX_KEY_LENGTH]
            if clean_key:
                result[clean_key] = sanitize_json(value, max_depth, _depth + 1)
        return result
    return None


# ---------------------------------------------------------------------------
# Icons
# ---------------------------------------------------------------------------


def validate_icon(icon: str) -> str:
    """Accept emoji/short text, /images/ paths, safe http(s) URLs, or image data URLs."""
    if not icon:
        return ""
    if icon.startswith("data:"):
        if not is_image_data_url(icon):
            raise ValidationError("Icon data URL must be an image.", field="icon")
        validate_image_data_url(icon)
        return icon
    if icon.startswith("/images/"):
        if ".." in icon or len(icon) > MAX_HREF_LENGTH:
            raise ValidationError("Icon path is invalid.", field="icon")
        return icon
    if icon.lower().startswith(("http://", "https://")):
        if len(icon) > MAX_HREF_LENGTH:
            raise ValidationError("Icon URL is too long.", field="icon")
        reason = check_url(icon)
        if reason:
            raise ValidationError(f"Icon URL is unsafe (SSRF: {reason}).", field="icon")
        return icon
    if len(icon) > MAX_ICON_TEXT_LENGTH or _SCHEME_RE.match(icon) or _MARKUP_CHARS.search(icon):
        raise ValidationError("Icon must be an emoji, an /images/ path, a URL, or an image data URL.", field="icon")
    return icon


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def _require_str(value: Any, message: str, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(message, field=field)
    return value


def validate_catalog(
    payload: Any,
    *,
    enforce_category_integrity: bool = True,
    audit: Optional[AuditLogger] = None,
    ip: Optional[str] = None,
) -> Catalog:
    """Validate and sanitize a raw catalog payload.

    Returns the sanitized Catalog that should be persisted. Raises
    ValidationError with a message that names the offending category or app.

    Duplicate category names (after sanitization) are collapsed, keeping the
    first occurrence. App fields are clamped rather than rejected, except
    for the name (must be non-empty after cleaning) and href (must be present,
    <= 500 chars, and pass the SSRF guard).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Catalog must be a JSON object.")
    data = sanitize_json(payload)

    raw_categories = data.get("categories")
    raw_apps = data.get("apps")
    if not isinstance(raw_categories, list):
        raise ValidationError("categories must be an array.", field="categories")
    if not isinstance(raw_apps, list):
        raise ValidationError("apps must be an array.", field="apps")
    if len(raw_categories) > MAX_CATEGORIES:
        raise ValidationError(f"Too many categories (maximum {MAX_CATEGORIES}).", field="categories")
    if len(raw_apps) > MAX_APPS:
        raise ValidationError(f"Too many apps (maximum {MAX_APPS}).", field="apps")

    categories: list[str] = []
    for i, raw in enumerate(raw_categories, start=1):
        name = sanitize_category_name(_require_str(raw, f"Category {i} must be a string.", "categories"))
        if not name:
            raise ValidationError(f"Category {i} has an empty name.", field="categories")
        if name not in categories:
            categories.append(name)

    apps = [_validate_app(i, raw, audit, ip) for i, raw in enumerate(raw_apps, start=1)]
    catalog = Catalog(categories=categories, apps=apps)

    orphaned = catalog.orphaned_categories()
    if orphaned:
        if enforce_category_integrity:
            raise ValidationError(
                f"Apps reference unknown categories: {', '.join(orphaned[:5])}.",
                field="apps",
            )
        if audit is not None:
            audit.log("ORPHANED_CATEGORY", {"categories": orphaned[:10]}, ip=ip)
    return catalog


def _validate_app(index: int, raw: Any, audit: Optional[AuditLogger], ip: Optional[str]) -> App:
    if not isinstance(raw, dict):
        raise ValidationError(f"App {index} must be an object.", field="apps")

    name = sanitize_app_name(_require_str(raw.get("name"), f"App {index} has an invalid name.", "name"))
    if not name:
        raise ValidationError(f"App {index} has an invalid name.", field="name")

    href = _require_str(raw.get("href"), f"App {index} ({name}) has an invalid link.", "href").strip()
    if not href or len(href) > MAX_HREF_LENGTH:
        raise ValidationError(f"App {index} ({name}) has an invalid link.", field="href")
    reason = check_url(href)
    if reason:
        if audit is not None:
            audit.log("SSRF_ATTEMPT_DETECTED", {"url": href[:200], "reason": reason, "app": name}, ip=ip)
        raise ValidationError(f"App {index} ({name}) has an unsafe link (SSRF: {reason}).", field="href")

    category = sanitize_category_name(
        _require_str(raw.get("category", ""), f"App {index} ({name}) has an invalid category.", "category")
    )
    description = sanitize_description(
        _require_str(raw.get("description", ""), f"App {index} ({name}) has an invalid description.", "description")
    )

    raw_tags = raw.get("tags") or []
    if not isinstance(raw_tags, list) or not all(isinstance(t, str) for t in raw_tags):
        raise ValidationError(f"App {index} ({name}) tags must be an array of strings.", field="tags")

    icon = _require_str(raw.get("icon", ""), f"App {index} ({name}) has an invalid icon.", "icon").strip()
    try:
        icon = validate_icon(icon)
    except ValidationError as exc:
        raise ValidationError(f"App {index} ({name}): {exc.message}", field="icon") from exc

    return App(
        name=name,
        href=href,
        category=category,
        icon=icon,
        description=description,
        tags=sanitize_tags(raw_tags),
    )
