"""
auth/tokens.py -- Short-lived admin session tokens.

Security design decisions:
  Why tokens at all: the admin client should not keep the shared secret (or a
       reversible encoding of it) on disk. It sends the passphrase once to
       POST /api/session and stores only the returned token, which expires
       after SESSION_EXPIRE_SECONDS (default 1 hour).

  JWT: python-jose with HS256. Claims: sub="admin", scope, iat, exp, jti.
       Verification returns None on any failure -- the authorizer turns that
       into invalid-credential.

  Signing key: HMAC-SHA256(SECRET_KEY, digest(ADMIN_SECRET)). Rotating either
       secret invalidates every outstanding token without a revocation list.

  No config at import: every function takes the Settings instance it should
       use, so tests can issue and verify tokens against isolated settings.

Layer rule: no imports from api/, catalog/, or client/. core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from jose import JWTError, jwt

from core.crypto import digest

if TYPE_CHECKING:
    from core.config import Settings

_ALGORITHM = "HS256"
_SCOPE = "catalog:write"


def _signing_key(settings: Settings) -> str:
    return hmac.new(
        settings.secret_key.encode(),
        digest(settings.admin_secret).encode(),
        hashlib.sha256,
    ).hexdigest()


def looks_like_session_token(token: str) -> bool:
    """JWTs are three base64url segments; the raw admin secret almost never is."""
    return token.count(".") == 2 and all(token.split("."))


def create_session_token(settings: Settings, expire_seconds: int = 0) -> tuple[str, datetime]:
    """Encode a signed session token. Returns (token, expires_at).

    Args:
        settings:       Settings holding SECRET_KEY and ADMIN_SECRET.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.session_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else settings.session_expire_seconds
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=duration)
    payload = {
        "sub": "admin",
        "scope": _SCOPE,
        "iat": now,
        "exp": expires_at,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, _signing_key(settings), algorithm=_ALGORITHM), expires_at


def decode_session_token(settings: Settings, token: str) -> Optional[dict]:
    """Decode and verify a session token. Returns the payload or None on any failure."""
    if not settings.secret_configured:
        return None
    try:
        payload = jwt.decode(token, _signing_key(settings), algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != _SCOPE or payload.get("sub") != "admin":
        return None
    return payload
