"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/session.py (to apply the login limit with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

slowapi calls a dynamic limit without the request, so the settings the app
was started with are registered here by attach_components() via
use_settings(). Until then the environment settings apply.

The catalog endpoints do not use slowapi: they are counted by core.ratelimit,
which also flags abusive IPs for the authorizer.
"""

from typing import Optional

from fastapi import Request
from slowapi import Limiter

from auth.dependencies import client_ip
from core.config import Settings, get_settings

_active_settings: Optional[Settings] = None


def use_settings(settings: Settings) -> None:
    global _active_settings
    _active_settings = settings


def _client_key(request: Request) -> str:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return client_ip(request, settings)


def login_rate_limit() -> str:
    """LOGIN_RATE_LIMIT of the running app, read per request."""
    return (_active_settings or get_settings()).login_rate_limit


limiter = Limiter(key_func=_client_key, storage_uri="memory://")
