"""
auth/dependencies.py -- FastAPI Depends() helpers for authorization and rate limiting.

client_ip() resolves the client identity used by the rate limiter, the
authorizer and the audit log. X-Forwarded-For is honoured only when
TRUST_FORWARDED_FOR is set, otherwise any client could pick its own identity.

rate_limit(scope) returns a dependency that counts one request against the
"read" or "write" policy and raises RateLimitError when the window is full.

require_admin() runs RequestAuthorizer.check() and turns a rejection into an
HTTPException carrying the rejection code. On a credential mismatch it first
awaits the randomized failure delay so response timing says nothing about
how close the guess was.

Routes that need both declare them in this order:
    @router.post("/catalog", dependencies=[Depends(rate_limit("write")), Depends(require_admin)])

Layer rule: auth/dependencies.py may import from fastapi and slowapi (for
Request/HTTPException/get_remote_address) because this module is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import NoReturn

from fastapi import HTTPException, Request
from slowapi.util import get_remote_address

from auth.models import AuthDecision
from core.config import Settings
from core.errors import RateLimitError


def client_ip(request: Request, settings: Settings) -> str:
    """Return the client IP for rate limiting, allow-listing and audit."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request) or "unknown"


def rate_limit(scope: str) -> Callable[[Request], Awaitable[None]]:
    """Build a dependency enforcing app.state.rate_policies[scope]."""

    async def dependency(request: Request) -> None:
        state = request.app.state
        result = state.rate_limiter.check(
            scope,
            client_ip(request, state.settings),
            request.headers.get("User-Agent"),
            state.rate_policies[scope],
        )
        if not result.allowed:
            raise RateLimitError(result.retry_after)

    return dependency


async def require_admin(request: Request) -> AuthDecision:
    """Require a valid admin credential. Raises HTTPException on any rejection.

    Use as a FastAPI dependency:
        @router.post("/catalog")
        async def route(decision: AuthDecision = Depends(require_admin)): ...
    """
    state = request.app.state
    decision = state.authorizer.check(
        client_ip(request, state.settings),
        request.url.path,
        request.headers.get("Authorization"),
    )
    if decision.allowed:
        return decision
    await reject(decision, state.authorizer.failure_delay())


async def reject(decision: AuthDecision, delay_seconds: float) -> NoReturn:
    """Raise the HTTPException for a rejected decision, sleeping first if asked to."""
    if decision.delay:
        await asyncio.sleep(delay_seconds)
    raise HTTPException(
        status_code=decision.status_code,
        detail={"code": decision.reason.value, "message": decision.message, "detail": None},
    )
