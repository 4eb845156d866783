"""
api/routes/session.py -- Exchange the admin passphrase for a session token.

Routes:
  POST /api/session  -- passphrase -> short-lived bearer token (public, rate-limited)
  GET  /api/session  -- re-validate a held credential (requires admin)

Security:
  [H2] POST /session is rate-limited per client IP by slowapi (LOGIN_RATE_LIMIT,
       default 10/minute).
  [C1] The passphrase is compared by RequestAuthorizer.verify_passphrase(),
       which applies the same allow-list, suspicious-IP and misconfiguration
       checks as every mutation and the same randomized failure delay.
  [M5] Cache-Control: no-store on token responses.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import SessionInfoResponse, SessionRequest, SessionResponse
from auth.dependencies import client_ip, rate_limit, reject, require_admin
from auth.models import AuthDecision
from auth.tokens import create_session_token, decode_session_token

# Auth policy:
# - POST /api/session: public -- this is where a credential is obtained
# - GET  /api/session: requires admin (require_admin)
router = APIRouter()


@router.post("/session", response_model=SessionResponse)
@limiter.limit(login_rate_limit)  # [H2] BELOW @router so the registered endpoint is the rate-limited wrapper
async def create_session(request: Request, body: SessionRequest) -> JSONResponse:
    """Verify the passphrase and issue a session token."""
    state = request.app.state
    settings = state.settings
    authorizer = state.authorizer

    decision = authorizer.verify_passphrase(client_ip(request, settings), request.url.path, body.passphrase)
    if not decision.allowed:
        await reject(decision, authorizer.failure_delay())

    token, expires_at = create_session_token(settings)
    expires_in = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    content = SessionResponse(
        access_token=token,
        expires_in=max(expires_in, 0),
        proof=authorizer.secret_digest,
    ).model_dump()
    return JSONResponse(content=content, headers={"Cache-Control": "no-store"})


@router.get(
    "/session",
    response_model=SessionInfoResponse,
    dependencies=[Depends(rate_limit("read"))],
)
async def session_info(request: Request, decision: AuthDecision = Depends(require_admin)) -> SessionInfoResponse:
    """Confirm the presented credential and report when it expires.

    The client compares proof with its stored digest; a mismatch means the
    secret was rotated and the local session must be discarded.
    """
    expires_at = None
    if decision.via == "session":
        token = request.headers.get("Authorization", "")[len("Bearer ") :].strip()
        payload = decode_session_token(request.app.state.settings, token)
        if payload is not None:
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    return SessionInfoResponse(
        proof=request.app.state.authorizer.secret_digest,
        via=decision.via,
        expires_at=expires_at,
    )
