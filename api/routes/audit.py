"""
api/routes/audit.py -- Read the in-memory security audit trail.

Routes:
  GET /api/audit?limit=50&event=ADMIN_AUTH_FAILED  -- requires admin; read rate limit

Entries are returned oldest first. Credential material never reaches the
trail (core/audit.py drops it on write), so nothing is filtered here.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, AuditLogResponse
from auth.dependencies import rate_limit, require_admin

router = APIRouter()


@router.get(
    "/audit",
    response_model=AuditLogResponse,
    dependencies=[Depends(rate_limit("read")), Depends(require_admin)],
)
async def audit_log(
    request: Request,
    limit: int = Query(default=50, ge=1, le=1000),
    event: Optional[str] = Query(default=None, max_length=64, pattern=r"^[A-Z_]+$"),
) -> AuditLogResponse:
    audit = request.app.state.audit
    entries = audit.logs_by_event(event, limit) if event else audit.recent_logs(limit)
    return AuditLogResponse(
        count=len(entries),
        entries=[AuditEntryResponse.from_entry(e) for e in entries],
    )
