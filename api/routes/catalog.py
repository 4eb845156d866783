"""
api/routes/catalog.py -- Read and replace the shared catalog document.

Routes:
  GET  /api/catalog  -- public; read rate limit; the stored document or 404
  POST /api/catalog  -- write rate limit, admin credential, validated atomic replace

POST pipeline (each step short-circuits):
  1. rate_limit("write")   -> 429 with retryAfter
  2. require_admin          -> 401/403/429/500 (see auth/authorizer.py)
  3. body size              -> 413 once MAX_BODY_BYTES is exceeded
  4. JSON parse             -> 400 invalid_json
  5. validate_catalog       -> 400 validation_error (SSRF rejections audited)
  6. CatalogStore.write     -> 500 persistence_error (detail only in DEBUG)

Steps 5 and 6 block (Pillow decode, fsync) and run in the threadpool.

Security:
  The body is streamed and counted so an oversized upload is refused without
  buffering it all. Content-Length is checked first when present.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.models import CatalogSaveResponse, CatalogStats, ErrorDetail
from auth.dependencies import client_ip, rate_limit, require_admin
from core.errors import PersistenceError, ValidationError
from core.validation import validate_catalog

logger = logging.getLogger("linkshelf.api")

# Auth policy:
# - GET  /api/catalog: public -- the catalog is what the browse UI renders
# - POST /api/catalog: requires admin (require_admin), after the write limit
router = APIRouter()

_NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=code, message=message, detail=detail).model_dump(),
    )


async def _read_body(request: Request, max_bytes: int) -> bytes:
    declared = request.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise _error(413, "payload_too_large", f"Request body exceeds {max_bytes} bytes.")
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            raise _error(413, "payload_too_large", f"Request body exceeds {max_bytes} bytes.")
        chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# GET /api/catalog
# ---------------------------------------------------------------------------


@router.get("/catalog", dependencies=[Depends(rate_limit("read"))])
async def get_catalog(request: Request) -> JSONResponse:
    """Return the stored catalog document exactly as persisted."""
    state = request.app.state
    ip = client_ip(request, state.settings)
    state.audit.log("CATALOG_READ", {"path": request.url.path}, ip=ip)

    result = await run_in_threadpool(state.catalog_store.read)
    if result is None:
        state.audit.log("CATALOG_READ_FAILED", {"reason": "not found"}, ip=ip)
        raise _error(404, "catalog_not_found", "Catalog not found.")

    apps = result.data.get("apps")
    categories = result.data.get("categories")
    state.audit.log(
        "CATALOG_READ_SUCCESS",
        {
            "apps": len(apps) if isinstance(apps, list) else 0,
            "categories": len(categories) if isinstance(categories, list) else 0,
        },
        ip=ip,
    )
    return JSONResponse(content=result.data, headers=_NO_CACHE)


# ---------------------------------------------------------------------------
# POST /api/catalog
# ---------------------------------------------------------------------------


@router.post(
    "/catalog",
    response_model=CatalogSaveResponse,
    dependencies=[Depends(rate_limit("write")), Depends(require_admin)],
)
async def save_catalog(request: Request) -> CatalogSaveResponse:
    """Validate the submitted catalog and atomically replace the stored one."""
    state = request.app.state
    settings = state.settings
    ip = client_ip(request, settings)

    body = await _read_body(request, settings.max_body_bytes)
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError):
        state.audit.log("CATALOG_VALIDATION_FAILED", {"reason": "invalid json"}, ip=ip)
        raise _error(400, "invalid_json", "Request body is not valid JSON.")

    try:
        catalog = await run_in_threadpool(
            partial(
                validate_catalog,
                payload,
                enforce_category_integrity=settings.enforce_category_integrity,
                audit=state.audit,
                ip=ip,
            )
        )
    except ValidationError as exc:
        state.audit.log("CATALOG_VALIDATION_FAILED", {"reason": exc.message[:200]}, ip=ip)
        raise _error(400, "validation_error", exc.message, exc.field)

    try:
        await run_in_threadpool(state.catalog_store.write, catalog.to_dict())
    except PersistenceError as exc:
        logger.exception("Catalog write failed")
        state.audit.log("CATALOG_UPDATE_FAILED", {"reason": "persistence error"}, ip=ip)
        raise _error(
            500,
            "persistence_error",
            "Failed to save catalog.",
            str(exc) if settings.debug else None,
        )

    stats = catalog.stats
    state.audit.log("CATALOG_UPDATE_SUCCESS", stats, ip=ip)
    return CatalogSaveResponse(
        message="Catalog saved successfully.",
        timestamp=datetime.now(timezone.utc),
        stats=CatalogStats(**stats),
    )
