"""
API request and response models for linkshelf REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

The catalog document itself is NOT modelled here: POST /api/catalog reads the
raw body and hands it to core.validation.validate_catalog so that malformed
catalogs produce a 400 with a message naming the offending app, not a generic
422 from Pydantic.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.audit import AuditEntry

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class RateLimitedResponse(ErrorResponse):
    """429 body. retryAfter mirrors the Retry-After header, in seconds."""

    retryAfter: int


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /health. catalog_path has its file name redacted."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    timestamp: datetime
    catalog_path: str
    secret_configured: bool


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class CatalogStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    categories: int
    apps: int


class CatalogSaveResponse(BaseModel):
    """Response for a successful POST /api/catalog."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    timestamp: datetime
    stats: CatalogStats


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionRequest(BaseModel):
    """Request body for POST /api/session.

    The upper bound is deliberately loose; the authorizer enforces
    MAX_TOKEN_LENGTH and answers 400 for anything longer.
    """

    passphrase: str = Field(min_length=1, max_length=10_000)


class SessionResponse(BaseModel):
    """Response for POST /api/session.

    proof is digest(ADMIN_SECRET). The client stores it to detect secret
    rotation; it is only ever sent to a caller who just presented the secret.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    proof: str


class SessionInfoResponse(BaseModel):
    """Response for GET /api/session. expires_at is None when the raw secret was presented."""

    model_config = ConfigDict(frozen=True)

    proof: str
    via: str
    expires_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    event: str
    ip: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(**entry.to_dict())


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    entries: list[AuditEntryResponse]
