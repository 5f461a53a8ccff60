"""
API request and response models for DigestGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

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


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Digest-protected resource
# ---------------------------------------------------------------------------


class DigestAuthResponse(BaseModel):
    """Body returned by the digest-protected endpoints once authenticated.

    received_data is only set by POST; error is only set when the POST body
    could not be parsed as JSON.
    """

    authenticated: bool = True
    username: str
    message: str
    roles: list[str] = Field(default_factory=list)
    received_data: Optional[Any] = None
    error: Optional[str] = None
