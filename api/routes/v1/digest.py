"""
api/routes/v1/digest.py -- Resource protected by HTTP Digest authentication.

Routes:
  GET  /api/v1/digest-auth   -- returns the authenticated principal
  POST /api/v1/digest-auth   -- same, and echoes the JSON request body

Both methods go through require_digest_auth(); the method name is part of
HA2, so a response computed for GET is never valid for POST.

Security:
  [H2] Both routes are rate-limited per client address (DIGEST_RATE_LIMIT).
  Failures are rendered by the HTTPException handler in api/main.py with the
  WWW-Authenticate header preserved.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import DigestAuthResponse
from auth.dependencies import require_digest_auth
from auth.models import Principal
from core.config import get_settings

# Auth policy:
# - GET  /api/v1/digest-auth: requires digest auth (require_digest_auth)
# - POST /api/v1/digest-auth: requires digest auth (require_digest_auth)
router = APIRouter()

_RATE_LIMIT = get_settings().digest_rate_limit


@limiter.limit(_RATE_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.get("/digest-auth", response_model=DigestAuthResponse)
def digest_auth_get(request: Request, principal: Principal = Depends(require_digest_auth)) -> DigestAuthResponse:
    """Return the identity established by the Digest handshake."""
    return DigestAuthResponse(
        username=principal.username,
        message="Authentication successful using Digest Authentication",
        roles=sorted(principal.roles),
    )


@limiter.limit(_RATE_LIMIT)
@router.post("/digest-auth", response_model=DigestAuthResponse)
async def digest_auth_post(request: Request, principal: Principal = Depends(require_digest_auth)):
    """Process an authenticated JSON body.

    Authentication has already succeeded when the body is read, so a body
    that is not JSON yields 400 with authenticated=true rather than 401.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=400,
            content=DigestAuthResponse(
                username=principal.username,
                message="Authentication successful, but error processing request body",
                roles=sorted(principal.roles),
                error="Invalid JSON",
            ).model_dump(),
        )
    return DigestAuthResponse(
        username=principal.username,
        message="Successfully processed authenticated request",
        roles=sorted(principal.roles),
        received_data=body,
    )
