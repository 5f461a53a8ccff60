"""
auth/dependencies.py -- FastAPI Depends() helper for HTTP Digest authentication.

require_digest_auth() hands the request to the DigestAuthGate stored on
app.state.digest_gate and either returns the Principal or raises HTTP 401.

The 401 body is the same for every failure (unknown user, wrong secret,
stale nonce, replay) so it cannot be used for username enumeration. Only the
WWW-Authenticate header differs: a fresh challenge, a challenge with
stale=true, or no header at all for a detected replay.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.gate import DigestAuthGate
from auth.models import Principal


def request_target(request: Request) -> str:
    """Return the request-target as a digest client hashes it: path plus query."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


def require_digest_auth(request: Request) -> Principal:
    """Require a valid Digest Authorization header. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(require_digest_auth)): ...
    """
    gate: DigestAuthGate = request.app.state.digest_gate
    result = gate.authenticate(
        request.method,
        request.headers.get("Authorization"),
        uri=request_target(request),
    )
    if result.ok:
        request.state.principal = result.principal
        return result.principal

    headers = {"WWW-Authenticate": result.www_authenticate} if result.www_authenticate else None
    raise HTTPException(
        status_code=result.status,
        detail={"code": "unauthorized", "message": "Authentication required."},
        headers=headers,
    )
