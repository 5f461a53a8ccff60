"""
auth/models.py -- Domain dataclasses for digest authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the nonce
manager and the gate do the work; these classes only own domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Account:
    """A user that may authenticate through HTTP Digest.

    secret is the shared secret digest clients hash with (HA1 input). It is
    recoverable by design -- RFC 2617 requires the server to know it. Do not
    reuse it as a general password store.
    """

    username: str
    secret: str
    roles: set[str] = field(default_factory=set)
    id: int | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class DigestCredentials:
    """One parsed Authorization: Digest header. Transient, never persisted.

    nc and cnonce are None for legacy (no-qop) clients. nc is kept as the
    original hex string because it is hashed verbatim.
    """

    username: str
    realm: str
    nonce: str
    uri: str
    response: str
    algorithm: str = "MD5"
    qop: str | None = None
    nc: str | None = None
    cnonce: str | None = None
    opaque: str | None = None


class NonceStatus(str, Enum):
    """Outcome of NonceManager.validate()."""

    fresh = "fresh"
    stale = "stale"
    replayed = "replayed"
    unknown = "unknown"


@dataclass(frozen=True)
class Challenge:
    """Values rendered into a WWW-Authenticate: Digest header."""

    realm: str
    nonce: str
    algorithm: str = "MD5"
    qop: str = "auth"
    opaque: str | None = None
    stale: bool = False


@dataclass(frozen=True)
class Principal:
    """The authenticated identity handed to downstream code."""

    username: str
    roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class AuthResult:
    """Outcome of DigestAuthGate.authenticate().

    ok=True carries a principal. ok=False carries status 401 and the header
    value to send; www_authenticate is None only for replay rejections.
    reason is the internal failure code -- for logs and tests, never for the
    response body.
    """

    ok: bool
    principal: Principal | None = None
    status: int = 200
    www_authenticate: str | None = None
    reason: str | None = None
