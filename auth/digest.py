"""
auth/digest.py -- RFC 2617 response calculation.

  HA1      = H(username ":" realm ":" secret)
  HA2      = H(method ":" uri)
  qop=auth : response = H(HA1 ":" nonce ":" nc ":" cnonce ":" qop ":" HA2)
  no qop   : response = H(HA1 ":" nonce ":" HA2)

H is MD5 (RFC 2617 baseline) or SHA-256 (RFC 7616), chosen by the
credential's algorithm field. MD5 is kept only for compatibility with legacy
clients; it is not a password hash.

Pure functions, no I/O.
"""

from __future__ import annotations

import hashlib
import hmac

from auth.models import DigestCredentials

_HASHES = {
    "MD5": hashlib.md5,
    "SHA-256": hashlib.sha256,
}


def hash_hex(algorithm: str, value: str) -> str:
    """Return the lower-hex digest of value under the named algorithm."""
    try:
        factory = _HASHES[algorithm.upper()]
    except KeyError:
        raise ValueError(f"unsupported digest algorithm: {algorithm!r}") from None
    return factory(value.encode("utf-8")).hexdigest()


def expected_response(method: str, credentials: DigestCredentials, secret: str) -> str:
    """Compute the response value a client holding `secret` should have sent."""
    algorithm = credentials.algorithm
    ha1 = hash_hex(algorithm, f"{credentials.username}:{credentials.realm}:{secret}")
    ha2 = hash_hex(algorithm, f"{method}:{credentials.uri}")
    if credentials.qop == "auth":
        return hash_hex(
            algorithm,
            f"{ha1}:{credentials.nonce}:{credentials.nc}:{credentials.cnonce}:{credentials.qop}:{ha2}",
        )
    return hash_hex(algorithm, f"{ha1}:{credentials.nonce}:{ha2}")


def responses_match(presented: str, expected: str) -> bool:
    """Constant-time comparison of a presented response against the expected one.

    Hex case is ignored. Both sides are compared as bytes so non-ASCII input
    cannot raise from hmac.compare_digest.
    """
    return hmac.compare_digest(presented.lower().encode("utf-8"), expected.lower().encode("utf-8"))
