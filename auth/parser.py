"""
auth/parser.py -- Authorization: Digest header parsing.

Pure function, no I/O. parse_authorization() either returns a complete
DigestCredentials or raises MalformedHeader / MissingField; the gate treats
both exactly like a request with no credentials at all.

Splitting uses urllib.request.parse_http_list, which respects quoted strings,
so a comma inside uri="/a,b" does not break the parameter list.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import re
from urllib.request import parse_http_list

from auth.errors import MalformedHeader, MissingField
from auth.models import DigestCredentials

SCHEME = "Digest "
SUPPORTED_ALGORITHMS = ("MD5", "SHA-256")

_REQUIRED = ("username", "realm", "nonce", "uri", "response")
_NC_RE = re.compile(r"[0-9a-fA-F]{8}")


def parse_authorization(header_value: str) -> DigestCredentials:
    """Parse a raw Authorization header value into DigestCredentials.

    The scheme token must be exactly "Digest " (case-sensitive). Quoted values
    have their quotes stripped; bare tokens (nc, qop, algorithm) are taken
    literally. Parameter names are matched case-insensitively.

    Raises:
        MalformedHeader: wrong scheme, a parameter without "=", an unsupported
            algorithm or qop, or an nc that is not 8 hex digits or is zero.
        MissingField: a required parameter is absent or empty. With qop=auth,
            nc and cnonce are required too.
    """
    if not header_value or not header_value.startswith(SCHEME):
        raise MalformedHeader("Authorization scheme is not Digest")

    params: dict[str, str] = {}
    for item in parse_http_list(header_value[len(SCHEME) :]):
        if not item:
            continue
        key, sep, value = item.partition("=")
        key = key.strip().lower()
        if not sep or not key:
            raise MalformedHeader("digest parameter without a value")
        params[key] = _unquote(value.strip())

    for name in _REQUIRED:
        if not params.get(name):
            raise MissingField(name)

    algorithm = (params.get("algorithm") or "MD5").upper()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise MalformedHeader(f"unsupported algorithm: {algorithm}")

    qop = params.get("qop") or None
    nc = cnonce = None
    if qop is not None:
        # auth-int would need the request body hashed into HA2
        if qop != "auth":
            raise MalformedHeader(f"unsupported qop: {qop}")
        for name in ("nc", "cnonce"):
            if not params.get(name):
                raise MissingField(name)
        nc = params["nc"]
        if not _NC_RE.fullmatch(nc):
            raise MalformedHeader("nc must be 8 hex digits")
        if int(nc, 16) == 0:
            raise MalformedHeader("nc starts at 00000001")
        cnonce = params["cnonce"]

    return DigestCredentials(
        username=params["username"],
        realm=params["realm"],
        nonce=params["nonce"],
        uri=params["uri"],
        response=params["response"],
        algorithm=algorithm,
        qop=qop,
        nc=nc,
        cnonce=cnonce,
        opaque=params.get("opaque"),
    )


def nonce_count(credentials: DigestCredentials) -> int:
    """Return the request counter as an int. Legacy (no-qop) requests count as 1."""
    if credentials.nc is None:
        return 1
    return int(credentials.nc, 16)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value
