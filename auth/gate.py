"""
auth/gate.py -- The challenge/verify protocol exposed to the web layer.

DigestAuthGate.authenticate(method, authorization) is the whole boundary:
it never raises, and always returns an AuthResult.

State flow for one request:
  no header / not "Digest" / unparseable -> 401 + fresh challenge
  parsed -> look up account -> NonceManager.check()
      unknown  -> 401 + fresh challenge
      stale    -> 401 + fresh challenge with stale=true
      replayed -> 401 with NO challenge (client must restart the handshake)
      fresh    -> realm / algorithm / opaque / uri checks, then digest compare
                  match -> NonceManager.validate() records nc -> principal
                  anything else -> 401 + fresh challenge, nonce state untouched

Security notes:
  [D1] Unknown username and wrong secret produce the same response. The nonce
       is checked before the account's existence matters, and a digest is
       computed against a dummy secret for unknown users so response time
       does not reveal whether the username exists.
  [D2] Digest comparison is constant-time (auth.digest.responses_match).
  [D3] The raw Authorization header is never logged or echoed back.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable

from auth.digest import expected_response, responses_match
from auth.errors import (
    DigestAuthError,
    MalformedHeader,
    ReplayDetected,
    ResponseMismatch,
    StaleNonce,
    UnknownNonce,
    UnknownUser,
)
from auth.models import Account, AuthResult, Challenge, DigestCredentials, NonceStatus, Principal
from auth.nonces import NonceManager
from auth.parser import nonce_count, parse_authorization

logger = logging.getLogger("digestgate.auth.gate")

FindAccount = Callable[[str], "Account | None"]

# Timing equalization secret for unknown usernames [D1].
_DUMMY_SECRET = secrets.token_hex(16)


def make_opaque(secret: str, realm: str) -> str:
    """Derive the per-realm opaque value clients must echo back unchanged."""
    return hmac.new(secret.encode("utf-8"), realm.encode("utf-8"), hashlib.sha256).hexdigest()[:32]


def format_challenge(challenge: Challenge) -> str:
    """Render a Challenge as a WWW-Authenticate header value."""
    parts = [
        f"realm={_quote(challenge.realm)}",
        f"nonce={_quote(challenge.nonce)}",
        f"algorithm={challenge.algorithm}",
        f"qop={_quote(challenge.qop)}",
    ]
    if challenge.opaque:
        parts.append(f"opaque={_quote(challenge.opaque)}")
    if challenge.stale:
        parts.append("stale=true")
    return "Digest " + ", ".join(parts)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class DigestAuthGate:
    """Orchestrates parser, nonce manager and digest calculator.

    find_account is any callable username -> Account | None. The gate only
    reads accounts; it never mutates them.
    """

    def __init__(
        self,
        realm: str,
        nonce_manager: NonceManager,
        find_account: FindAccount,
        algorithm: str = "MD5",
        opaque: str | None = None,
    ) -> None:
        self.realm = realm
        self.nonce_manager = nonce_manager
        self.find_account = find_account
        self.algorithm = algorithm
        self.opaque = opaque

    def challenge(self, stale: bool = False) -> Challenge:
        """Issue a fresh nonce and wrap it in a Challenge."""
        return Challenge(
            realm=self.realm,
            nonce=self.nonce_manager.issue(),
            algorithm=self.algorithm,
            qop="auth",
            opaque=self.opaque,
            stale=stale,
        )

    def authenticate(self, method: str, authorization: str | None, uri: str | None = None) -> AuthResult:
        """Run one request through the digest protocol.

        Args:
            method:        HTTP method, hashed into HA2 verbatim.
            authorization: Raw Authorization header value, or None if absent.
            uri:           Request target. When given, the credential's uri
                           must match it exactly.
        """
        if not authorization or not authorization.startswith("Digest"):
            return self._rejected("no_credentials")

        try:
            credentials = parse_authorization(authorization)
        except MalformedHeader as exc:
            logger.info("Rejected malformed Digest header (%s)", exc.reason)
            return self._rejected(exc.reason)

        try:
            principal = self._verify(method, credentials, uri)
        except ReplayDetected as exc:
            logger.warning("Replay detected for user=%r; no challenge issued", credentials.username)
            return AuthResult(ok=False, status=401, www_authenticate=None, reason=exc.reason)
        except StaleNonce as exc:
            logger.info("Stale nonce for user=%r; re-challenging with stale=true", credentials.username)
            return self._rejected(exc.reason, stale=True)
        except DigestAuthError as exc:
            logger.warning("Digest authentication failed for user=%r (%s)", credentials.username, exc.reason)
            return self._rejected(exc.reason)

        logger.info("Digest authentication succeeded for user=%r", principal.username)
        return AuthResult(ok=True, principal=principal, status=200)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _verify(self, method: str, credentials: DigestCredentials, uri: str | None) -> Principal:
        account = self.find_account(credentials.username)
        nc = nonce_count(credentials)
        cnonce = credentials.cnonce or ""

        self._raise_for(self.nonce_manager.check(credentials.nonce, nc, cnonce))

        secret = account.secret if account is not None else _DUMMY_SECRET
        matched = responses_match(credentials.response, expected_response(method, credentials, secret))
        if account is None:
            raise UnknownUser(credentials.username)

        if (
            credentials.realm != self.realm
            or credentials.algorithm != self.algorithm
            or (credentials.opaque is not None and credentials.opaque != self.opaque)
            or (uri is not None and credentials.uri != uri)
        ):
            raise ResponseMismatch("credential parameters do not match the challenge")
        if not matched:
            raise ResponseMismatch("digest response mismatch")

        # Only a verified request advances the nonce count. validate() re-checks
        # under the record lock; a concurrent winner makes this one a replay.
        self._raise_for(self.nonce_manager.validate(credentials.nonce, nc, cnonce))
        return Principal(username=account.username, roles=frozenset(account.roles))

    @staticmethod
    def _raise_for(status: NonceStatus) -> None:
        if status is NonceStatus.unknown:
            raise UnknownNonce("nonce was never issued or has been purged")
        if status is NonceStatus.stale:
            raise StaleNonce("nonce expired")
        if status is NonceStatus.replayed:
            raise ReplayDetected("nonce count not increasing")

    def _rejected(self, reason: str, stale: bool = False) -> AuthResult:
        return AuthResult(
            ok=False,
            status=401,
            www_authenticate=format_challenge(self.challenge(stale=stale)),
            reason=reason,
        )
