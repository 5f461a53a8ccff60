"""
auth/errors.py -- Failure taxonomy for digest authentication.

Every class carries a stable `reason` code. The gate catches all of these and
turns them into an AuthResult; none of them escapes to the HTTP layer.
"""

from __future__ import annotations


class DigestAuthError(Exception):
    reason = "digest_auth_error"


class MalformedHeader(DigestAuthError):
    """The Authorization value is not a parseable Digest credential set."""

    reason = "malformed_header"


class MissingField(MalformedHeader):
    """A required digest parameter is absent or empty."""

    reason = "missing_field"

    def __init__(self, field: str) -> None:
        super().__init__(f"missing digest parameter: {field}")
        self.field = field


class UnknownUser(DigestAuthError):
    reason = "unknown_user"


class ReplayDetected(DigestAuthError):
    reason = "replay_detected"


class StaleNonce(DigestAuthError):
    reason = "stale_nonce"


class ResponseMismatch(DigestAuthError):
    reason = "response_mismatch"


class UnknownNonce(DigestAuthError):
    """The nonce was never issued by this process or has been purged."""

    reason = "unknown_nonce"
