"""
auth/nonces.py -- Nonce issuance and replay bookkeeping.

Nonce format (base64 of ASCII):
    "<issued_ms>:<random hex>:<HMAC-SHA256(secret, '<issued_ms>:<random hex>')>"

The signature lets validate() reject forged or foreign tokens without a table
lookup, but replay protection needs the in-memory record: one _NonceRecord
per issued nonce holding the highest accepted nc and a bounded window of
(nc, cnonce) pairs already seen.

Concurrency:
  The table lock only guards dict membership (issue, lookup, purge). Each
  record has its own lock around the check-and-update of last_nc, so
  requests on different nonces never wait on each other and two requests
  racing on the same (nonce, nc) cannot both observe "fresh".

Expiry:
  A record older than ttl_seconds answers "stale". It stays in the table until
  retention_seconds so the client gets stale=true instead of a silent
  re-challenge. purge_expired() drops records past retention; a purged nonce
  answers "unknown". max_nonces caps the table, evicting the oldest record.
  Ages are measured with the monotonic timer; the wall clock only feeds the
  timestamp embedded in the nonce.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field

from auth.models import NonceStatus

logger = logging.getLogger("digestgate.auth.nonces")


@dataclass
class _NonceRecord:
    issued_at: float
    last_nc: int = 0
    used_cnonces: set[tuple[int, str]] = field(default_factory=set)
    order: deque = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def remember(self, nc: int, cnonce: str, window: int) -> None:
        """Record (nc, cnonce), dropping the oldest pair once the window is full."""
        if len(self.order) >= window:
            self.used_cnonces.discard(self.order.popleft())
        pair = (nc, cnonce)
        self.order.append(pair)
        self.used_cnonces.add(pair)


class NonceManager:
    """Issues signed, time-bound nonces and enforces monotonic nonce counts.

    Usage:
        manager = NonceManager(secret, ttl_seconds=300)
        nonce = manager.issue()
        manager.check(nonce, nc=1, cnonce="abc")      # NonceStatus.fresh, nothing recorded
        manager.validate(nonce, nc=1, cnonce="abc")   # NonceStatus.fresh
        manager.validate(nonce, nc=1, cnonce="abc")   # NonceStatus.replayed
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 300,
        retention_seconds: int | None = None,
        cnonce_window: int = 64,
        max_nonces: int = 10_000,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._key = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds if retention_seconds is not None else 2 * ttl_seconds
        self._cnonce_window = cnonce_window
        self._max_nonces = max_nonces
        self._clock = clock
        self._timer = timer
        self._records: OrderedDict[str, _NonceRecord] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self) -> str:
        """Generate a new nonce and start tracking it."""
        payload = f"{int(self._clock() * 1000)}:{secrets.token_hex(8)}"
        token = f"{payload}:{self._sign(payload)}"
        nonce = base64.b64encode(token.encode("ascii")).decode("ascii")
        with self._lock:
            self._records[nonce] = _NonceRecord(issued_at=self._timer())
            while len(self._records) > self._max_nonces:
                self._records.popitem(last=False)
                logger.debug("Nonce table full; evicted oldest record")
        return nonce

    def is_well_formed(self, nonce: str) -> bool:
        """Return True if nonce decodes and carries a valid signature from this server."""
        try:
            token = base64.b64decode(nonce.encode("ascii"), validate=True).decode("ascii")
        except (ValueError, UnicodeError):
            return False
        payload, sep, signature = token.rpartition(":")
        if not sep or not payload:
            return False
        return hmac.compare_digest(self._sign(payload), signature)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def check(self, nonce: str, nc: int, cnonce: str) -> NonceStatus:
        """Report the status validate() would return, without updating the record.

        Used before the digest is verified, so a request that later fails
        authentication cannot advance last_nc for the legitimate client.
        """
        record = self._lookup(nonce)
        if record is None:
            return NonceStatus.unknown
        with record.lock:
            return self._status(record, nc, cnonce)

    def validate(self, nonce: str, nc: int, cnonce: str) -> NonceStatus:
        """Check freshness and replay state for one request, updating the record on success.

        unknown  -- forged, never issued, or already purged.
        stale    -- issued more than ttl_seconds ago.
        replayed -- nc not above the highest accepted nc, or (nc, cnonce) seen before.
        fresh    -- accepted; last_nc and the cnonce window are updated.
                    issued_at is left unchanged.

        The status check and the update happen under the record lock, so of
        several concurrent calls with the same (nonce, nc) at most one is fresh.
        """
        record = self._lookup(nonce)
        if record is None:
            return NonceStatus.unknown
        with record.lock:
            status = self._status(record, nc, cnonce)
            if status is NonceStatus.fresh:
                record.last_nc = nc
                record.remember(nc, cnonce, self._cnonce_window)
            return status

    def _lookup(self, nonce: str) -> _NonceRecord | None:
        if not self.is_well_formed(nonce):
            return None
        with self._lock:
            return self._records.get(nonce)

    def _status(self, record: _NonceRecord, nc: int, cnonce: str) -> NonceStatus:
        # Caller holds record.lock.
        if self._timer() - record.issued_at > self.ttl_seconds:
            return NonceStatus.stale
        if nc <= record.last_nc or (nc, cnonce) in record.used_cnonces:
            logger.warning("Nonce replay: nc=%d last_nc=%d", nc, record.last_nc)
            return NonceStatus.replayed
        return NonceStatus.fresh

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Drop records older than retention_seconds. Returns number removed."""
        cutoff = self._timer() - self.retention_seconds
        with self._lock:
            expired = [nonce for nonce, record in self._records.items() if record.issued_at < cutoff]
            for nonce in expired:
                del self._records[nonce]
        if expired:
            logger.debug("Purged %d expired nonce record(s)", len(expired))
        return len(expired)

    def _sign(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode("ascii"), hashlib.sha256).hexdigest()
