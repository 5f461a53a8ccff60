"""
tests/conftest.py -- Shared test fixtures for DigestGate.

This module provides:
  - FakeClock: settable time source injected into NonceManager
  - make_authorization / parse_challenge: a minimal digest *client*, written
    independently of auth/digest.py so tests do not verify the server with
    its own arithmetic
  - gate fixtures: DigestAuthGate over a dict-backed account lookup
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API fixture because TestClient runs sync route handlers and
dependencies in a thread pool. Plain :memory: DBs are per-connection and would
present a blank schema to each worker thread.

DEBUG and the other env vars must be set before any core/auth import so
get_settings() auto-generates DIGEST_AUTH_SECRET instead of raising.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from urllib.request import parse_http_list

# CRITICAL: Set env before any auth/core import so get_settings() can
# auto-generate the secret in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("DIGEST_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_gate
from auth.gate import DigestAuthGate
from auth.models import Account
from auth.nonces import NonceManager
from auth.store import AccountStore
from core.config import get_settings

TEST_SECRET = "test-digest-secret-0123456789abcdef"
REALM = "testrealm@example"

# ---------------------------------------------------------------------------
# Digest client helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable time source; advance() moves it forward by N seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _h(algorithm: str, value: str) -> str:
    fn = hashlib.sha256 if algorithm.upper() == "SHA-256" else hashlib.md5
    return fn(value.encode()).hexdigest()


def parse_challenge(header: str) -> dict[str, str]:
    """Parse a WWW-Authenticate: Digest value into a dict (quotes stripped)."""
    assert header.startswith("Digest "), header
    params = {}
    for item in parse_http_list(header[len("Digest ") :]):
        key, _, value = item.partition("=")
        params[key.strip()] = value.strip().strip('"')
    return params


def make_authorization(
    challenge: dict[str, str],
    username: str,
    secret: str,
    method: str = "GET",
    uri: str = "/resource",
    nc: int = 1,
    cnonce: str = "0a4f113b",
    qop: str | None = "auth",
    **overrides: str,
) -> str:
    """Build an Authorization: Digest value the way a compliant client would.

    overrides replace individual parameters *after* the response is computed,
    e.g. realm="other" to send a tampered header.
    """
    algorithm = challenge.get("algorithm", "MD5")
    realm = challenge["realm"]
    nonce = challenge["nonce"]
    nc_value = f"{nc:08x}"
    ha1 = _h(algorithm, f"{username}:{realm}:{secret}")
    ha2 = _h(algorithm, f"{method}:{uri}")
    if qop:
        response = _h(algorithm, f"{ha1}:{nonce}:{nc_value}:{cnonce}:{qop}:{ha2}")
    else:
        response = _h(algorithm, f"{ha1}:{nonce}:{ha2}")

    params = {
        "username": f'"{username}"',
        "realm": f'"{realm}"',
        "nonce": f'"{nonce}"',
        "uri": f'"{uri}"',
        "algorithm": algorithm,
        "response": f'"{response}"',
    }
    if qop:
        params.update({"qop": qop, "nc": nc_value, "cnonce": f'"{cnonce}"'})
    if challenge.get("opaque"):
        params["opaque"] = f'"{challenge["opaque"]}"'
    for key, value in overrides.items():
        params[key] = f'"{value}"' if key not in ("algorithm", "qop", "nc") else value
    return "Digest " + ", ".join(f"{k}={v}" for k, v in params.items())


# ---------------------------------------------------------------------------
# Gate fixtures
# ---------------------------------------------------------------------------

ACCOUNTS = {
    "admin": Account(username="admin", secret="adminPassword", roles={"admin"}),
    "user": Account(username="user", secret="userPassword", roles={"user"}),
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def nonce_manager(clock: FakeClock) -> NonceManager:
    return NonceManager(
        TEST_SECRET, ttl_seconds=300, retention_seconds=600, cnonce_window=8, clock=clock, timer=clock
    )


@pytest.fixture
def gate(nonce_manager: NonceManager) -> DigestAuthGate:
    """Gate for realm testrealm@example with the admin/user accounts and no opaque."""
    return DigestAuthGate(realm=REALM, nonce_manager=nonce_manager, find_account=ACCOUNTS.get)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, gate: DigestAuthGate):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.digest_gate = gate
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, DigestAuthGate], None, None]:
    """Yield (client, gate) for API integration tests.

    The gate is assembled by api.main.build_gate() from real settings, over
    an isolated in-memory account store seeded with admin and user.
    """
    store = AccountStore(db_url="sqlite:///file:test_digest_api?mode=memory&cache=shared&uri=true")
    for account in ACCOUNTS.values():
        if store.find_account(account.username) is None:
            store.create_account(account)
    gate = build_gate(get_settings(), store)

    app.router.lifespan_context = _patch_lifespan(store, gate)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, gate

    store.close()
