"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.active_nonces reflects the nonce table size
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert isinstance(data["components"]["active_nonces"], int)


def test_health_counts_issued_nonces(api_client):
    client, gate = api_client
    before = client.get("/api/v1/health").json()["components"]["active_nonces"]
    gate.challenge()
    after = client.get("/api/v1/health").json()["components"]["active_nonces"]
    assert after == before + 1


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert "www-authenticate" not in resp.headers
