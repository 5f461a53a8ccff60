"""Unit tests for auth/digest.py -- RFC 2617 response calculation.

Covers:
  - RFC 2617 section 3.5 worked example (Mufasa / "Circle Of Life")
  - qop=auth and legacy no-qop formulas for the testrealm@example scenario
  - SHA-256 support behind the algorithm field
  - responses_match() is case-insensitive and never raises on odd input
"""

from __future__ import annotations

import hashlib

import pytest

from auth.digest import expected_response, hash_hex, responses_match
from auth.models import DigestCredentials


def md5(value: str) -> str:
    return hashlib.md5(value.encode()).hexdigest()


def test_rfc2617_worked_example() -> None:
    creds = DigestCredentials(
        username="Mufasa",
        realm="testrealm@host.com",
        nonce="dcd98b7102dd2f0e8b11d0f600bfb0c093",
        uri="/dir/index.html",
        response="",
        qop="auth",
        nc="00000001",
        cnonce="0a4f113b",
    )
    assert expected_response("GET", creds, "Circle Of Life") == "6629fae49393a05397450978507c4ef1"


def test_qop_auth_scenario() -> None:
    """admin/adminPassword in testrealm@example, GET /resource."""
    nonce, nc, cnonce = "bm9uY2U=", "00000001", "abcdef01"
    creds = DigestCredentials(
        username="admin",
        realm="testrealm@example",
        nonce=nonce,
        uri="/resource",
        response="",
        qop="auth",
        nc=nc,
        cnonce=cnonce,
    )
    want = md5(
        md5("admin:testrealm@example:adminPassword")
        + ":" + nonce + ":" + nc + ":" + cnonce + ":auth:"
        + md5("GET:/resource")
    )
    got = expected_response("GET", creds, "adminPassword")
    assert got == want
    assert len(got) == 32
    assert got == got.lower()


def test_legacy_without_qop() -> None:
    creds = DigestCredentials(
        username="admin", realm="testrealm@example", nonce="n1", uri="/resource", response=""
    )
    want = md5(md5("admin:testrealm@example:adminPassword") + ":n1:" + md5("GET:/resource"))
    assert expected_response("GET", creds, "adminPassword") == want


def test_method_is_part_of_ha2() -> None:
    creds = DigestCredentials(username="u", realm="r", nonce="n", uri="/x", response="")
    assert expected_response("GET", creds, "s") != expected_response("POST", creds, "s")


def test_sha256() -> None:
    creds = DigestCredentials(
        username="u", realm="r", nonce="n", uri="/x", response="", algorithm="SHA-256",
        qop="auth", nc="00000001", cnonce="c",
    )
    got = expected_response("GET", creds, "s")
    assert len(got) == 64
    ha1 = hashlib.sha256(b"u:r:s").hexdigest()
    ha2 = hashlib.sha256(b"GET:/x").hexdigest()
    assert got == hashlib.sha256(f"{ha1}:n:00000001:c:auth:{ha2}".encode()).hexdigest()


def test_hash_hex_rejects_unknown_algorithm() -> None:
    with pytest.raises(ValueError):
        hash_hex("SHA-1", "x")


class TestResponsesMatch:
    def test_equal(self) -> None:
        assert responses_match("6629fae49393a05397450978507c4ef1", "6629fae49393a05397450978507c4ef1")

    def test_hex_case_ignored(self) -> None:
        assert responses_match("6629FAE49393A05397450978507C4EF1", "6629fae49393a05397450978507c4ef1")

    def test_mismatch(self) -> None:
        assert not responses_match("6629fae49393a05397450978507c4ef0", "6629fae49393a05397450978507c4ef1")

    def test_different_length(self) -> None:
        assert not responses_match("6629", "6629fae49393a05397450978507c4ef1")

    def test_non_ascii_does_not_raise(self) -> None:
        assert not responses_match("ünïcode", "6629fae49393a05397450978507c4ef1")
