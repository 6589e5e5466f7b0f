"""Tests for PKCE, auth URL building and at_hash."""
import hashlib
import re
from base64 import urlsafe_b64encode

import pytest

from auth_gateway.pkce import (
    access_token_hash,
    build_authorize_url,
    generate_nonce,
    generate_pkce,
    generate_state,
    verify_access_token_hash,
)


def test_generate_state_length():
    s = generate_state()
    assert len(s) >= 32
    assert re.match(r"^[A-Za-z0-9_-]+$", s)


def test_generate_state_is_fresh():
    assert len({generate_state() for _ in range(100)}) == 100


def test_generate_nonce_length():
    n = generate_nonce()
    assert len(n) >= 32
    assert re.match(r"^[A-Za-z0-9_-]+$", n)


def test_generate_pkce_challenge_is_s256_of_verifier():
    verifier, challenge = generate_pkce()
    assert 43 <= len(verifier) <= 128
    assert re.match(r"^[A-Za-z0-9_-]+$", verifier)
    expected = urlsafe_b64encode(hashlib.sha256(verifier.encode("ascii")).digest()).rstrip(b"=").decode("ascii")
    assert challenge == expected
    assert len(challenge) == 43


def test_build_authorize_url_includes_required_params():
    url = build_authorize_url(
        authorization_endpoint="https://as.example/auth",
        client_id="client1",
        redirect_uri="https://client.example/cb",
        scope="openid profile",
        state="mystate",
        code_challenge="challenge123",
        nonce="mynonce",
    )
    assert url.startswith("https://as.example/auth?")
    assert "response_type=code" in url
    assert "client_id=client1" in url
    assert "scope=openid+profile" in url
    assert "state=mystate" in url
    assert "code_challenge=challenge123" in url
    assert "code_challenge_method=S256" in url
    assert "nonce=mynonce" in url


def test_build_authorize_url_keeps_existing_query():
    url = build_authorize_url(
        authorization_endpoint="https://as.example/auth?tenant=t1",
        client_id="c",
        redirect_uri="https://c/cb",
        scope="openid",
        state="s",
        code_challenge="ch",
    )
    assert url.startswith("https://as.example/auth?tenant=t1&response_type=code")
    assert "nonce=" not in url


def test_access_token_hash_rs256():
    digest = hashlib.sha256(b"jHkWEdUXMU1BwAsC4vtUsZwnNvTIxEl0z9K3vx5KF0Y").digest()
    expected = urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")
    assert access_token_hash("jHkWEdUXMU1BwAsC4vtUsZwnNvTIxEl0z9K3vx5KF0Y", "RS256") == expected


@pytest.mark.parametrize("alg,length", [("RS256", 22), ("ES384", 32), ("PS512", 43), ("EdDSA", 43)])
def test_access_token_hash_length_follows_algorithm(alg, length):
    assert len(access_token_hash("token", alg)) == length


def test_access_token_hash_unknown_algorithm():
    with pytest.raises(ValueError):
        access_token_hash("token", "none")


def test_verify_access_token_hash():
    good = access_token_hash("token-a", "RS256")
    assert verify_access_token_hash("token-a", "RS256", good) is True
    assert verify_access_token_hash("token-b", "RS256", good) is False
    assert verify_access_token_hash("token-a", "none", good) is False
