"""
Pytest fixtures for auth_gateway: an in-process OpenID Provider served through
httpx.MockTransport, so no test touches the network.
"""
import hashlib
import time
from base64 import urlsafe_b64encode
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from auth_gateway.flow import AuthFlowHandler
from auth_gateway.flow_store import PendingAuthStore
from auth_gateway.oidc import OidcClientProvider
from auth_gateway.transport import Transport

ISSUER = "https://idp.example/realms/test"
CLIENT_ID = "nimble"
REDIRECT_URI = "http://localhost:3000/api/auth/redirect"

DISCOVERY_PATH = "/realms/test/.well-known/openid-configuration"
JWKS_PATH = "/realms/test/protocol/openid-connect/certs"
TOKEN_PATH = "/realms/test/protocol/openid-connect/token"


def _int_to_b64url(value: int, length: int = 0) -> str:
    """Encode a positive int as base64url (JWK n/e; EC x/y with a fixed length)."""
    length = length or (value.bit_length() + 7) // 8
    return urlsafe_b64encode(value.to_bytes(length, "big")).rstrip(b"=").decode("ascii")


def make_at_hash(access_token: str) -> str:
    """at_hash for RS256: left half of SHA-256, base64url without padding."""
    digest = hashlib.sha256(access_token.encode("ascii")).digest()
    return urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdP:
    """Minimal OpenID Provider: discovery, JWKS and token endpoint."""

    def __init__(self):
        self.key = generate_private_key(65537, 2048, default_backend())
        self.kid = "test-key"
        self.calls: list[tuple[str, str]] = []
        self.token_requests: list[dict] = []
        self.token_auth_headers: list[str | None] = []
        self.token_status = 200
        self.token_body: dict = {}
        self.discovery_overrides: dict = {}
        self.ec_keys: dict = {}
        self.down = False

    def discovery(self) -> dict:
        doc = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
            "token_endpoint": f"https://idp.example{TOKEN_PATH}",
            "jwks_uri": f"https://idp.example{JWKS_PATH}",
            "userinfo_endpoint": f"{ISSUER}/protocol/openid-connect/userinfo",
            "response_types_supported": ["code"],
            "scopes_supported": ["openid", "profile", "email"],
            "id_token_signing_alg_values_supported": ["RS256"],
            "code_challenge_methods_supported": ["S256"],
        }
        doc.update(self.discovery_overrides)
        return doc

    def jwks(self) -> dict:
        pub = self.key.public_key().public_numbers()
        keys = [
            {
                "kty": "RSA",
                "kid": self.kid,
                "alg": "RS256",
                "use": "sig",
                "n": _int_to_b64url(pub.n),
                "e": _int_to_b64url(pub.e),
            }
        ]
        for kid, key in self.ec_keys.items():
            point = key.public_key().public_numbers()
            keys.append(
                {
                    "kty": "EC",
                    "kid": kid,
                    "alg": "ES256",
                    "use": "sig",
                    "crv": "P-256",
                    "x": _int_to_b64url(point.x, 32),
                    "y": _int_to_b64url(point.y, 32),
                }
            )
        return {"keys": keys}

    def rotate_key(self, kid: str) -> None:
        self.key = generate_private_key(65537, 2048, default_backend())
        self.kid = kid

    def add_ec_key(self, kid: str) -> None:
        """Publish a P-256 key next to the RSA key and allow ES256 in discovery."""
        self.ec_keys[kid] = ec.generate_private_key(ec.SECP256R1())
        self.discovery_overrides["id_token_signing_alg_values_supported"] = ["RS256", "ES256"]

    def id_token(
        self,
        *,
        nonce: str | None = None,
        access_token: str | None = None,
        signed_by: tuple[str, str] | None = None,
        **overrides,
    ) -> str:
        """signed_by=(kid, alg) picks a published EC key instead of the RSA key."""
        now = int(time.time())
        payload = {
            "iss": ISSUER,
            "sub": "user-42",
            "aud": CLIENT_ID,
            "exp": now + 300,
            "iat": now,
            "preferred_username": "alice",
        }
        if nonce is not None:
            payload["nonce"] = nonce
        if access_token is not None:
            payload["at_hash"] = make_at_hash(access_token)
        payload.update(overrides)
        payload = {k: v for k, v in payload.items() if v is not None}
        if signed_by is not None:
            kid, alg = signed_by
            return jwt.encode(payload, self.ec_keys[kid], algorithm=alg, headers={"kid": kid})
        return jwt.encode(payload, self.key, algorithm="RS256", headers={"kid": self.kid})

    def issue_tokens(self, nonce: str, *, access_token: str = "access-token-1", **overrides) -> None:
        """Next token endpoint call returns a consistent access_token + id_token pair."""
        self.token_body = {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": 300,
            "scope": "openid profile",
            "id_token": self.id_token(nonce=nonce, access_token=access_token, **overrides),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method == "GET" and path == DISCOVERY_PATH:
            return httpx.Response(200, json=self.discovery())
        if request.method == "GET" and path == JWKS_PATH:
            return httpx.Response(200, json=self.jwks())
        if request.method == "POST" and path == TOKEN_PATH:
            self.token_requests.append(dict(parse_qsl(request.content.decode("ascii"))))
            self.token_auth_headers.append(request.headers.get("authorization"))
            return httpx.Response(self.token_status, json=self.token_body)
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def idp():
    return FakeIdP()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(idp):
    t = Transport(httpx.Client(transport=httpx.MockTransport(idp.handler)))
    yield t
    t.close()


@pytest.fixture
def provider(transport, clock):
    return OidcClientProvider(
        transport,
        issuer=ISSUER,
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        ttl=60,
        clock=clock,
    )


@pytest.fixture
def store():
    return PendingAuthStore(ttl=600)


@pytest.fixture
def flow(store, provider):
    return AuthFlowHandler(store, provider)
