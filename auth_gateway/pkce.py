"""
PKCE (RFC 7636), state/nonce generation, authorization URL and at_hash helpers
for the login flow. S256 only.
"""
import hashlib
import hmac
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode, urlsplit


def _b64url(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Random value for ID token binding."""
    return secrets.token_urlsafe(32)


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    code_verifier = secrets.token_urlsafe(32)
    code_challenge = _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())
    return code_verifier, code_challenge


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
    nonce: str | None = None,
) -> str:
    """Build the provider's authorization URL; keeps any query the endpoint already carries."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if nonce:
        params["nonce"] = nonce
    separator = "&" if urlsplit(authorization_endpoint).query else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


# Hash used for at_hash is the one of the ID token's JWS algorithm (OIDC Core 3.1.3.6)
_HASH_BY_SUFFIX = {"256": hashlib.sha256, "384": hashlib.sha384, "512": hashlib.sha512}


def access_token_hash(access_token: str, alg: str) -> str:
    """
    Left half of hash(access_token), base64url without padding.
    Raises ValueError for algorithms without a defined hash.
    """
    if alg == "EdDSA":
        hash_fn = hashlib.sha512
    else:
        hash_fn = _HASH_BY_SUFFIX.get(alg[-3:]) if alg[:2] in ("RS", "PS", "ES", "HS") else None
    if hash_fn is None:
        raise ValueError(f"No at_hash algorithm for {alg!r}")
    digest = hash_fn(access_token.encode("ascii")).digest()
    return _b64url(digest[: len(digest) // 2])


def verify_access_token_hash(access_token: str, alg: str, expected: str) -> bool:
    try:
        actual = access_token_hash(access_token, alg)
    except (ValueError, UnicodeEncodeError):
        return False
    return hmac.compare_digest(actual, expected)
