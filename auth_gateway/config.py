"""
Auth gateway configuration. All values come from the environment; the defaults
point at a local development identity provider.
"""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# OpenID Provider (issuer) — discovery document is fetched from {ISSUER}/.well-known/openid-configuration
ISSUER = os.environ.get("OIDC_ISSUER", "https://auth.localhost/realms/dev").rstrip("/")

# Our client_id (must be registered at the provider)
CLIENT_ID = os.environ.get("OIDC_CLIENT_ID", "nimble")

# Confidential clients only; public clients rely on PKCE alone
CLIENT_SECRET = os.environ.get("OIDC_CLIENT_SECRET", "").strip() or None

# Where the provider redirects after authorization
REDIRECT_URI = os.environ.get("OIDC_REDIRECT_URI", "http://localhost:3000/api/auth/redirect")

# Scopes requested in addition to "openid profile" (space separated)
EXTRA_SCOPE = os.environ.get("OIDC_SCOPE", "")

# PEM bundle with the root CA trusted for provider calls. Unset = system trust store.
CA_CERT_PATH = os.environ.get("OIDC_CA_CERT_PATH", "").strip() or None

# Timeout (seconds) for discovery, JWKS and token endpoint calls
HTTP_TIMEOUT = float(os.environ.get("OIDC_HTTP_TIMEOUT", "10"))

# How long discovery metadata and JWKS are served from cache (seconds)
CACHE_TTL_SECONDS = float(os.environ.get("OIDC_CACHE_TTL", "60"))

# Pending login lifetime (seconds) between /api/auth/login and the callback. 0 = never expire.
PENDING_AUTH_TTL = float(os.environ.get("PENDING_AUTH_TTL", "600")) or None

# Clock skew tolerated when checking exp/iat of ID tokens (seconds)
ID_TOKEN_LEEWAY = int(os.environ.get("ID_TOKEN_LEEWAY", "0"))

# Session check verifies the id_token cookie signature (not just its structure)
SESSION_VERIFY_SIGNATURE = _env_bool("SESSION_VERIFY_SIGNATURE", True)

# Cookie holding the ID token after login
SESSION_COOKIE_NAME = "id_token"
COOKIE_SECURE = _env_bool("COOKIE_SECURE", False)

LISTEN_HOST = os.environ.get("LISTEN_HOST", "0.0.0.0")
LISTEN_PORT = int(os.environ.get("LISTEN_PORT", "8000"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
