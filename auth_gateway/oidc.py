"""
OpenID Provider discovery, client construction and ID token verification.

The provider's discovery document and JWKS are fetched through the Transport
and kept in an ExpiringCache, so a login costs no discovery round trip while
key rotation is still picked up within one cache TTL.
"""
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlsplit

import jwt

from auth_gateway.cached import ExpiringCache
from auth_gateway.errors import (
    InvalidIdToken,
    Misconfiguration,
    TokenExchangeFailed,
    UpstreamUnavailable,
)
from auth_gateway.pkce import build_authorize_url
from auth_gateway.transport import Transport

logger = logging.getLogger(__name__)

# Asymmetric JWS algorithms accepted for ID tokens; "none" and HMAC never are
SUPPORTED_SIGNING_ALGS = ("RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512", "EdDSA")

# Minimum age (seconds) of the cached JWKS before an unknown kid may trigger a re-fetch
MIN_KEY_REFRESH_INTERVAL = 10.0

_REQUIRED_METADATA = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")


class UnknownSigningKey(InvalidIdToken):
    """ID token names a key that is not in the cached JWKS."""


def _validate_url(value: str, what: str, *, allow_query: bool = True) -> str:
    parts = urlsplit(value or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise Misconfiguration(f"{what} must be an absolute http(s) URL: {value!r}")
    if parts.fragment or (parts.query and not allow_query):
        raise Misconfiguration(f"{what} must not carry a fragment or query: {value!r}")
    return value


_KEY_TYPE_BY_ALG_PREFIX = {"RS": "RSA", "PS": "RSA", "ES": "EC", "Ed": "OKP"}
_CURVE_BY_ALG = {"ES256": "secp256r1", "ES384": "secp384r1", "ES512": "secp521r1"}


def _key_fits_algorithm(key: jwt.PyJWK, alg: str) -> bool:
    """Key type must match the alg family; ES algs are also bound to their curve."""
    if key.key_type != _KEY_TYPE_BY_ALG_PREFIX.get(alg[:2]):
        return False
    if alg in _CURVE_BY_ALG:
        return getattr(getattr(key.key, "curve", None), "name", None) == _CURVE_BY_ALG[alg]
    return True


def _load_signing_keys(jwks: dict) -> tuple[jwt.PyJWK, ...]:
    """Usable signature keys from a JWKS document. Keys of unsupported types are skipped."""
    raw_keys = jwks.get("keys")
    if not isinstance(raw_keys, list):
        raise UpstreamUnavailable("JWKS document has no 'keys' array")
    keys = []
    for data in raw_keys:
        if not isinstance(data, dict) or data.get("use", "sig") != "sig":
            continue
        try:
            keys.append(jwt.PyJWK(data))
        except jwt.PyJWTError as e:
            logger.debug("Skipping JWK kid=%s: %s", data.get("kid"), e)
    if not keys:
        raise UpstreamUnavailable("JWKS document has no usable signing keys")
    return tuple(keys)


@dataclass(frozen=True)
class ProviderConfiguration:
    """Snapshot of the discovery document plus the signing keys from jwks_uri."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    signing_keys: tuple[jwt.PyJWK, ...] = field(repr=False, compare=False)
    id_token_signing_alg_values_supported: tuple[str, ...] = ("RS256",)
    code_challenge_methods_supported: tuple[str, ...] = ()

    @classmethod
    def from_discovery(cls, document: dict, jwks: dict) -> "ProviderConfiguration":
        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=document["jwks_uri"],
            signing_keys=_load_signing_keys(jwks),
            id_token_signing_alg_values_supported=tuple(
                document.get("id_token_signing_alg_values_supported") or ("RS256",)
            ),
            code_challenge_methods_supported=tuple(document.get("code_challenge_methods_supported") or ()),
        )

    def allowed_algorithms(self) -> list[str]:
        return [a for a in self.id_token_signing_alg_values_supported if a in SUPPORTED_SIGNING_ALGS]

    def signing_key(self, kid: str | None) -> jwt.PyJWK | None:
        """Key for kid; without a kid, the only key if there is exactly one."""
        if kid is None:
            return self.signing_keys[0] if len(self.signing_keys) == 1 else None
        for key in self.signing_keys:
            if key.key_id == kid:
                return key
        return None


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    id_token: str | None = None

    @classmethod
    def from_json(cls, data: dict) -> "TokenResponse":
        """Raises KeyError/TypeError when the tokens are missing or not strings."""
        access_token = data["access_token"]
        id_token = data.get("id_token") or None
        if not isinstance(access_token, str) or not access_token:
            raise TypeError("access_token must be a non-empty string")
        if id_token is not None and not isinstance(id_token, str):
            raise TypeError("id_token must be a string")
        return cls(access_token=access_token, id_token=id_token)


@dataclass(frozen=True)
class OidcClient:
    """Provider configuration bound to our client identity. Shared read-only across requests."""

    configuration: ProviderConfiguration
    client_id: str
    redirect_uri: str
    client_secret: str | None = field(default=None, repr=False)

    def authorize_url(self, *, scope: str, state: str, nonce: str, code_challenge: str) -> str:
        return build_authorize_url(
            authorization_endpoint=self.configuration.authorization_endpoint,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            nonce=nonce,
        )

    def exchange_code(self, transport: Transport, code: str, code_verifier: str) -> TokenResponse:
        """POST the authorization code and PKCE verifier to the token endpoint."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        auth = (self.client_id, self.client_secret) if self.client_secret else None
        try:
            r = transport.post_form(self.configuration.token_endpoint, data, auth=auth)
        except UpstreamUnavailable as e:
            raise TokenExchangeFailed(e.detail) from e

        if r.status_code != 200:
            err = {}
            if r.headers.get("content-type", "").startswith("application/json"):
                try:
                    err = r.json()
                except ValueError:
                    err = {}
            err_desc = err.get("error_description", err.get("error")) if isinstance(err, dict) else None
            raise TokenExchangeFailed(f"Token endpoint returned HTTP {r.status_code}: {err_desc or r.text[:200]}")
        try:
            return TokenResponse.from_json(r.json())
        except (ValueError, KeyError, TypeError) as e:
            raise TokenExchangeFailed(f"Malformed token response: {e!r}") from e

    def verify_id_token(self, id_token: str, *, nonce: str | None, leeway: int = 0) -> dict:
        """
        Verify signature, iss, aud/azp, exp and iat of an ID token and return its claims.
        When nonce is given the token must carry exactly that nonce.
        Raises InvalidIdToken (UnknownSigningKey if the kid is not in the JWKS).
        """
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.PyJWTError as e:
            raise InvalidIdToken(f"Malformed ID token: {e}") from e

        alg = header.get("alg")
        if alg not in self.configuration.allowed_algorithms():
            raise InvalidIdToken(f"Signing algorithm {alg!r} not allowed")
        key = self.configuration.signing_key(header.get("kid"))
        if key is None:
            raise UnknownSigningKey(f"No signing key for kid={header.get('kid')!r}")
        if not _key_fits_algorithm(key, alg):
            raise InvalidIdToken(f"Key kid={key.key_id!r} ({key.key_type}) cannot verify {alg}")

        try:
            claims = jwt.decode(
                id_token,
                key.key,
                algorithms=[alg],
                audience=self.client_id,
                issuer=self.configuration.issuer,
                leeway=leeway,
                options={"require": ["iss", "sub", "aud", "exp", "iat"]},
            )
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise InvalidIdToken(f"ID token verification failed: {e}") from e

        aud = claims["aud"]
        azp = claims.get("azp")
        if isinstance(aud, list) and len(aud) > 1 and azp is None:
            raise InvalidIdToken("Multiple audiences without azp")
        if azp is not None and azp != self.client_id:
            raise InvalidIdToken(f"azp {azp!r} is not our client")

        if nonce is not None:
            token_nonce = claims.get("nonce")
            if not isinstance(token_nonce, str) or not hmac.compare_digest(token_nonce, nonce):
                raise InvalidIdToken("Nonce mismatch")
        return claims


class OidcClientProvider:
    """
    Ready-to-use OidcClient, rebuilt at most once per ttl seconds.
    Construction performs discovery; failure there should abort startup.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        issuer: str,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not client_id:
            raise Misconfiguration("client_id is required")
        self.transport = transport
        self.issuer = _validate_url(issuer, "Issuer URL", allow_query=False).rstrip("/")
        self.client_id = client_id
        self.redirect_uri = _validate_url(redirect_uri, "Redirect URI")
        self.client_secret = client_secret
        self._configuration: ExpiringCache[ProviderConfiguration] = ExpiringCache(self._discover, ttl, clock=clock)
        self._client: ExpiringCache[OidcClient] = ExpiringCache(self._build_client, ttl, clock=clock)

    def _discover(self) -> ProviderConfiguration:
        url = f"{self.issuer}/.well-known/openid-configuration"
        document = self.transport.get_json(url)
        missing = [name for name in _REQUIRED_METADATA if not isinstance(document.get(name), str)]
        if missing:
            raise Misconfiguration(f"Discovery document lacks {', '.join(missing)}")
        if document["issuer"].rstrip("/") != self.issuer:
            raise Misconfiguration(f"Discovery issuer {document['issuer']!r} does not match {self.issuer!r}")
        jwks = self.transport.get_json(document["jwks_uri"])
        configuration = ProviderConfiguration.from_discovery(document, jwks)
        if not configuration.allowed_algorithms():
            raise Misconfiguration("Provider advertises no supported ID token signing algorithm")
        methods = configuration.code_challenge_methods_supported
        if methods and "S256" not in methods:
            raise Misconfiguration(f"Provider does not support PKCE S256 (advertises {', '.join(methods)})")
        logger.info(
            "Discovered OpenID Provider %s (%d signing keys)", configuration.issuer, len(configuration.signing_keys)
        )
        return configuration

    def _build_client(self) -> OidcClient:
        return OidcClient(
            configuration=self._configuration.get(),
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            client_secret=self.client_secret,
        )

    def configuration(self) -> ProviderConfiguration:
        return self._configuration.get()

    def client(self) -> OidcClient:
        return self._client.get()

    def refresh_keys(self) -> bool:
        """
        Drop the cached discovery data so the next client() re-fetches the JWKS.
        Returns False (and does nothing) if the cache is younger than MIN_KEY_REFRESH_INTERVAL.
        """
        if self._configuration.age < MIN_KEY_REFRESH_INTERVAL:
            return False
        self._configuration.invalidate()
        self._client.invalidate()
        return True

    def verify_id_token(self, id_token: str, *, nonce: str | None, leeway: int = 0) -> tuple[dict, OidcClient]:
        """Verify with the cached client; on an unknown kid re-fetch the JWKS once and retry."""
        client = self.client()
        try:
            return client.verify_id_token(id_token, nonce=nonce, leeway=leeway), client
        except UnknownSigningKey:
            if not self.refresh_keys():
                raise
            logger.info("Unknown ID token signing key; re-fetched provider keys")
            client = self.client()
            return client.verify_id_token(id_token, nonce=nonce, leeway=leeway), client
