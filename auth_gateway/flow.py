"""
Authorization code + PKCE login flow.

initiate() starts a login and returns the provider's authorization URL;
complete() consumes the pending login for a callback's state and returns the
verified ID token to be set as the session credential.
"""
import logging
from dataclasses import dataclass, field

import jwt

from auth_gateway.errors import AccessTokenMismatch, AuthorizationDenied, InvalidState, MissingIdToken
from auth_gateway.flow_store import PendingAuth, PendingAuthStore
from auth_gateway.oidc import OidcClientProvider
from auth_gateway.pkce import generate_nonce, generate_pkce, generate_state, verify_access_token_hash

logger = logging.getLogger(__name__)

BASE_SCOPES = ("openid", "profile")


def build_scope(extra: str = "") -> str:
    """openid and profile first, then any extra scopes without duplicates."""
    scopes = list(BASE_SCOPES)
    for s in extra.split():
        if s not in scopes:
            scopes.append(s)
    return " ".join(scopes)


@dataclass(frozen=True)
class LoginResult:
    credential: str
    claims: dict = field(repr=False)

    @property
    def subject(self) -> str:
        return self.claims.get("sub", "")


class AuthFlowHandler:
    def __init__(
        self,
        store: PendingAuthStore,
        provider: OidcClientProvider,
        *,
        extra_scope: str = "",
        leeway: int = 0,
    ):
        self.store = store
        self.provider = provider
        self.scope = build_scope(extra_scope)
        self.leeway = leeway

    def initiate(self) -> str:
        """
        Generate state, nonce and PKCE pair; remember nonce + verifier under the state.
        Returns the authorization URL to redirect the browser to.
        """
        client = self.provider.client()
        state = generate_state()
        nonce = generate_nonce()
        code_verifier, code_challenge = generate_pkce()
        url = client.authorize_url(scope=self.scope, state=state, nonce=nonce, code_challenge=code_challenge)
        self.store.put(state, PendingAuth(nonce=nonce, pkce_verifier=code_verifier))
        return url

    def complete(self, code: str, state: str, *, iss: str | None = None) -> LoginResult:
        """
        Finish the login for a callback carrying code and state.
        Raises InvalidState, TokenExchangeFailed, MissingIdToken, InvalidIdToken
        or AccessTokenMismatch; the pending login is consumed in every case.
        """
        pending = self.store.take(state)
        if pending is None:
            raise InvalidState("Unknown, expired or already used state")

        client = self.provider.client()
        # RFC 9207: the authorization response names the issuer that produced it
        if iss is not None and iss != client.configuration.issuer:
            raise InvalidState(f"Authorization response issuer {iss!r} does not match")

        tokens = client.exchange_code(self.provider.transport, code, pending.pkce_verifier)
        if not tokens.id_token:
            raise MissingIdToken("Token response has no id_token")

        claims, _ = self.provider.verify_id_token(tokens.id_token, nonce=pending.nonce, leeway=self.leeway)

        expected_hash = claims.get("at_hash")
        if expected_hash is not None and tokens.access_token:
            alg = jwt.get_unverified_header(tokens.id_token)["alg"]
            if not isinstance(expected_hash, str) or not verify_access_token_hash(
                tokens.access_token, alg, expected_hash
            ):
                raise AccessTokenMismatch("at_hash does not match the access token")

        result = LoginResult(credential=tokens.id_token, claims=claims)
        logger.info("Login completed for sub=%s client_id=%s", result.subject, client.client_id)
        return result

    def reject(self, state: str | None, error: str, description: str | None = None) -> AuthorizationDenied:
        """
        The provider redirected back with ?error=. Drop the pending login for state
        so it cannot be completed later, and return the error to raise.
        """
        if state:
            self.store.take(state)
        return AuthorizationDenied(f"Provider returned error={error!r}: {description or ''}".strip())
