"""
Session check for requests carrying the id_token cookie set at login.
"""
import logging

import jwt

from auth_gateway.errors import InvalidIdToken, Unauthenticated
from auth_gateway.oidc import OidcClientProvider

logger = logging.getLogger(__name__)


class SessionProbe:
    """
    Validates a previously issued credential. Structure is always checked; with
    verify_signature the token is verified like at login, minus the nonce (there
    is no pending login to bind it to).
    """

    def __init__(self, provider: OidcClientProvider, *, verify_signature: bool = True, leeway: int = 0):
        self.provider = provider
        self.verify_signature = verify_signature
        self.leeway = leeway

    def check(self, credential: str | None) -> dict:
        """Return the credential's claims or raise Unauthenticated. UpstreamUnavailable propagates."""
        if not credential:
            raise Unauthenticated("No session credential")
        try:
            claims = jwt.decode(credential, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise Unauthenticated(f"Credential is not a JWT: {e}") from e

        if not self.verify_signature:
            return claims
        try:
            claims, _ = self.provider.verify_id_token(credential, nonce=None, leeway=self.leeway)
        except InvalidIdToken as e:
            raise Unauthenticated(e.detail) from e
        return claims
