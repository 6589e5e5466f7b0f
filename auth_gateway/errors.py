"""
Failures of the login flow and session check, classified by who caused them.
`message` is what the end user sees; details go to the server log only.
"""


class AuthError(Exception):
    status_code = 500
    message = "Authentication failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class UpstreamUnavailable(AuthError):
    """Discovery, JWKS or token endpoint unreachable or erroring. Retryable."""

    status_code = 500
    message = "Identity provider unavailable"


class TokenExchangeFailed(UpstreamUnavailable):
    """Token endpoint call failed or the provider rejected the code."""

    message = "Failed to exchange code for token"


class Misconfiguration(AuthError):
    """Issuer URL, redirect URI or discovery document unusable. Fatal at startup."""

    status_code = 500
    message = "Authentication is misconfigured"


class InvalidState(AuthError):
    """Unknown, replayed, expired or forged state parameter."""

    status_code = 400
    message = "Invalid state"


class AuthorizationDenied(AuthError):
    """Provider redirected back with ?error= instead of a code."""

    status_code = 400
    message = "Authorization denied"


class MissingIdToken(AuthError):
    status_code = 400
    message = "Missing ID token"


class InvalidIdToken(AuthError):
    status_code = 400
    message = "Invalid ID token"


class AccessTokenMismatch(AuthError):
    """at_hash claim does not match the access token returned alongside the ID token."""

    status_code = 400
    message = "Invalid access token hash"


class Unauthenticated(AuthError):
    status_code = 401
    message = "Not authenticated"
