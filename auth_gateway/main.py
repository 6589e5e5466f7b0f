"""
Auth gateway — OIDC login (authorization code + PKCE) in front of the web app.
GET /api/auth/login, /api/auth/redirect, /internal/auth_request, /health.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from auth_gateway import config
from auth_gateway.errors import AuthError
from auth_gateway.flow import AuthFlowHandler
from auth_gateway.flow_store import PendingAuthStore
from auth_gateway.oidc import OidcClientProvider
from auth_gateway.routes import auth_error_handler, router as auth_router
from auth_gateway.session import SessionProbe
from auth_gateway.transport import Transport, build_http_client

logger = logging.getLogger(__name__)


def build_provider() -> OidcClientProvider:
    """Transport with the configured CA + discovery. Raises Misconfiguration / UpstreamUnavailable."""
    transport = Transport(build_http_client(config.CA_CERT_PATH, config.HTTP_TIMEOUT))
    return OidcClientProvider(
        transport,
        issuer=config.ISSUER,
        client_id=config.CLIENT_ID,
        redirect_uri=config.REDIRECT_URI,
        client_secret=config.CLIENT_SECRET,
        ttl=config.CACHE_TTL_SECONDS,
    )


def install(app: FastAPI, provider: OidcClientProvider, store: PendingAuthStore | None = None) -> None:
    """Attach the flow handler and session probe for provider to app.state."""
    if store is None:
        store = PendingAuthStore(ttl=config.PENDING_AUTH_TTL)
    app.state.oidc_provider = provider
    app.state.auth_flow = AuthFlowHandler(
        store, provider, extra_scope=config.EXTRA_SCOPE, leeway=config.ID_TOKEN_LEEWAY
    )
    app.state.session_probe = SessionProbe(
        provider, verify_signature=config.SESSION_VERIFY_SIGNATURE, leeway=config.ID_TOKEN_LEEWAY
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Discover the provider on startup; any failure aborts startup instead of serving broken logins."""
    owned = getattr(app.state, "oidc_provider", None) is None
    if owned:
        install(app, build_provider())
    yield
    if owned:
        app.state.oidc_provider.transport.close()


def create_app(provider: OidcClientProvider | None = None, store: PendingAuthStore | None = None) -> FastAPI:
    """Application factory. With a provider (tests), lifespan skips discovery."""
    app = FastAPI(title="Auth Gateway", version="0.1.0", lifespan=lifespan)
    app.include_router(auth_router, tags=["auth"])
    app.add_exception_handler(AuthError, auth_error_handler)
    if provider is not None:
        install(app, provider, store)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "auth_gateway"}

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "auth_gateway.main:create_app",
        factory=True,
        host=config.LISTEN_HOST,
        port=config.LISTEN_PORT,
    )
