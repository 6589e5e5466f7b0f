"""
Login, redirect callback and session check routes.
GET /api/auth/login, /api/auth/redirect, /internal/auth_request.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from auth_gateway.config import COOKIE_SECURE, SESSION_COOKIE_NAME
from auth_gateway.errors import AuthError, InvalidState
from auth_gateway.flow import AuthFlowHandler
from auth_gateway.session import SessionProbe

logger = logging.getLogger(__name__)
router = APIRouter()


def get_flow(request: Request) -> AuthFlowHandler:
    return request.app.state.auth_flow


def get_session_probe(request: Request) -> SessionProbe:
    return request.app.state.session_probe


def auth_error_handler(request: Request, exc: AuthError) -> PlainTextResponse:
    """Short public message only; provider details stay in the log."""
    if exc.status_code >= 500:
        logger.error("%s %s: %s: %s", request.method, request.url.path, type(exc).__name__, exc.detail)
    else:
        logger.warning("%s %s: %s: %s", request.method, request.url.path, type(exc).__name__, exc.detail)
    return PlainTextResponse(exc.message, status_code=exc.status_code)


@router.get("/api/auth/login")
def auth_login(request: Request):
    """Start a login: remember state/nonce/PKCE verifier and redirect to the provider."""
    url = get_flow(request).initiate()
    return RedirectResponse(url=url, status_code=307)


@router.get("/api/auth/redirect")
def auth_redirect(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    iss: str | None = None,
    session_state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """
    Callback from the provider. On success sets the id_token cookie and redirects to /.
    session_state is accepted for provider compatibility and not used.
    """
    flow = get_flow(request)
    if error:
        raise flow.reject(state, error, error_description)
    if not state:
        raise InvalidState("Missing state parameter")
    if not code:
        # Consume the state anyway so a code-less callback cannot be retried with it
        flow.store.take(state)
        raise InvalidState("Missing code parameter")

    result = flow.complete(code, state, iss=iss)

    response = RedirectResponse(url="/", status_code=307)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        result.credential,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    return response


@router.get("/internal/auth_request", response_class=PlainTextResponse)
def auth_request(request: Request):
    """For a reverse proxy's auth subrequest: 200 when the id_token cookie is valid."""
    get_session_probe(request).check(request.cookies.get(SESSION_COOKIE_NAME))
    return PlainTextResponse("Authenticated")
