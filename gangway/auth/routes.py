"""
Authentication routes for OIDC login and callback handling.

This module implements the OAuth 2.0 / OIDC authorization code flow:
login issues a state and sends the browser to the provider, the callback
checks the state, exchanges the code and stores the tokens in their cookie
sessions, and logout forgets all of it.
"""

import asyncio
import base64
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from gangway.auth.oauth import OAuth2Client, TokenResponse
from gangway.auth.session import (
    ID_TOKEN_SESSION,
    PRIMARY_SESSION,
    REFRESH_TOKEN_SESSION,
    CookieSessionStore,
)
from gangway.config import Settings
from gangway.dependencies import get_app_settings, get_oauth_client, get_session_store
from gangway.errors import StateMismatchError, TokenExchangeError

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


def generate_state() -> str:
    """
    Generate the anti-CSRF state for one login attempt.

    Returns:
        Standard base64 encoding of 32 random bytes
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


# How often the callback checks whether the browser is still connected
DISCONNECT_POLL_SECONDS = 0.5


async def exchange_while_connected(request: Request, oauth: OAuth2Client, code: str) -> TokenResponse:
    """
    Exchange ``code`` but abandon the outbound call if the browser disconnects.

    Raises:
        TokenExchangeError: If the exchange fails or the client went away
    """
    exchange = asyncio.ensure_future(oauth.exchange(code))
    try:
        while True:
            done, _ = await asyncio.wait({exchange}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return exchange.result()
            if await request.is_disconnected():
                raise TokenExchangeError("client disconnected during token exchange")
    finally:
        if not exchange.done():
            exchange.cancel()
            await asyncio.wait({exchange})


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login")
async def login(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sessions: CookieSessionStore = Depends(get_session_store),
    oauth: OAuth2Client = Depends(get_oauth_client),
):
    """
    Initiate the OIDC login flow by redirecting to the provider.

    The state is saved in the primary session before the redirect is sent;
    if the session cannot be read or written no redirect happens.
    """
    session = sessions.get(request, PRIMARY_SESSION)

    state = generate_state()
    session.values["state"] = state

    authorization_url = oauth.authorization_url(state, audience=settings.AUDIENCE)
    response = RedirectResponse(url=authorization_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    sessions.save(response, session)

    logger.debug("Redirecting to provider for login")
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback")
async def callback(
    request: Request,
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    settings: Settings = Depends(get_app_settings),
    sessions: CookieSessionStore = Depends(get_session_store),
    oauth: OAuth2Client = Depends(get_oauth_client),
):
    """
    Handle the OAuth callback from the provider.

    This endpoint:
    1. Loads the three sessions
    2. Validates the state parameter against the primary session
    3. Exchanges the authorization code for tokens
    4. Saves the ID token and refresh token sessions
    5. Redirects to the commandline page
    """
    session = sessions.get(request, PRIMARY_SESSION)
    id_token_session = sessions.get(request, ID_TOKEN_SESSION)
    refresh_token_session = sessions.get(request, REFRESH_TOKEN_SESSION)

    expected_state = session.values.get("state")
    if not isinstance(expected_state, str) or state != expected_state:
        logger.warning("Callback state does not match the login state")
        raise StateMismatchError("state mismatch")

    if error or not code:
        raise TokenExchangeError(
            f"Provider returned no authorization code: {error_description or error or 'missing code'}"
        )

    token = await exchange_while_connected(request, oauth, code)

    session.values.pop("state", None)
    id_token_session.values["id_token"] = token.id_token
    refresh_token_session.values["refresh_token"] = token.refresh_token or ""

    response = RedirectResponse(
        url=f"{settings.HTTP_PATH}/commandline",
        status_code=status.HTTP_303_SEE_OTHER,
    )
    sessions.save(response, session)
    sessions.save(response, id_token_session)
    sessions.save(response, refresh_token_session)

    logger.info("Login completed", extra={"has_refresh_token": bool(token.refresh_token)})
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.api_route("/logout", methods=["GET", "POST"])
async def logout(
    settings: Settings = Depends(get_app_settings),
    sessions: CookieSessionStore = Depends(get_session_store),
):
    """Forget every session and go home. Tokens are not revoked at the provider."""
    response = RedirectResponse(
        url=settings.root_path_prefix,
        status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    )
    sessions.cleanup_all(response)
    return response
