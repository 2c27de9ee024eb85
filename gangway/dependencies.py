"""
FastAPI dependencies giving handlers their collaborators.

``create_app`` stores the settings, session store, OAuth2 client, token
verifier and templates on ``app.state``; handlers never reach for module
globals, so tests can swap any of them for a fake.
"""

import logging

from fastapi import Request
from fastapi.templating import Jinja2Templates

from gangway.auth.oauth import OAuth2Client
from gangway.auth.session import ID_TOKEN_SESSION, CookieSessionStore
from gangway.auth.utils import TokenVerifier
from gangway.config import Settings
from gangway.errors import LoginRequired, SessionStoreError

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session_store(request: Request) -> CookieSessionStore:
    return request.app.state.session_store


def get_oauth_client(request: Request) -> OAuth2Client:
    return request.app.state.oauth_client


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def login_required(request: Request) -> None:
    """
    Gate a route on the presence of an ID token session.

    Raises:
        LoginRequired: If the ID token session is unreadable or empty
    """
    sessions = get_session_store(request)
    try:
        session = sessions.get(request, ID_TOKEN_SESSION)
    except SessionStoreError as e:
        logger.info("Unreadable ID token session on %s: %s", request.url.path, e)
        raise LoginRequired("ID token session unreadable") from e

    if session.values.get("id_token") is None:
        raise LoginRequired("No ID token in session")
