"""
FastAPI Application Factory
===========================

Entry point for the Gangway portal, which lets a user log in with an OIDC
provider and take away a kubeconfig carrying their ID and refresh tokens.

Routers (all under GANGWAY_HTTP_PATH):
    - /            : Home page
    - /login       : Start the authorization code flow
    - /callback    : Provider redirect target
    - /logout      : Forget the session
    - /commandline : kubectl instructions (requires login)
    - /kubeconfig  : kubeconfig download (requires login)

Running the Service:
    Development:
        uvicorn gangway.main:create_app --factory --reload --port 8080

    Production:
        uvicorn gangway.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4

    Installed entry point:
        gangway

    With custom log level:
        GANGWAY_LOG_LEVEL=DEBUG uvicorn gangway.main:create_app --factory --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from gangway.auth.oauth import OAuth2Client, build_http_client
from gangway.auth.routes import auth_router
from gangway.auth.session import CookieSessionStore
from gangway.auth.utils import TokenVerifier
from gangway.config import Settings, get_settings, validate_configuration
from gangway.errors import GangwayError, RedirectHome
from gangway.kubeconfig.routes import pages_router

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

logger = logging.getLogger("gangway.main")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_templates(settings: Settings) -> Jinja2Templates:
    """Search the operator's template directory before the bundled one."""
    directories: List[Path] = []
    if settings.CUSTOM_HTML_TEMPLATES_DIR:
        directories.append(Path(settings.CUSTOM_HTML_TEMPLATES_DIR))
    directories.append(TEMPLATES_DIR)
    return Jinja2Templates(directory=directories)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_store: Optional[CookieSessionStore] = None,
    oauth_client: Optional[OAuth2Client] = None,
    token_verifier: Optional[TokenVerifier] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Every collaborator can be passed in; anything left out is built from
    ``settings``.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    owns_http_client = http_client is None
    if http_client is None:
        http_client = build_http_client(settings)

    if session_store is None:
        session_store = CookieSessionStore(
            settings.SESSION_SECURITY_KEY,
            max_age=settings.SESSION_MAX_AGE,
            path=settings.root_path_prefix,
            secure=settings.SESSION_COOKIE_SECURE,
        )
    if oauth_client is None:
        oauth_client = OAuth2Client.from_settings(settings, http_client)
    if token_verifier is None:
        token_verifier = TokenVerifier(
            settings.CLIENT_ID,
            jwks_url=settings.JWKS_URL,
            http_client=http_client,
            jwks_cache_seconds=settings.JWKS_CACHE_SECONDS,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)

        report = validate_configuration(settings)
        for warning in report["warnings"]:
            logger.warning("Configuration: %s", warning)
        logger.info(
            "Starting gangway",
            extra={"clusters": report["clusters"], "http_path": settings.HTTP_PATH},
        )

        yield

        if owns_http_client:
            await http_client.aclose()
        logger.info("Gangway shutdown complete")

    app = FastAPI(
        title="Gangway",
        description="Log in with OIDC and download a kubeconfig",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.session_store = session_store
    app.state.oauth_client = oauth_client
    app.state.token_verifier = token_verifier
    app.state.templates = build_templates(settings)

    app.include_router(pages_router, prefix=settings.HTTP_PATH)
    app.include_router(auth_router, prefix=settings.HTTP_PATH)

    @app.exception_handler(RedirectHome)
    async def redirect_home_handler(request: Request, exc: RedirectHome) -> Response:
        logger.info("Redirecting %s home: %s", request.url.path, exc)
        response = RedirectResponse(url=settings.root_path_prefix, status_code=exc.status_code)
        if exc.clear_sessions:
            session_store.cleanup_all(response)
        return response

    @app.exception_handler(GangwayError)
    async def gangway_error_handler(request: Request, exc: GangwayError) -> Response:
        logger.error(
            f"{type(exc).__name__}: {exc}",
            extra={"path": request.url.path, "method": request.method},
            exc_info=exc.__cause__ is not None,
        )
        return PlainTextResponse(exc.detail, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> Response:
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return PlainTextResponse("Internal Server Error", status_code=500)

    return app


def run() -> None:
    """Serve the portal with uvicorn using the GANGWAY_ settings."""
    settings = get_settings()

    uvicorn.run(
        "gangway.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
