"""
Page routes: the home page, the commandline instructions and the kubeconfig
download. The last two are gated on a logged-in session.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, Response
from fastapi.templating import Jinja2Templates

from gangway.auth.session import CookieSessionStore
from gangway.auth.utils import TokenVerifier
from gangway.config import Settings
from gangway.dependencies import (
    get_app_settings,
    get_session_store,
    get_templates,
    get_token_verifier,
    login_required,
)
from gangway.kubeconfig.generator import render_kubeconfig
from gangway.kubeconfig.info import generate_info

logger = logging.getLogger(__name__)


pages_router = APIRouter(tags=["pages"])


@pages_router.get("/", response_class=HTMLResponse)
async def home(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    templates: Jinja2Templates = Depends(get_templates),
):
    return templates.TemplateResponse(
        request,
        "home.html",
        {"http_path": settings.HTTP_PATH},
    )


@pages_router.get("/commandline", response_class=HTMLResponse, dependencies=[Depends(login_required)])
async def commandline(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sessions: CookieSessionStore = Depends(get_session_store),
    verifier: TokenVerifier = Depends(get_token_verifier),
    templates: Jinja2Templates = Depends(get_templates),
):
    """Render kubectl instructions for the logged-in user."""
    info = await generate_info(request, settings, sessions, verifier)
    return templates.TemplateResponse(
        request,
        "commandline.html",
        {"info": info, "http_path": settings.HTTP_PATH},
    )


@pages_router.get("/kubeconfig", dependencies=[Depends(login_required)])
async def kubeconfig(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sessions: CookieSessionStore = Depends(get_session_store),
    verifier: TokenVerifier = Depends(get_token_verifier),
):
    """Return the kubeconfig as a download."""
    info = await generate_info(request, settings, sessions, verifier)
    document = render_kubeconfig(info)
    logger.info("Serving kubeconfig for %s", info.kube_cfg_user)

    # tell the browser the returned content should be downloaded
    return Response(
        content=document,
        media_type="application/x-yaml",
        headers={"Content-Disposition": "Attachment"},
    )
