"""
Credential assembly.

``generate_info`` rebuilds, for every authenticated request, the record used
by the commandline page and the kubeconfig download. It reads the cluster CA
fresh from disk, pulls the tokens out of their cookie sessions and extracts
the user's identity from the ID token claims.
"""

import logging

from fastapi import Request

from gangway.auth.session import ID_TOKEN_SESSION, REFRESH_TOKEN_SESSION, CookieSessionStore
from gangway.auth.utils import TokenVerifier
from gangway.config import Settings
from gangway.errors import SessionReset
from gangway.models import UserInfo

logger = logging.getLogger(__name__)


def read_cluster_ca(path: str) -> bytes:
    """Read the CA shown to users; a missing file only costs the CA output."""
    try:
        with open(path, "rb") as ca_file:
            return ca_file.read()
    except OSError as e:
        logger.error("Failed to read CA file %s: %s", path, e)
        return b""


async def generate_info(
    request: Request,
    settings: Settings,
    sessions: CookieSessionStore,
    verifier: TokenVerifier,
) -> UserInfo:
    """
    Assemble the :class:`UserInfo` for the current request.

    Raises:
        SessionStoreError: If a session cookie cannot be decoded
        SessionReset: If the stored tokens are missing; the caller's
                      response clears every session and goes home
        TokenParseError: If the ID token cannot be parsed
        ClaimError: If the username or issuer claim is unusable
    """
    ca_bytes = read_cluster_ca(settings.CLUSTER_CA_PATH)

    id_token_session = sessions.get(request, ID_TOKEN_SESSION)
    refresh_token_session = sessions.get(request, REFRESH_TOKEN_SESSION)

    id_token = id_token_session.values.get("id_token")
    if not isinstance(id_token, str):
        raise SessionReset("No usable ID token in session")

    refresh_token = refresh_token_session.values.get("refresh_token")
    if not isinstance(refresh_token, str):
        if not settings.ALLOW_MISSING_REFRESH_TOKEN:
            raise SessionReset("No usable refresh token in session")
        refresh_token = ""

    claims = await verifier.parse(id_token)

    username = claims.require_string(settings.USERNAME_CLAIM, detail="Could not parse Username claim")
    kube_cfg_user = "@".join([username, settings.CLUSTER_NAME])

    if settings.EMAIL_CLAIM:
        logger.warning(
            "using the EMAIL_CLAIM setting is deprecated. Gangway uses `USERNAME_CLAIM@CLUSTER_NAME`. "
            "This field will be removed in a future version."
        )

    issuer_url = claims.require_string("iss", detail="Could not parse Issuer URL claim")

    if not settings.CLIENT_SECRET:
        logger.warning(
            "Setting an empty Client Secret should only be done if you have no other option "
            "and is an inherent security risk."
        )

    return UserInfo(
        cluster_name=settings.CLUSTER_NAME,
        username=username,
        kube_cfg_user=kube_cfg_user,
        id_token=id_token,
        refresh_token=refresh_token,
        client_id=settings.CLIENT_ID,
        client_secret=settings.CLIENT_SECRET,
        issuer_url=issuer_url,
        api_server_url=settings.API_SERVER_URL,
        cluster_ca=ca_bytes,
        http_path=settings.HTTP_PATH,
        clusters=list(settings.CLUSTERS),
    )
