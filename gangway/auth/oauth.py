"""
OAuth 2.0 authorization code client.

Builds the provider authorization URL and exchanges the authorization code
for tokens. All outbound traffic goes through one ``httpx.AsyncClient`` built
from the settings, so a private CA bundle, proxy environment variables and
the request timeout apply to every provider call.
"""

import logging
import ssl
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, quote_plus, urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field

from gangway.config import Settings
from gangway.errors import TokenExchangeError

logger = logging.getLogger(__name__)


# Client authentication at the token endpoint
AUTH_STYLE_AUTO = "auto"
AUTH_STYLE_BASIC = "basic"
AUTH_STYLE_POST = "post"


class TokenResponse(BaseModel):
    """Token endpoint response; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = Field(None, description="OAuth2 access token")
    token_type: Optional[str] = Field(None, description="Token type")
    id_token: Optional[str] = Field(None, description="OIDC ID token")
    refresh_token: Optional[str] = Field(None, description="Refresh token, if the provider issued one")
    expires_in: Optional[int] = Field(None, description="Access token lifetime in seconds")


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    Create the HTTP client used for provider calls.

    The system trust store is always used; ``TRUSTED_CA_PATH`` adds to it.
    """
    verify: ssl.SSLContext = ssl.create_default_context()
    if settings.TRUSTED_CA_PATH:
        verify.load_verify_locations(cafile=settings.TRUSTED_CA_PATH)
        logger.info("Trusting additional CA bundle %s for provider calls", settings.TRUSTED_CA_PATH)

    return httpx.AsyncClient(
        verify=verify,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        trust_env=True,
    )


class OAuth2Client:
    """Authorization code flow against a single provider."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        token_url: str,
        redirect_url: str,
        scopes: List[str],
        http_client: httpx.AsyncClient,
        auth_style: str = AUTH_STYLE_AUTO,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.redirect_url = redirect_url
        self.scopes = list(scopes)
        self.http_client = http_client
        self.auth_style = auth_style
        self._detected_style: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "OAuth2Client":
        return cls(
            client_id=settings.CLIENT_ID,
            client_secret=settings.CLIENT_SECRET,
            authorize_url=settings.AUTHORIZE_URL,
            token_url=settings.TOKEN_URL,
            redirect_url=settings.REDIRECT_URL,
            scopes=settings.scopes_list,
            http_client=http_client,
            auth_style=settings.TOKEN_AUTH_STYLE,
        )

    def authorization_url(self, state: str, **extra_params: str) -> str:
        """
        Build the URL the browser is sent to at login.

        Args:
            state: Anti-CSRF value echoed back on the callback
            extra_params: Provider specific parameters (e.g., audience)
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(extra_params)

        separator = "&" if "?" in self.authorize_url else "?"
        return f"{self.authorize_url}{separator}{urlencode(params)}"

    async def exchange(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        The code is single use, so a failed exchange is never retried. The one
        exception is client authentication: in ``auto`` style the credentials
        go in an HTTP Basic header first, and if the provider rejects the
        client (before it looks at the code) they are sent once more in the
        form body. The style that worked is remembered for later exchanges.

        Raises:
            TokenExchangeError: On transport errors, non-2xx responses or an
                                unparseable body
        """
        style = self._resolve_auth_style()
        response = await self._request_token(code, style)
        token_data = _parse_token_body(response)

        if (
            self.auth_style == AUTH_STYLE_AUTO
            and self._detected_style is None
            and style == AUTH_STYLE_BASIC
            and _client_rejected(response, token_data)
        ):
            logger.info("Token endpoint rejected HTTP Basic client authentication, sending credentials in the body")
            style = AUTH_STYLE_POST
            response = await self._request_token(code, style)
            token_data = _parse_token_body(response)

        if not response.is_success:
            error_msg = token_data.get("error_description") or token_data.get("error") or response.reason_phrase
            raise TokenExchangeError(f"Token exchange failed ({response.status_code}): {error_msg}")

        if "error" in token_data:
            raise TokenExchangeError(f"Token exchange failed: {token_data.get('error')}")

        if self.auth_style == AUTH_STYLE_AUTO and self.client_secret:
            self._detected_style = style

        try:
            token = TokenResponse.model_validate(token_data)
        except ValueError as e:
            raise TokenExchangeError(f"Invalid token response: {e}") from e

        if not token.id_token:
            raise TokenExchangeError("Token response missing id_token")

        return token

    def _resolve_auth_style(self) -> str:
        if self.auth_style != AUTH_STYLE_AUTO:
            return self.auth_style
        if not self.client_secret:
            return AUTH_STYLE_POST
        return self._detected_style or AUTH_STYLE_BASIC

    async def _request_token(self, code: str, style: str) -> httpx.Response:
        payload: Dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
        }
        auth: Optional[httpx.BasicAuth] = None
        if style == AUTH_STYLE_BASIC:
            # RFC 6749 section 2.3.1: form-encode both parts before base64
            auth = httpx.BasicAuth(quote_plus(self.client_id), quote_plus(self.client_secret))
        else:
            payload["client_id"] = self.client_id
            if self.client_secret:
                payload["client_secret"] = self.client_secret

        try:
            return await self.http_client.post(
                self.token_url,
                data=payload,
                headers={"Accept": "application/json"},
                auth=auth,
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Unable to reach token endpoint: {e}") from e


def _client_rejected(response: httpx.Response, token_data: dict) -> bool:
    """True when the provider refused the client credentials themselves."""
    if response.status_code == 401:
        return True
    return response.status_code == 400 and token_data.get("error") == "invalid_client"


def _parse_token_body(response: httpx.Response) -> dict:
    """Decode a JSON or form-encoded token endpoint body."""
    content_type = response.headers.get("content-type", "")
    try:
        if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("text/plain"):
            return dict(parse_qsl(response.text))
        data = response.json()
    except ValueError:
        if response.is_success:
            raise TokenExchangeError("Token endpoint returned an unreadable body")
        return {}

    if not isinstance(data, dict):
        raise TokenExchangeError("Token endpoint returned a non-object body")
    return data
