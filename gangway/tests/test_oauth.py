"""
OAuth2 Client Tests

Tests authorization URL building and the authorization code exchange
against a mocked token endpoint.
"""

import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from gangway.auth.oauth import OAuth2Client, build_http_client
from gangway.errors import TokenExchangeError

TOKEN_URL = "https://idp.example.com/oauth/token"


def make_client(handler, **overrides) -> OAuth2Client:
    kwargs = dict(
        client_id="client",
        client_secret="secret",
        authorize_url="https://idp.example.com/authorize",
        token_url=TOKEN_URL,
        redirect_url="https://gangway.example.com/callback",
        scopes=["openid", "email"],
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    kwargs.update(overrides)
    return OAuth2Client(**kwargs)


def unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError("no HTTP call expected")


def basic_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode()
    return "Basic " + base64.b64encode(credentials).decode()


class TestAuthorizationURL:
    """Test suite for authorization_url"""

    def test_parameters(self):
        url = make_client(unused).authorization_url("S1", audience="https://api.example.com")

        parsed = urlparse(url)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://idp.example.com/authorize"
        assert parse_qs(parsed.query) == {
            "response_type": ["code"],
            "client_id": ["client"],
            "redirect_uri": ["https://gangway.example.com/callback"],
            "scope": ["openid email"],
            "state": ["S1"],
            "audience": ["https://api.example.com"],
        }

    def test_existing_query_is_kept(self):
        client = make_client(unused, authorize_url="https://idp.example.com/authorize?tenant=t1")

        params = parse_qs(urlparse(client.authorization_url("S1")).query)

        assert params["tenant"] == ["t1"]
        assert params["state"] == ["S1"]


class TestExchange:
    """Test suite for exchange"""

    @pytest.mark.asyncio
    async def test_successful_exchange(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "access_token": "at",
                    "id_token": "it",
                    "refresh_token": "rt",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                },
            )

        token = await make_client(handler).exchange("C1")

        assert token.id_token == "it"
        assert token.refresh_token == "rt"
        assert len(requests) == 1
        assert str(requests[0].url) == TOKEN_URL
        assert requests[0].headers["authorization"] == basic_header("client", "secret")
        form = parse_qs(requests[0].content.decode())
        assert form == {
            "grant_type": ["authorization_code"],
            "code": ["C1"],
            "redirect_uri": ["https://gangway.example.com/callback"],
        }

    @pytest.mark.asyncio
    async def test_basic_only_provider(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("authorization"))
            if request.headers.get("authorization") != basic_header("client", "secret"):
                return httpx.Response(401, json={"error": "invalid_client"})
            return httpx.Response(200, json={"id_token": "it"})

        token = await make_client(handler).exchange("C1")

        assert token.id_token == "it"
        assert seen == [basic_header("client", "secret")]

    @pytest.mark.asyncio
    async def test_body_only_provider_falls_back_once(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            seen.append((request.headers.get("authorization"), form.get("client_secret")))
            if "authorization" in request.headers:
                return httpx.Response(400, json={"error": "invalid_client"})
            return httpx.Response(200, json={"id_token": "it"})

        client = make_client(handler)
        token = await client.exchange("C1")

        assert token.id_token == "it"
        assert seen == [(basic_header("client", "secret"), None), (None, ["secret"])]

        # the working style is reused without probing Basic again
        await client.exchange("C2")
        assert seen[2] == (None, ["secret"])
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_invalid_grant_is_not_resent(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(TokenExchangeError):
            await make_client(handler).exchange("C1")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_forced_post_style(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(401, json={"error": "invalid_client"})

        with pytest.raises(TokenExchangeError):
            await make_client(handler, auth_style="post").exchange("C1")

        assert len(seen) == 1
        assert "authorization" not in seen[0].headers
        assert parse_qs(seen[0].content.decode())["client_secret"] == ["secret"]

    @pytest.mark.asyncio
    async def test_forced_basic_style_has_no_fallback(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(401, json={"error": "invalid_client"})

        with pytest.raises(TokenExchangeError):
            await make_client(handler, auth_style="basic").exchange("C1")

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_basic_credentials_are_form_encoded(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["authorization"])
            return httpx.Response(200, json={"id_token": "it"})

        await make_client(handler, client_id="my client", client_secret="p@ss").exchange("C1")

        assert seen == ["Basic " + base64.b64encode(b"my+client:p%40ss").decode()]

    @pytest.mark.asyncio
    async def test_public_client_sends_no_secret(self):
        forms = []

        def handler(request: httpx.Request) -> httpx.Response:
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"id_token": "it"})

        token = await make_client(handler, client_secret="").exchange("C1")

        assert token.refresh_token is None
        assert forms[0]["client_id"] == ["client"]
        assert "client_secret" not in forms[0]

    @pytest.mark.asyncio
    async def test_form_encoded_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content=b"id_token=it&refresh_token=rt&expires_in=60",
                headers={"content-type": "application/x-www-form-urlencoded"},
            )

        token = await make_client(handler).exchange("C1")

        assert token.id_token == "it"
        assert token.expires_in == 60

    @pytest.mark.asyncio
    async def test_provider_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Authorization code expired"},
            )

        with pytest.raises(TokenExchangeError) as exc_info:
            await make_client(handler).exchange("C1")

        assert "Authorization code expired" in str(exc_info.value)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_id_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "at"})

        with pytest.raises(TokenExchangeError) as exc_info:
            await make_client(handler).exchange("C1")

        assert "id_token" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TokenExchangeError):
            await make_client(handler).exchange("C1")


class TestHTTPClient:
    """Test suite for build_http_client"""

    @pytest.mark.asyncio
    async def test_timeout_from_settings(self, settings_kwargs):
        from gangway.config import Settings

        settings = Settings(_env_file=None, HTTP_TIMEOUT_SECONDS=3.5, **settings_kwargs)

        async with build_http_client(settings) as client:
            assert client.timeout.connect == 3.5

    def test_bad_trusted_ca_path(self, settings_kwargs, tmp_path):
        from gangway.config import Settings

        settings = Settings(_env_file=None, TRUSTED_CA_PATH=str(tmp_path / "nope.pem"), **settings_kwargs)

        with pytest.raises(OSError):
            build_http_client(settings)


class TestFromSettings:
    """Test suite for OAuth2Client.from_settings"""

    def test_client_from_settings(self, settings_kwargs):
        from gangway.config import Settings

        settings = Settings(_env_file=None, TOKEN_AUTH_STYLE="post", SCOPES="openid,groups", **settings_kwargs)

        client = OAuth2Client.from_settings(settings, httpx.AsyncClient(transport=httpx.MockTransport(unused)))

        assert client.auth_style == "post"
        assert client.scopes == ["openid", "groups"]
        assert client.token_url == settings.TOKEN_URL
