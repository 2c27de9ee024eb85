"""
Shared fixtures for the Gangway tests.

Provides settings, a signed test ID token factory, a fake OAuth2 client and
a TestClient bound to an app built with those collaborators.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from starlette.requests import Request

from gangway.auth.oauth import TokenResponse
from gangway.auth.session import CookieSessionStore
from gangway.config import Settings
from gangway.main import create_app


# ============================================================================
# Test keys and tokens
# ============================================================================

def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    public_key = private_key.public_key()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )

    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    return private_pem.decode(), public_pem.decode()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
TEST_KID = "test-key-id-2024"
TEST_ISSUER = "https://idp.example.com/"
TEST_CLIENT_ID = "gangway-test-client"
TEST_CA_PEM = b"-----BEGIN CERTIFICATE-----\nMIIBtest\n-----END CERTIFICATE-----\n"


def create_mock_id_token(
    claims: Optional[Dict[str, Any]] = None,
    kid: str = TEST_KID,
    exp_delta_minutes: int = 60,
    drop: Optional[List[str]] = None,
) -> str:
    """
    Create an ID token signed with the test private key.

    Args:
        claims: Claims to add or override
        kid: Key ID for JWKS matching
        exp_delta_minutes: Token expiry in minutes
        drop: Claim names to remove from the default payload
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": TEST_ISSUER,
        "sub": "test-user-sub-123",
        "aud": TEST_CLIENT_ID,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now,
        "nickname": "jdoe",
        "email": "jdoe@example.com",
    }
    payload.update(claims or {})
    for name in drop or []:
        payload.pop(name, None)

    headers = {"kid": kid, "alg": "RS256"}
    return jwt.encode(payload, TEST_PRIVATE_KEY, algorithm="RS256", headers=headers)


def create_mock_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    """Create a JWKS document holding the test public key."""
    from jwt.algorithms import RSAAlgorithm

    public_key_obj = serialization.load_pem_public_key(
        TEST_PUBLIC_KEY.encode(),
        backend=default_backend()
    )

    key = RSAAlgorithm.to_jwk(public_key_obj, as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"

    return {"keys": [key]}


def request_with_cookies(cookies: Dict[str, str]) -> Request:
    """Build a bare Starlette request carrying the given cookies."""
    header = "; ".join(f"{name}={value}" for name, value in cookies.items())
    return Request({"type": "http", "method": "GET", "path": "/", "headers": [(b"cookie", header.encode())]})


# ============================================================================
# Fakes
# ============================================================================

class FakeOAuthClient:
    """Stands in for OAuth2Client; records every exchanged code."""

    def __init__(self, token: Optional[TokenResponse] = None, error: Optional[Exception] = None):
        self.token = token
        self.error = error
        self.exchanged: List[str] = []

    def authorization_url(self, state: str, **extra_params: str) -> str:
        params = {"state": state}
        params.update(extra_params)
        return f"https://idp.example.com/authorize?{urlencode(params)}"

    async def exchange(self, code: str) -> TokenResponse:
        self.exchanged.append(code)
        if self.error is not None:
            raise self.error
        return self.token


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def ca_file(tmp_path):
    path = tmp_path / "ca.crt"
    path.write_bytes(TEST_CA_PEM)
    return path


@pytest.fixture
def settings_kwargs(ca_file) -> Dict[str, Any]:
    """Keyword arguments for a valid Settings instance."""
    return {
        "CLUSTER_NAME": "prod",
        "API_SERVER_URL": "https://k8s.example.com:6443",
        "CLUSTER_CA_PATH": str(ca_file),
        "AUTHORIZE_URL": "https://idp.example.com/authorize",
        "TOKEN_URL": "https://idp.example.com/oauth/token",
        "CLIENT_ID": TEST_CLIENT_ID,
        "CLIENT_SECRET": "test-client-secret",
        "AUDIENCE": "https://idp.example.com/userinfo",
        "REDIRECT_URL": "http://testserver/callback",
        "SESSION_SECURITY_KEY": "test-session-security-key-0123456789abcdef",
    }


@pytest.fixture
def mock_settings(settings_kwargs) -> Settings:
    return Settings(_env_file=None, **settings_kwargs)


@pytest.fixture
def id_token() -> str:
    return create_mock_id_token()


@pytest.fixture
def fake_oauth(id_token) -> FakeOAuthClient:
    return FakeOAuthClient(
        token=TokenResponse(
            access_token="mock-access-token",
            token_type="Bearer",
            id_token=id_token,
            refresh_token="mock-refresh-token",
            expires_in=3600,
        )
    )


@pytest.fixture
def session_store(mock_settings) -> CookieSessionStore:
    return CookieSessionStore(mock_settings.SESSION_SECURITY_KEY, path=mock_settings.root_path_prefix)


@pytest.fixture
def app(mock_settings, session_store, fake_oauth):
    return create_app(mock_settings, session_store=session_store, oauth_client=fake_oauth)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)


def state_from_location(location: str) -> str:
    return parse_qs(urlparse(location).query)["state"][0]


def login(client: TestClient, http_path: str = "") -> None:
    """Run /login and a matching /callback so the client holds all sessions."""
    response = client.get(f"{http_path}/login")
    assert response.status_code == 307
    state = state_from_location(response.headers["location"])

    response = client.get(f"{http_path}/callback", params={"state": state, "code": "auth-code"})
    assert response.status_code == 303
