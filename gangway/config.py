"""
Configuration module for the Gangway portal.

This module uses Pydantic Settings to load and validate environment variables
for the OIDC provider, the target cluster, cookie sessions and the HTTP
surface.

Environment variables are read with the ``GANGWAY_`` prefix from the process
environment or a local .env file.
"""

from functools import lru_cache
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SCOPES = ["openid", "profile", "email", "offline_access"]


class ClusterSettings(BaseModel):
    """An additional cluster written into every generated kubeconfig."""

    name: str = Field(..., min_length=1)
    server: str = Field(..., min_length=1)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything a handler needs is defined here; no handler reads the
    environment directly.
    """

    # =========================================================================
    # Cluster
    # =========================================================================

    CLUSTER_NAME: str = Field(
        ...,
        description="Name of the primary cluster, also the current-context",
        min_length=1,
    )

    API_SERVER_URL: str = Field(
        ...,
        description="Kubernetes API server URL (e.g., https://k8s.example.com:6443)",
        min_length=1,
    )

    CLUSTER_CA_PATH: str = Field(
        default="/var/run/secrets/kubernetes.io/serviceaccount/ca.crt",
        description="Path to the cluster CA certificate shown to users",
    )

    CLUSTERS: List[ClusterSettings] = Field(
        default_factory=list,
        description='Additional clusters as JSON (e.g., [{"name": "dr", "server": "https://..."}])',
    )

    # =========================================================================
    # OIDC / OAuth2 Provider
    # =========================================================================

    AUTHORIZE_URL: str = Field(
        ...,
        description="Provider authorization endpoint",
        min_length=1,
    )

    TOKEN_URL: str = Field(
        ...,
        description="Provider token endpoint",
        min_length=1,
    )

    CLIENT_ID: str = Field(
        ...,
        description="OAuth2 client id",
        min_length=1,
    )

    CLIENT_SECRET: str = Field(
        default="",
        description="OAuth2 client secret (empty only with ALLOW_EMPTY_CLIENT_SECRET)",
    )

    ALLOW_EMPTY_CLIENT_SECRET: bool = Field(
        default=False,
        description="Permit a public client with no secret",
    )

    TOKEN_AUTH_STYLE: Literal["auto", "basic", "post"] = Field(
        default="auto",
        description="How the client authenticates at the token endpoint: HTTP Basic, form body, or auto-detect",
    )

    AUDIENCE: str = Field(
        default="",
        description="Value of the audience parameter sent to the authorization endpoint",
    )

    REDIRECT_URL: str = Field(
        ...,
        description="Callback URL registered with the provider (e.g., https://gangway.example.com/callback)",
        min_length=1,
    )

    SCOPES: Union[str, List[str]] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="Comma-separated scopes requested at login",
    )

    USERNAME_CLAIM: str = Field(
        default="nickname",
        description="ID token claim used as the kubeconfig username",
        min_length=1,
    )

    EMAIL_CLAIM: Optional[str] = Field(
        None,
        description="Deprecated; usernames are built from USERNAME_CLAIM",
    )

    TRUSTED_CA_PATH: Optional[str] = Field(
        None,
        description="Extra CA bundle trusted when talking to the provider",
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for outbound calls to the provider",
        gt=0,
    )

    ALLOW_MISSING_REFRESH_TOKEN: bool = Field(
        default=False,
        description="Accept sessions without a stored refresh token",
    )

    # =========================================================================
    # ID Token Verification
    # =========================================================================

    JWKS_URL: Optional[str] = Field(
        None,
        description="Provider JWKS endpoint; when set, ID token signatures are verified",
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Sessions
    # =========================================================================

    SESSION_SECURITY_KEY: str = Field(
        ...,
        description="Secret used to encrypt session cookies (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_MAX_AGE: int = Field(
        default=60 * 60 * 24,
        description="Session cookie lifetime in seconds",
        ge=60,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Mark session cookies Secure (enable behind HTTPS)",
    )

    # =========================================================================
    # HTTP Surface
    # =========================================================================

    HTTP_PATH: str = Field(
        default="",
        description="Path prefix the portal is served under (e.g., /gangway)",
    )

    CUSTOM_HTML_TEMPLATES_DIR: Optional[str] = Field(
        None,
        description="Directory with home.html/commandline.html overrides",
    )

    HOST: str = Field(default="0.0.0.0")

    PORT: int = Field(default=8080, ge=1, le=65535)

    LOG_LEVEL: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="GANGWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def root_path_prefix(self) -> str:
        """Site root, used as the target of every redirect home."""
        return f"{self.HTTP_PATH}/"

    @property
    def scopes_list(self) -> List[str]:
        if isinstance(self.SCOPES, str):
            return [self.SCOPES]
        return list(self.SCOPES)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("SCOPES", mode="before")
    @classmethod
    def parse_comma_separated_scopes(cls, v: Any) -> List[str]:
        """
        Accept scopes as a comma-separated string or a list.

        Raises:
            ValueError: If no scope remains after parsing
        """
        if isinstance(v, str):
            scopes = [scope.strip() for scope in v.split(",") if scope.strip()]
        elif isinstance(v, (list, tuple)):
            scopes = [str(scope).strip() for scope in v if str(scope).strip()]
        else:
            raise TypeError("SCOPES: Expected a comma-separated string or a list.")

        if not scopes:
            raise ValueError("SCOPES must contain at least one scope")
        return scopes

    @field_validator("HTTP_PATH")
    @classmethod
    def normalize_http_path(cls, v: str) -> str:
        """Strip trailing slashes and force a leading one (``""`` stays ``""``)."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v.upper()

    @model_validator(mode="after")
    def check_client_secret(self) -> "Settings":
        if not self.CLIENT_SECRET and not self.ALLOW_EMPTY_CLIENT_SECRET:
            raise ValueError(
                "CLIENT_SECRET is empty; set ALLOW_EMPTY_CLIENT_SECRET to run as a public client"
            )
        return self


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so the environment is read once per process.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


def validate_configuration(settings: Settings) -> dict:
    """
    Collect non-fatal configuration warnings for the startup log.

    Returns:
        Dictionary with the warnings found.
    """
    warnings = []

    if not settings.CLIENT_SECRET:
        warnings.append("CLIENT_SECRET is empty (public client)")

    if settings.EMAIL_CLAIM:
        warnings.append("EMAIL_CLAIM is deprecated and ignored")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is off; session cookies are sent over plain HTTP")

    if not settings.JWKS_URL:
        warnings.append("JWKS_URL is not set; ID token signatures are not verified")

    return {
        "warnings": warnings,
        "clusters": [settings.CLUSTER_NAME] + [c.name for c in settings.CLUSTERS],
    }
