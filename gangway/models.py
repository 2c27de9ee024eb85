"""
Data Models Module

Pydantic models shared by the handlers:
- UserInfo, the per-request record built from the session and settings
- The kubeconfig document (clusters, contexts, users) written to clients
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from gangway.config import ClusterSettings


# ============================================================================
# User Models
# ============================================================================

class UserInfo(BaseModel):
    """Everything needed to render the commandline page or a kubeconfig."""

    cluster_name: str = Field(..., description="Primary cluster name")
    username: str = Field(..., description="Value of the username claim")
    kube_cfg_user: str = Field(..., description="Kubeconfig user name, <username>@<cluster>")
    id_token: str = Field(..., description="Raw OIDC ID token")
    refresh_token: str = Field(..., description="Raw refresh token (may be empty)")
    client_id: str
    client_secret: str
    issuer_url: str = Field(..., description="Issuer claim of the ID token")
    api_server_url: str
    cluster_ca: bytes = Field(default=b"", description="PEM bytes of the cluster CA")
    http_path: str = ""
    clusters: List[ClusterSettings] = Field(default_factory=list, description="Additional clusters")

    @property
    def cluster_ca_pem(self) -> str:
        return self.cluster_ca.decode("utf-8", errors="replace")


# ============================================================================
# Kubeconfig Models
# ============================================================================

class _KubeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Cluster(_KubeModel):
    server: str
    certificate_authority_data: str = Field("", alias="certificate-authority-data")


class NamedCluster(_KubeModel):
    name: str
    cluster: Cluster


class Context(_KubeModel):
    cluster: str
    user: str


class NamedContext(_KubeModel):
    name: str
    context: Context


class AuthProviderConfig(_KubeModel):
    name: str
    config: Dict[str, str] = Field(default_factory=dict)


class AuthInfo(_KubeModel):
    auth_provider: AuthProviderConfig = Field(..., alias="auth-provider")


class NamedAuthInfo(_KubeModel):
    name: str
    user: AuthInfo


class KubeConfig(_KubeModel):
    """A ``kind: Config`` document as understood by kubectl."""

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = "Config"
    current_context: str = Field(..., alias="current-context")
    clusters: List[NamedCluster] = Field(default_factory=list)
    contexts: List[NamedContext] = Field(default_factory=list)
    users: List[NamedAuthInfo] = Field(default_factory=list)
    preferences: Dict[str, str] = Field(default_factory=dict)
