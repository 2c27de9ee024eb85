"""Kubeconfig generation from an assembled :class:`UserInfo`."""

import base64
import logging

import yaml

from gangway.errors import KubeconfigRenderError
from gangway.models import (
    AuthInfo,
    AuthProviderConfig,
    Cluster,
    Context,
    KubeConfig,
    NamedAuthInfo,
    NamedCluster,
    NamedContext,
    UserInfo,
)

logger = logging.getLogger(__name__)


def generate_kubeconfig(info: UserInfo) -> KubeConfig:
    """
    Build the kubeconfig for ``info``.

    Every cluster, primary first, gets the same CA data and a context of the
    same name bound to the single OIDC user.
    """
    ca_data = base64.b64encode(info.cluster_ca).decode("ascii")

    servers = [(info.cluster_name, info.api_server_url)]
    servers += [(c.name, c.server) for c in info.clusters if c.name != info.cluster_name]

    clusters = [
        NamedCluster(name=name, cluster=Cluster(server=server, certificate_authority_data=ca_data))
        for name, server in servers
    ]
    contexts = [
        NamedContext(name=name, context=Context(cluster=name, user=info.kube_cfg_user))
        for name, _ in servers
    ]

    user = NamedAuthInfo(
        name=info.kube_cfg_user,
        user=AuthInfo(
            auth_provider=AuthProviderConfig(
                name="oidc",
                config={
                    "client-id": info.client_id,
                    "client-secret": info.client_secret,
                    "id-token": info.id_token,
                    "idp-issuer-url": info.issuer_url,
                    "refresh-token": info.refresh_token,
                },
            )
        ),
    )

    return KubeConfig(
        current_context=info.cluster_name,
        clusters=clusters,
        contexts=contexts,
        users=[user],
    )


def render_kubeconfig(info: UserInfo) -> str:
    """
    Serialize the kubeconfig for ``info`` to YAML.

    Raises:
        KubeconfigRenderError: If serialization fails
    """
    document = generate_kubeconfig(info).model_dump(by_alias=True)
    logger.debug("Rendering kubeconfig for %s with %d clusters", info.kube_cfg_user, len(document["clusters"]))
    try:
        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
    except yaml.YAMLError as e:
        raise KubeconfigRenderError(f"Error creating kubeconfig - {e}") from e
