"""Environment assembly for the Backstage container.

The Backstage backend reads its database, public URL and cluster connection
from environment variables. Plain values are interpolated from same-stack
and cross-stack outputs; credentials are injected as secret references so
they never appear in the task definition.
"""

from typing import Dict, Union

# Injected from Secrets Manager, never as plain environment values
POSTGRES_PASSWORD = "POSTGRES_PASSWORD"
K8S_CLUSTER_SA_TOKEN = "K8S_CLUSTER_SA_TOKEN"
PULUMI_ACCESS_TOKEN = "PULUMI_ACCESS_TOKEN"

SECRET_VARIABLES = (POSTGRES_PASSWORD, K8S_CLUSTER_SA_TOKEN, PULUMI_ACCESS_TOKEN)

ENVIRONMENT_VARIABLES = (
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_USER",
    "BACKSTAGE_BASE_URL",
    "WEBSITES_PORT",
    "K8S_CLUSTER_URL",
)


def build_container_environment(
    db_host: str,
    db_port: Union[str, int],
    db_user: str,
    load_balancer_dns: str,
    cluster_endpoint: str,
    container_port: int = 7007,
) -> Dict[str, str]:
    """Assemble the plain environment of the Backstage container.

    Values may be CDK tokens; they are only resolved at deploy time.

    Args:
        db_host: Database endpoint address.
        db_port: Database port.
        db_user: Database username.
        load_balancer_dns: DNS name of the public load balancer.
        cluster_endpoint: API endpoint of the GitOps cluster.
        container_port: Port the Backstage backend listens on.

    Returns:
        Mapping with exactly the names in ``ENVIRONMENT_VARIABLES``.
    """
    return {
        "POSTGRES_HOST": db_host,
        "POSTGRES_PORT": str(db_port),
        "POSTGRES_USER": db_user,
        "BACKSTAGE_BASE_URL": f"http://{load_balancer_dns}",
        "WEBSITES_PORT": str(container_port),
        "K8S_CLUSTER_URL": cluster_endpoint,
    }
