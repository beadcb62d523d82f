"""Builds the CDK app with every stack of the deployment."""

import logging
from typing import Optional

import aws_cdk as cdk

from backstage_gitops.config import Settings, get_settings
from infrastructure.backstage_stack import BackstageStack
from infrastructure.platform_stack import GitOpsPlatformStack
from infrastructure.registry_stack import BackstageRegistryStack

logger = logging.getLogger(__name__)


def build_app(
    settings: Optional[Settings] = None,
    app: Optional[cdk.App] = None,
) -> cdk.App:
    """Create the platform, registry and Backstage stacks in one app.

    Args:
        settings: Deployment settings. Loaded from the environment when omitted.
        app: App to add the stacks to. A new one is created when omitted.

    Returns:
        The app, ready for ``synth()``.
    """
    settings = settings or get_settings()
    app = app or cdk.App()

    env = cdk.Environment(
        account=app.node.try_get_context("account") or settings.aws_account,
        region=app.node.try_get_context("region") or settings.aws_region,
    )

    platform_stack = GitOpsPlatformStack(
        app,
        settings.platform_stack_name,
        config=settings,
        env=env,
        description="Network, EKS cluster and Flux GitOps bootstrap",
    )

    registry_stack = BackstageRegistryStack(
        app,
        settings.registry_stack_name,
        config=settings,
        env=env,
        description="Container image repository for Backstage",
    )

    backstage_stack = BackstageStack(
        app,
        settings.backstage_stack_name,
        config=settings,
        repository=registry_stack.repository,
        env=env,
        description="Backstage on ECS Fargate with RDS PostgreSQL",
    )

    # Imports by export name carry no implicit edge to the exporting stack
    if settings.reference_stack_name == settings.platform_stack_name:
        backstage_stack.node.add_dependency(platform_stack)
    backstage_stack.node.add_dependency(registry_stack)

    logger.info(
        f"Stacks: {platform_stack.stack_name}, {registry_stack.stack_name}, "
        f"{backstage_stack.stack_name} in {env.region}"
    )
    return app
