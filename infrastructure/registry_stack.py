"""Container image repository for Backstage."""

import aws_cdk as cdk
from aws_cdk import aws_ecr as ecr
from constructs import Construct

from backstage_gitops.config import Settings


class BackstageRegistryStack(cdk.Stack):
    """Stack for the ECR repository the Backstage image is pushed to.

    Deployed before the application stack so the image exists by the time
    the service starts.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: Settings,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.repository = ecr.Repository(
            self,
            "Repository",
            repository_name=config.repository_name,
            removal_policy=cdk.RemovalPolicy.DESTROY,
            empty_on_delete=True,
            lifecycle_rules=[
                ecr.LifecycleRule(
                    rule_priority=1,
                    description=f"keep last {config.max_image_count} images",
                    tag_status=ecr.TagStatus.ANY,
                    max_image_count=config.max_image_count,
                )
            ],
        )

        cdk.CfnOutput(
            self,
            "RepositoryUri",
            value=self.repository.repository_uri,
            description="ECR repository URI for pushing the Backstage image",
        )
