"""Named cross-stack references.

The platform stack exports its outputs under ``<stack name>-<output name>``;
other stacks (possibly in a different CDK app) import them by stack name.
Imported values are ``Fn::ImportValue`` tokens, opaque until CloudFormation
resolves them at deploy time.
"""

from typing import Optional

import aws_cdk as cdk
from constructs import Construct

# Outputs the platform stack publishes for downstream stacks
VPC_ID = "vpc-id"
ROUTE_TABLE_ID = "route-table-id"
PUBLIC_SUBNET_IDS = "public-subnet-ids"
GITOPS_PLATFORM_ENDPOINT = "gitops-platform-endpoint"
BACKSTAGE_TOKEN = "backstage-token"

PLATFORM_OUTPUTS = frozenset(
    {VPC_ID, ROUTE_TABLE_ID, PUBLIC_SUBNET_IDS, GITOPS_PLATFORM_ENDPOINT, BACKSTAGE_TOKEN}
)


def export_name(stack_name: str, output_name: str) -> str:
    """CloudFormation export name of a stack output."""
    return f"{stack_name}-{output_name}"


def export_output(
    stack: cdk.Stack,
    output_name: str,
    value: str,
    description: Optional[str] = None,
) -> cdk.CfnOutput:
    """Publish a stack output under its cross-stack export name."""
    return cdk.CfnOutput(
        stack,
        output_name,
        value=value,
        description=description,
        export_name=export_name(stack.stack_name, output_name),
    )


class StackReference(Construct):
    """Read access to the exports of another stack, looked up by name."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        stack_name: str,
        outputs: frozenset = PLATFORM_OUTPUTS,
    ) -> None:
        super().__init__(scope, construct_id)
        self.stack_name = stack_name
        self.outputs = outputs

    def get_output(self, output_name: str) -> str:
        """Import an exported output.

        Raises:
            KeyError: If the referenced stack does not publish ``output_name``.
        """
        if output_name not in self.outputs:
            raise KeyError(
                f"Stack {self.stack_name} does not export '{output_name}'; "
                f"known outputs: {sorted(self.outputs)}"
            )
        return cdk.Fn.import_value(export_name(self.stack_name, output_name))
