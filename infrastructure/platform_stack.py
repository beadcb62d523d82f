"""GitOps platform stack: network, EKS cluster and Flux bootstrap.

This stack creates:
- VPC with an internet gateway, a public route table and one subnet per zone
- EKS cluster with a managed node group and OIDC provider
- IAM role for the load balancer controller (IRSA)
- Flux 2 release with tracking labels on every controller
- GitRepository and Kustomization bootstrapping the cluster from Git
- Operator namespace and access token
- Backstage service account, cluster-admin binding and decoded token
- Exports consumed by the Backstage stack
"""

import logging

import aws_cdk as cdk
from constructs import Construct

from backstage_gitops.config import Settings
from infrastructure.backstage_access import BackstageAccess
from infrastructure.cluster import GitOpsCluster
from infrastructure.flux import FluxBootstrap
from infrastructure.network import PublicNetwork
from infrastructure.stack_reference import (
    BACKSTAGE_TOKEN,
    GITOPS_PLATFORM_ENDPOINT,
    PUBLIC_SUBNET_IDS,
    ROUTE_TABLE_ID,
    VPC_ID,
    export_output,
)

logger = logging.getLogger(__name__)


class GitOpsPlatformStack(cdk.Stack):
    """Network, cluster and GitOps bootstrap for the platform."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: Settings,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config
        name_prefix = config.cluster_name

        self.network = PublicNetwork(
            self,
            "Network",
            name_prefix=name_prefix,
            vpc_cidr=config.vpc_cidr,
            cidr_blocks=config.public_subnet_cidrs,
            availability_zones=config.availability_zones,
            map_public_ip_on_launch=config.map_public_ip_on_launch,
        )

        self.gitops_cluster = GitOpsCluster(
            self,
            "GitOpsCluster",
            config=config,
            vpc=self.network.vpc,
            subnets=self.network.public_subnets.subnets,
        )
        cluster = self.gitops_cluster.cluster

        self.flux = FluxBootstrap(
            self,
            "Flux",
            config=config,
            cluster=cluster,
            alb_controller_role_arn=self.gitops_cluster.alb_controller_role.role_arn,
            vpc_id=self.network.vpc_id,
        )

        self.backstage_access = BackstageAccess(self, "BackstageAccess", cluster=cluster)

        self._create_outputs()

    def _create_outputs(self) -> None:
        """Export what downstream stacks read and print operator hints."""
        export_output(self, VPC_ID, self.network.vpc_id, "Platform VPC id")
        export_output(
            self, ROUTE_TABLE_ID, self.network.route_table_id, "Public route table id"
        )
        export_output(
            self,
            PUBLIC_SUBNET_IDS,
            ",".join(self.network.public_subnets.subnet_ids),
            "Comma-separated cluster subnet ids",
        )
        export_output(
            self,
            GITOPS_PLATFORM_ENDPOINT,
            self.gitops_cluster.cluster.cluster_endpoint,
            "Kubernetes API endpoint of the GitOps cluster",
        )
        export_output(
            self,
            BACKSTAGE_TOKEN,
            self.backstage_access.token_secret.secret_arn,
            "Secrets Manager ARN of the Backstage service account token",
        )

        cdk.CfnOutput(
            self,
            "ClusterName",
            value=self.gitops_cluster.cluster.cluster_name,
            description="EKS cluster name",
        )

        cdk.CfnOutput(
            self,
            "kubeconfig",
            value=self.gitops_cluster.kubeconfig_command,
            description="Command writing a kubeconfig entry for the cluster",
        )
