"""EKS cluster for the GitOps platform."""

import json
import logging
from pathlib import Path
from typing import Sequence

import aws_cdk as cdk
from aws_cdk import (
    aws_ec2 as ec2,
    aws_eks as eks,
    aws_iam as iam,
)
from aws_cdk.lambda_layer_kubectl_v31 import KubectlV31Layer
from constructs import Construct

from backstage_gitops.config import Settings

logger = logging.getLogger(__name__)

POLICY_DIR = Path(__file__).parent / "policies"


def load_policy_document(name: str) -> iam.PolicyDocument:
    """Load an IAM policy document shipped in infrastructure/policies."""
    with open(POLICY_DIR / name, encoding="utf-8") as f:
        return iam.PolicyDocument.from_json(json.load(f))


class GitOpsCluster(Construct):
    """Managed Kubernetes control plane, node group and load balancer controller role."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: Settings,
        vpc: ec2.IVpc,
        subnets: Sequence[ec2.ISubnet],
    ) -> None:
        super().__init__(scope, construct_id)

        # Role mapped to system:masters so operators can use kubectl
        self.masters_role = iam.Role(
            self,
            "MastersRole",
            assumed_by=iam.AccountRootPrincipal(),
        )

        self.cluster = eks.Cluster(
            self,
            "Cluster",
            cluster_name=config.cluster_name,
            version=eks.KubernetesVersion.of(config.eks_version),
            kubectl_layer=KubectlV31Layer(self, "KubectlLayer"),
            vpc=vpc,
            vpc_subnets=[ec2.SubnetSelection(subnets=list(subnets))],
            endpoint_access=eks.EndpointAccess.PUBLIC,
            masters_role=self.masters_role,
            default_capacity=0,
            output_cluster_name=False,
            output_config_command=False,
        )

        self.cluster.add_nodegroup_capacity(
            "NodeGroup",
            instance_types=[ec2.InstanceType(config.node_instance_type)],
            desired_size=config.node_desired_size,
            min_size=config.node_min_size,
            max_size=config.node_max_size,
            subnets=ec2.SubnetSelection(subnets=list(subnets)),
        )

        self.alb_controller_role = self._create_alb_controller_role(config)

        logger.info(
            f"Cluster {config.cluster_name}: Kubernetes {config.eks_version}, "
            f"{config.node_desired_size}x {config.node_instance_type}"
        )

    def _create_alb_controller_role(self, config: Settings) -> iam.Role:
        """Create the IRSA role assumed by the Flux-installed load balancer controller."""
        issuer = self.cluster.cluster_open_id_connect_issuer

        # Condition keys contain the issuer, which is only known at deploy time
        conditions = cdk.CfnJson(
            self,
            "AlbControllerTrustConditions",
            value={
                f"{issuer}:sub": config.alb_service_account_subject,
                f"{issuer}:aud": "sts.amazonaws.com",
            },
        )

        role = iam.Role(
            self,
            "AlbControllerRole",
            assumed_by=iam.OpenIdConnectPrincipal(
                self.cluster.open_id_connect_provider
            ).with_conditions({"StringEquals": conditions}),
            description="AWS Load Balancer Controller (IRSA)",
        )

        policy = iam.ManagedPolicy(
            self,
            "AlbControllerPolicy",
            document=load_policy_document("alb-iam-policy.json"),
        )
        role.add_managed_policy(policy)
        return role

    @property
    def kubeconfig_command(self) -> str:
        """Command writing a kubeconfig entry for this cluster."""
        stack = cdk.Stack.of(self)
        return (
            f"aws eks update-kubeconfig --name {self.cluster.cluster_name} "
            f"--region {stack.region} --role-arn {self.masters_role.role_arn}"
        )
