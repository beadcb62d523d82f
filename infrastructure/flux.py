"""Flux GitOps bootstrap: agent release, repository pointer and reconciliation policy."""

import logging

import aws_cdk as cdk
import yaml
from aws_cdk import aws_eks as eks
from constructs import Construct

from backstage_gitops.config import Settings

logger = logging.getLogger(__name__)

# Controllers of the flux2 chart; each gets the Backstage tracking label
FLUX_CONTROLLERS = (
    "helmController",
    "kustomizeController",
    "notificationController",
    "sourceController",
    "imageReflectionController",
    "imageAutomationController",
)

GIT_REPOSITORY_NAME = "bootstrap-repo"
KUSTOMIZATION_NAME = "bootstrap-kustomization"


def flux_chart_values(labels: dict) -> dict:
    """Helm values attaching the tracking labels to every Flux controller."""
    return {controller: {"labels": dict(labels)} for controller in FLUX_CONTROLLERS}


def git_repository_manifest(config: Settings) -> dict:
    """Flux GitRepository pointing at the cluster's source of truth."""
    return {
        "apiVersion": "source.toolkit.fluxcd.io/v1",
        "kind": "GitRepository",
        "metadata": {
            "name": GIT_REPOSITORY_NAME,
            "namespace": config.flux_namespace,
            "labels": config.flux_labels,
        },
        "spec": {
            "interval": config.gitops_sync_interval,
            "ref": {"branch": config.gitops_repo_branch},
            "timeout": config.gitops_repo_timeout,
            "url": config.gitops_repo_url,
        },
    }


def kustomization_manifest(config: Settings) -> dict:
    """Flux Kustomization applying the repository path to the cluster."""
    return {
        "apiVersion": "kustomize.toolkit.fluxcd.io/v1",
        "kind": "Kustomization",
        "metadata": {
            "name": KUSTOMIZATION_NAME,
            "namespace": config.flux_namespace,
            "labels": config.flux_labels,
        },
        "spec": {
            "force": config.gitops_force,
            "interval": config.gitops_sync_interval,
            "prune": config.gitops_prune,
            "path": config.gitops_sync_path,
            "sourceRef": {
                "kind": "GitRepository",
                "name": GIT_REPOSITORY_NAME,
                "namespace": config.flux_namespace,
            },
            "targetNamespace": config.flux_namespace,
        },
    }


class FluxBootstrap(Construct):
    """Installs Flux and points it at the GitOps repository."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: Settings,
        cluster: eks.ICluster,
        alb_controller_role_arn: str,
        vpc_id: str,
    ) -> None:
        super().__init__(scope, construct_id)

        self.release = cluster.add_helm_chart(
            "Flux",
            chart="flux2",
            repository=config.flux_chart_repository,
            namespace=config.flux_namespace,
            create_namespace=True,
            version=config.flux_chart_version,
            values=flux_chart_values(config.flux_labels),
        )

        # Values for the load balancer controller release managed from Git
        alb_values = yaml.safe_dump(
            {
                "clusterName": cluster.cluster_name,
                "region": cdk.Stack.of(self).region,
                "serviceAccount": {
                    "annotations": {"eks.amazonaws.com/role-arn": alb_controller_role_arn},
                },
                "vpcId": vpc_id,
            },
            default_flow_style=False,
            sort_keys=False,
        )
        self.alb_values_secret = cluster.add_manifest(
            "AlbControllerValues",
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {
                    "name": "aws-load-balancer-controller-values",
                    "namespace": config.flux_namespace,
                },
                "stringData": {"values.yaml": alb_values},
            },
        )
        self.alb_values_secret.node.add_dependency(self.release)

        self.operator_namespace = cluster.add_manifest(
            "OperatorNamespace",
            {
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": config.operator_namespace},
            },
        )

        # Resolved by CloudFormation from Secrets Manager at deploy time
        access_token = cdk.SecretValue.secrets_manager(config.access_token_secret_name)
        self.access_token_secret = cluster.add_manifest(
            "OperatorAccessToken",
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "type": "Opaque",
                "metadata": {
                    "name": "pulumi-access-token",
                    "namespace": config.operator_namespace,
                },
                "stringData": {"pulumi-access-token": access_token.unsafe_unwrap()},
            },
        )
        self.access_token_secret.node.add_dependency(self.operator_namespace)

        self.git_repository = cluster.add_manifest(
            "BootstrapRepository", git_repository_manifest(config)
        )
        self.git_repository.node.add_dependency(self.release)

        self.kustomization = cluster.add_manifest(
            "BootstrapKustomization", kustomization_manifest(config)
        )
        self.kustomization.node.add_dependency(self.git_repository)

        logger.info(
            f"Flux {config.flux_chart_version} syncing {config.gitops_repo_url}"
            f"@{config.gitops_repo_branch}:{config.gitops_sync_path}"
        )
