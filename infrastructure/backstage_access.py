"""Cluster identity for Backstage: service account, admin binding and exported token."""

from pathlib import Path

import aws_cdk as cdk
from aws_cdk import (
    aws_eks as eks,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
    custom_resources as cr,
)
from constructs import Construct

HANDLER_DIR = Path(__file__).parent / "handlers"

SERVICE_ACCOUNT_NAME = "backstage"
TOKEN_SECRET_NAME = "backstage-token"


class BackstageAccess(Construct):
    """Privileged service identity Backstage uses to read the GitOps cluster.

    The bearer token of the service account is decoded at deploy time and kept
    in Secrets Manager; ``token_secret`` is what other stacks reference.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        cluster: eks.ICluster,
        namespace: str = "default",
    ) -> None:
        super().__init__(scope, construct_id)

        self.service_account = cluster.add_manifest(
            "BackstageServiceAccount",
            {
                "apiVersion": "v1",
                "kind": "ServiceAccount",
                "metadata": {"name": SERVICE_ACCOUNT_NAME, "namespace": namespace},
            },
        )

        self.role_binding = cluster.add_manifest(
            "BackstageClusterRoleBinding",
            {
                "apiVersion": "rbac.authorization.k8s.io/v1",
                "kind": "ClusterRoleBinding",
                "metadata": {"name": "backstage-cluster-role-binding"},
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "ClusterRole",
                    "name": "cluster-admin",
                },
                "subjects": [
                    {
                        "kind": "ServiceAccount",
                        "name": SERVICE_ACCOUNT_NAME,
                        "namespace": namespace,
                    }
                ],
            },
        )
        self.role_binding.node.add_dependency(self.service_account)

        self.token = cluster.add_manifest(
            "BackstageToken",
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "type": "kubernetes.io/service-account-token",
                "metadata": {
                    "name": TOKEN_SECRET_NAME,
                    "namespace": namespace,
                    "annotations": {
                        "kubernetes.io/service-account.name": SERVICE_ACCOUNT_NAME,
                    },
                },
            },
        )
        self.token.node.add_dependency(self.service_account)

        # Polls until the token controller has populated the Secret
        encoded_token = eks.KubernetesObjectValue(
            self,
            "EncodedToken",
            cluster=cluster,
            object_type="secret",
            object_name=TOKEN_SECRET_NAME,
            object_namespace=namespace,
            json_path=".data.token",
        )
        encoded_token.node.add_dependency(self.token)

        # The framework logs custom resource events, which carry the encoded
        # token; keep those logs for a day only
        decoder_logs = logs.LogGroup(
            self,
            "TokenDecoderLogs",
            retention=logs.RetentionDays.ONE_DAY,
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )

        decoder = lambda_.Function(
            self,
            "TokenDecoderFunction",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler="service_account_token.on_event",
            code=lambda_.Code.from_asset(str(HANDLER_DIR), exclude=["__pycache__"]),
            timeout=cdk.Duration.seconds(30),
            description="Decodes the Backstage service account token",
            log_group=decoder_logs,
        )

        provider = cr.Provider(
            self,
            "TokenDecoderProvider",
            on_event_handler=decoder,
            log_group=decoder_logs,
        )

        decoded = cdk.CustomResource(
            self,
            "DecodedToken",
            service_token=provider.service_token,
            properties={"EncodedToken": encoded_token.value},
        )

        self.token_secret = secretsmanager.Secret(
            self,
            "TokenSecret",
            description="Bearer token of the backstage service account",
            secret_string_value=cdk.SecretValue.resource_attribute(
                decoded.get_att_string("Token")
            ),
        )
