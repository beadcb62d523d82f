"""Configuration management for the deployment.

This module provides the configuration record every stack is built from.
Settings are loaded from environment variables (via .env file) with
defaults matching the eu-central-1 reference deployment.
"""

import ipaddress
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# The cluster ships kubectl 1.31, which talks to control planes within one
# minor version of itself
SUPPORTED_EKS_VERSIONS = ("1.30", "1.31", "1.32")


class Settings(BaseSettings):
    """Deployment settings loaded from environment variables with defaults."""

    model_config = SettingsConfigDict(
        # Look for .env file in the repository root (parent of backstage_gitops)
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # AWS Configuration
    aws_account: Optional[str] = Field(
        default=None,
        description="AWS account ID to deploy into (environment-agnostic when unset)",
    )
    aws_region: str = Field(
        default="eu-central-1",
        description="AWS region for every stack",
    )
    availability_zones: List[str] = Field(
        default=["eu-central-1a", "eu-central-1b"],
        description="Availability zones receiving one subnet each",
    )

    # Stack names
    platform_stack_name: str = Field(
        default="gitops-platform",
        description="Name of the network, EKS and GitOps bootstrap stack",
    )
    registry_stack_name: str = Field(
        default="backstage-registry",
        description="Name of the container image repository stack",
    )
    backstage_stack_name: str = Field(
        default="backstage",
        description="Name of the Backstage application stack",
    )
    infra_stack_ref: Optional[str] = Field(
        default=None,
        description="Stack whose exports the Backstage stack reads (defaults to the platform stack)",
    )

    # Platform network
    vpc_cidr: str = Field(
        default="10.0.0.0/24",
        description="CIDR block of the platform VPC",
    )
    public_subnet_cidrs: List[str] = Field(
        default=["10.0.0.0/27", "10.0.0.32/27"],
        description="Cluster subnet CIDR blocks, paired by index with availability_zones",
    )
    map_public_ip_on_launch: bool = Field(
        default=True,
        description="Whether cluster subnets give nodes a public IP",
    )

    # EKS Configuration
    cluster_name: str = Field(
        default="backstage-flux-gitops-aws",
        description="EKS cluster name",
    )
    eks_version: str = Field(
        default="1.31",
        description="Kubernetes version of the control plane (one of SUPPORTED_EKS_VERSIONS)",
    )
    node_instance_type: str = Field(
        default="t3.medium",
        description="Instance type of the managed node group",
    )
    node_desired_size: int = Field(default=2, description="Desired node count")
    node_min_size: int = Field(default=1, description="Minimum node count")
    node_max_size: int = Field(default=3, description="Maximum node count")

    # AWS Load Balancer Controller (installed by Flux from the GitOps repository)
    alb_controller_namespace: str = Field(
        default="aws-lb-controller",
        description="Namespace of the load balancer controller",
    )
    alb_controller_service_account: str = Field(
        default="aws-lb-controller-serviceaccount",
        description="Service account the controller's IAM role is bound to",
    )

    # Flux Configuration
    flux_chart_repository: str = Field(
        default="oci://ghcr.io/fluxcd-community/charts/flux2",
        description="OCI repository of the Flux 2 Helm chart",
    )
    flux_chart_version: str = Field(
        default="2.11.1",
        description="Flux 2 Helm chart version",
    )
    flux_namespace: str = Field(
        default="flux-system",
        description="Namespace the Flux controllers run in",
    )
    backstage_kubernetes_id: str = Field(
        default="gitops-cluster",
        description="Value of the backstage.io/kubernetes-id tracking label",
    )
    gitops_repo_url: str = Field(
        default="https://github.com/my-backstage-demo/pulumi-gitops-repo.git",
        description="Git repository Flux reconciles the cluster from",
    )
    gitops_repo_branch: str = Field(default="main", description="Branch to track")
    gitops_sync_interval: str = Field(default="1m", description="Poll and reconcile interval")
    gitops_repo_timeout: str = Field(default="60s", description="Git operation timeout")
    gitops_sync_path: str = Field(
        default="./flux/clusters/aws-gitops-platform",
        description="Path inside the repository holding the cluster manifests",
    )
    gitops_prune: bool = Field(default=True, description="Delete objects removed from Git")
    gitops_force: bool = Field(default=False, description="Recreate objects on immutable field changes")

    # Operator access token
    operator_namespace: str = Field(
        default="pulumi-operator",
        description="Namespace of the infrastructure operator",
    )
    access_token_secret_name: str = Field(
        default="backstage/pulumi-access-token",
        description="Secrets Manager secret holding the externally supplied access token",
    )

    # Backstage network
    backstage_subnet_cidrs: List[str] = Field(
        default=["10.0.0.64/27", "10.0.0.128/27"],
        description="Backstage subnet CIDR blocks, paired by index with availability_zones",
    )

    # PostgreSQL Configuration
    db_username: str = Field(default="backstage", description="PostgreSQL master username")
    db_instance_type: str = Field(default="t3.micro", description="RDS instance type")
    postgres_version: str = Field(default="15.4", description="PostgreSQL engine version")
    db_allocated_storage: int = Field(default=20, description="Allocated storage in GiB")
    db_multi_az: bool = Field(default=True, description="Run a standby in a second zone")

    # Container image
    repository_name: str = Field(default="backstage", description="ECR repository name")
    image_tag: str = Field(default="latest", description="Image tag the service runs")
    max_image_count: int = Field(default=10, description="Images kept by the lifecycle policy")
    docker_context: str = Field(default="./backstage", description="Docker build context")
    dockerfile: str = Field(
        default="./backstage/packages/backend/Dockerfile",
        description="Dockerfile of the Backstage backend",
    )
    docker_platform: str = Field(default="linux/amd64", description="Target build platform")

    # ECS Configuration
    container_port: int = Field(default=7007, description="Backstage backend port")
    task_cpu: int = Field(default=2048, description="Fargate task CPU units")
    task_memory_mib: int = Field(default=6144, description="Fargate task memory")
    ephemeral_storage_gib: int = Field(default=100, description="Fargate ephemeral storage")
    desired_count: int = Field(default=1, description="Number of running Backstage tasks")

    @field_validator("vpc_cidr")
    @classmethod
    def validate_vpc_cidr(cls, v: str) -> str:
        """Validate that the VPC CIDR is an IPv4 network."""
        ipaddress.IPv4Network(v)
        return v

    @field_validator("public_subnet_cidrs", "backstage_subnet_cidrs")
    @classmethod
    def validate_subnet_cidrs(cls, v: List[str]) -> List[str]:
        """Validate that every subnet CIDR is an IPv4 network."""
        for cidr in v:
            ipaddress.IPv4Network(cidr)
        return v

    @field_validator("eks_version")
    @classmethod
    def validate_eks_version(cls, v: str) -> str:
        """Validate that kubectl can manage the control plane version."""
        if v not in SUPPORTED_EKS_VERSIONS:
            raise ValueError(
                f"eks_version {v} is not supported; expected one of {list(SUPPORTED_EKS_VERSIONS)}"
            )
        return v

    @field_validator("container_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is within valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def validate_layout(self) -> "Settings":
        """Validate subnet/zone pairing and node group bounds."""
        zones = len(self.availability_zones)
        if zones == 0:
            raise ValueError(
                "availability_zones must name at least one zone; the cluster needs subnets"
            )
        for name in ("public_subnet_cidrs", "backstage_subnet_cidrs"):
            cidrs = getattr(self, name)
            if len(cidrs) != zones:
                raise ValueError(
                    f"{name} has {len(cidrs)} entries but availability_zones has {zones}"
                )
        if not (self.node_min_size <= self.node_desired_size <= self.node_max_size):
            raise ValueError(
                "Node group bounds must satisfy node_min_size <= node_desired_size <= node_max_size"
            )
        return self

    @property
    def reference_stack_name(self) -> str:
        """Stack the Backstage stack imports its platform outputs from."""
        return self.infra_stack_ref or self.platform_stack_name

    @property
    def flux_labels(self) -> dict:
        """Tracking label Backstage uses to find GitOps objects."""
        return {"backstage.io/kubernetes-id": self.backstage_kubernetes_id}

    @property
    def alb_service_account_subject(self) -> str:
        """OIDC subject of the load balancer controller service account."""
        return (
            f"system:serviceaccount:{self.alb_controller_namespace}"
            f":{self.alb_controller_service_account}"
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
