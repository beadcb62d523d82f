"""Backstage application stack.

This stack reads the platform stack's exports by name and creates all AWS
resources needed to run Backstage on ECS Fargate, including:
- Subnets in the platform VPC, associated with its public route table
- Security groups for the load balancer, tasks and database
- Internet-facing Application Load Balancer
- RDS PostgreSQL database with generated credentials
- IAM execution and task roles
- CloudWatch log group
- ECS cluster, Fargate task definition and service
"""

import logging
from typing import Dict

import aws_cdk as cdk
from aws_cdk import (
    aws_ec2 as ec2,
    aws_ecr as ecr,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_rds as rds,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from backstage_gitops.config import Settings
from backstage_gitops.task_environment import (
    K8S_CLUSTER_SA_TOKEN,
    POSTGRES_PASSWORD,
    PULUMI_ACCESS_TOKEN,
    build_container_environment,
)
from infrastructure.network import ZonalSubnets
from infrastructure.stack_reference import (
    BACKSTAGE_TOKEN,
    GITOPS_PLATFORM_ENDPOINT,
    ROUTE_TABLE_ID,
    VPC_ID,
    StackReference,
)

logger = logging.getLogger(__name__)

CONTAINER_NAME = "backstage"

# Broad by request of the platform owners; see DESIGN.md before narrowing
TASK_ROLE_ACTIONS = [
    "rds-db:*",
    "s3:*",
    "ecr:*",
    "rds:*",
    "ecs:*",
    "ec2:*",
    "eks:*",
    "iam:*",
    "lambda:*",
    "apigateway:*",
    "ssm:*",
    "autoscaling-plans:*",
    "autoscaling:*",
    "cloudformation:*",
]


class BackstageStack(cdk.Stack):
    """Stack running Backstage on Fargate next to the GitOps platform."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: Settings,
        repository: ecr.IRepository,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config
        self.repository = repository

        # Platform outputs, resolved at deploy time
        self.platform = StackReference(self, "Platform", config.reference_stack_name)
        self.vpc_id = self.platform.get_output(VPC_ID)
        self.route_table_id = self.platform.get_output(ROUTE_TABLE_ID)
        self.cluster_endpoint = self.platform.get_output(GITOPS_PLATFORM_ENDPOINT)
        self.cluster_token_arn = self.platform.get_output(BACKSTAGE_TOKEN)

        self.vpc = ec2.Vpc.from_vpc_attributes(
            self,
            "PlatformVpc",
            vpc_id=self.vpc_id,
            availability_zones=list(config.availability_zones),
        )
        self.subnets = ZonalSubnets(
            self,
            "FargateSubnets",
            name_prefix="backstage-fargate",
            vpc_id=self.vpc_id,
            route_table_id=self.route_table_id,
            cidr_blocks=config.backstage_subnet_cidrs,
            availability_zones=config.availability_zones,
        )

        self._create_security_groups()
        self.alb = self._create_application_load_balancer()
        self.db = self._create_rds_database()
        self.iam_roles = self._create_iam_roles()
        self.log_group = self._create_log_group()
        self.task_definition = self._create_task_definition()
        self.cluster = self._create_ecs_cluster()
        self.service = self._create_service()
        self._create_outputs()

    def _create_security_groups(self) -> None:
        """Create security groups for the load balancer, tasks and database."""
        self.alb_security_group = ec2.SecurityGroup(
            self,
            "ALBSecurityGroup",
            vpc=self.vpc,
            description="Security group for the Backstage load balancer",
            allow_all_outbound=True,
        )

        # Allow HTTP traffic from internet
        self.alb_security_group.add_ingress_rule(
            ec2.Peer.any_ipv4(),
            ec2.Port.tcp(80),
            "Allow HTTP from internet",
        )

        self.ecs_security_group = ec2.SecurityGroup(
            self,
            "ECSSecurityGroup",
            vpc=self.vpc,
            description="Security group for Backstage tasks",
            allow_all_outbound=True,
        )

        # Allow traffic from ALB
        self.ecs_security_group.add_ingress_rule(
            self.alb_security_group,
            ec2.Port.tcp(self.config.container_port),
            "Allow traffic from ALB",
        )

        self.db_security_group = ec2.SecurityGroup(
            self,
            "RDSSecurityGroup",
            vpc=self.vpc,
            description="Security group for the Backstage database",
            allow_all_outbound=False,
        )

        # Allow traffic to RDS
        self.db_security_group.add_ingress_rule(
            self.ecs_security_group,
            ec2.Port.tcp(5432),
            "Allow PostgreSQL from ECS tasks",
        )

    def _create_application_load_balancer(self) -> elbv2.ApplicationLoadBalancer:
        """Create Application Load Balancer, target group and listener."""
        alb = elbv2.ApplicationLoadBalancer(
            self,
            "ApplicationLoadBalancer",
            vpc=self.vpc,
            internet_facing=True,
            load_balancer_name="backstage",
            security_group=self.alb_security_group,
            vpc_subnets=self.subnets.selection,
        )

        self.target_group = elbv2.ApplicationTargetGroup(
            self,
            "TargetGroup",
            vpc=self.vpc,
            target_group_name="backstage",
            port=self.config.container_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(
                path="/",
                interval=cdk.Duration.seconds(30),
                timeout=cdk.Duration.seconds(10),
                healthy_threshold_count=2,
                unhealthy_threshold_count=3,
            ),
        )

        self.listener = alb.add_listener(
            "HTTPListener",
            port=80,
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_target_groups=[self.target_group],
        )

        return alb

    def _create_rds_database(self) -> rds.DatabaseInstance:
        """Create RDS PostgreSQL database instance."""
        major_version = self.config.postgres_version.split(".")[0]
        return rds.DatabaseInstance(
            self,
            "PostgreSQLDatabase",
            engine=rds.DatabaseInstanceEngine.postgres(
                version=rds.PostgresEngineVersion.of(self.config.postgres_version, major_version)
            ),
            instance_type=ec2.InstanceType(self.config.db_instance_type),
            vpc=self.vpc,
            vpc_subnets=self.subnets.selection,
            security_groups=[self.db_security_group],
            credentials=rds.Credentials.from_generated_secret(
                self.config.db_username, exclude_characters='",\\@/'
            ),
            allocated_storage=self.config.db_allocated_storage,
            multi_az=self.config.db_multi_az,
            publicly_accessible=False,
            deletion_protection=False,
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )

    def _create_iam_roles(self) -> dict[str, iam.Role]:
        """Create IAM roles for ECS tasks."""
        # Task execution role
        execution_role = iam.Role(
            self,
            "ECSTaskExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AmazonECSTaskExecutionRolePolicy"
                )
            ],
        )

        # Task role (for Backstage plugins to access AWS services)
        task_role = iam.Role(
            self,
            "ECSTaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
        )

        iam.ManagedPolicy(
            self,
            "ECSTaskPolicy",
            statements=[
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=TASK_ROLE_ACTIONS,
                    resources=["*"],
                )
            ],
            roles=[task_role],
        )

        return {
            "execution_role": execution_role,
            "task_role": task_role,
        }

    def _create_log_group(self) -> logs.LogGroup:
        """Create CloudWatch log group."""
        return logs.LogGroup(
            self,
            "LogGroup",
            log_group_name="backstage-log",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=cdk.RemovalPolicy.DESTROY,
        )

    def _container_secrets(self) -> Dict[str, ecs.Secret]:
        """Secret references injected into the container at start."""
        cluster_token = secretsmanager.Secret.from_secret_complete_arn(
            self, "ClusterTokenSecret", self.cluster_token_arn
        )
        access_token = secretsmanager.Secret.from_secret_name_v2(
            self, "AccessTokenSecret", self.config.access_token_secret_name
        )
        return {
            POSTGRES_PASSWORD: ecs.Secret.from_secrets_manager(self.db.secret, "password"),
            K8S_CLUSTER_SA_TOKEN: ecs.Secret.from_secrets_manager(cluster_token),
            PULUMI_ACCESS_TOKEN: ecs.Secret.from_secrets_manager(access_token),
        }

    def _create_task_definition(self) -> ecs.FargateTaskDefinition:
        """Create the Fargate task definition and its container."""
        task_definition = ecs.FargateTaskDefinition(
            self,
            "TaskDefinition",
            family="backstage",
            cpu=self.config.task_cpu,
            memory_limit_mib=self.config.task_memory_mib,
            ephemeral_storage_gib=self.config.ephemeral_storage_gib,
            execution_role=self.iam_roles["execution_role"],
            task_role=self.iam_roles["task_role"],
        )

        environment = build_container_environment(
            db_host=self.db.db_instance_endpoint_address,
            db_port=self.db.db_instance_endpoint_port,
            db_user=self.config.db_username,
            load_balancer_dns=self.alb.load_balancer_dns_name,
            cluster_endpoint=self.cluster_endpoint,
            container_port=self.config.container_port,
        )

        container = task_definition.add_container(
            CONTAINER_NAME,
            container_name=CONTAINER_NAME,
            image=ecs.ContainerImage.from_ecr_repository(
                self.repository, tag=self.config.image_tag
            ),
            essential=True,
            environment=environment,
            secrets=self._container_secrets(),
            logging=ecs.LogDriver.aws_logs(
                stream_prefix="backstage",
                log_group=self.log_group,
            ),
        )

        container.add_port_mappings(
            ecs.PortMapping(
                container_port=self.config.container_port,
                host_port=self.config.container_port,
                protocol=ecs.Protocol.TCP,
            )
        )

        logger.info(f"Backstage container environment: {sorted(environment)}")
        return task_definition

    def _create_ecs_cluster(self) -> ecs.Cluster:
        """Create ECS cluster."""
        return ecs.Cluster(
            self,
            "ECSCluster",
            cluster_name="backstage",
            vpc=self.vpc,
        )

    def _create_service(self) -> ecs.FargateService:
        """Create ECS Fargate service behind the load balancer."""
        service = ecs.FargateService(
            self,
            "Service",
            cluster=self.cluster,
            task_definition=self.task_definition,
            desired_count=self.config.desired_count,
            security_groups=[self.ecs_security_group],
            vpc_subnets=self.subnets.selection,
            assign_public_ip=True,
            health_check_grace_period=cdk.Duration.seconds(60),
        )

        # Attach service to target group
        service.attach_to_application_target_group(self.target_group)

        # The target group only accepts registrations once the listener exists
        service.node.add_dependency(self.listener)

        return service

    def _create_outputs(self) -> None:
        """Output the database endpoint, URL and image reference."""
        cdk.CfnOutput(
            self,
            "rds",
            value=self.db.db_instance_endpoint_address,
            description="RDS PostgreSQL endpoint",
        )

        cdk.CfnOutput(
            self,
            "url",
            value=self.alb.load_balancer_dns_name,
            description="Application Load Balancer DNS name",
        )

        cdk.CfnOutput(
            self,
            "backstage-image",
            value=self.repository.repository_uri_for_tag(self.config.image_tag),
            description="Image the Backstage service runs",
        )
