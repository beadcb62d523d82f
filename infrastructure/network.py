"""Network constructs: the platform VPC and per-zone public subnets."""

import logging
from typing import List, Optional, Sequence

import aws_cdk as cdk
from aws_cdk import aws_ec2 as ec2
from constructs import Construct

from backstage_gitops.networking import SubnetAllocation, allocate_subnets

logger = logging.getLogger(__name__)


class ZonalSubnets(Construct):
    """One subnet per availability zone, each associated with a shared route table.

    Subnets are declared from a fixed list of CIDR blocks paired by index with
    the zone list. With no zones, neither subnets nor associations are declared.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        name_prefix: str,
        vpc_id: str,
        route_table_id: str,
        cidr_blocks: Sequence[str],
        availability_zones: Sequence[str],
        map_public_ip_on_launch: bool = False,
    ) -> None:
        super().__init__(scope, construct_id)

        self.allocations: List[SubnetAllocation] = allocate_subnets(
            cidr_blocks, availability_zones
        )
        self.cfn_subnets: List[ec2.CfnSubnet] = []
        self.subnets: List[ec2.ISubnet] = []

        for allocation in self.allocations:
            subnet = ec2.CfnSubnet(
                self,
                f"Subnet{allocation.index}",
                vpc_id=vpc_id,
                cidr_block=allocation.cidr_block,
                availability_zone=allocation.availability_zone,
                map_public_ip_on_launch=map_public_ip_on_launch,
                assign_ipv6_address_on_creation=False,
                tags=[
                    cdk.CfnTag(
                        key="Name",
                        value=f"{name_prefix}-subnet-{allocation.availability_zone}",
                    )
                ],
            )

            ec2.CfnSubnetRouteTableAssociation(
                self,
                f"RouteTableAssociation{allocation.index}",
                route_table_id=route_table_id,
                subnet_id=subnet.ref,
            )

            self.cfn_subnets.append(subnet)
            self.subnets.append(
                ec2.Subnet.from_subnet_attributes(
                    self,
                    f"SubnetRef{allocation.index}",
                    subnet_id=subnet.ref,
                    availability_zone=allocation.availability_zone,
                    route_table_id=route_table_id,
                )
            )

        logger.info(
            f"{name_prefix}: declared {len(self.allocations)} subnets in "
            f"{[a.availability_zone for a in self.allocations]}"
        )

    @property
    def subnet_ids(self) -> List[str]:
        """Subnet ids (tokens until deployed)."""
        return [subnet.ref for subnet in self.cfn_subnets]

    @property
    def selection(self) -> ec2.SubnetSelection:
        """Subnet selection for L2 constructs placed in these subnets."""
        return ec2.SubnetSelection(subnets=self.subnets)


class PublicNetwork(Construct):
    """VPC with an internet gateway, a default route and per-zone subnets."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        name_prefix: str,
        vpc_cidr: str,
        cidr_blocks: Sequence[str],
        availability_zones: Sequence[str],
        map_public_ip_on_launch: bool = False,
    ) -> None:
        super().__init__(scope, construct_id)

        self.cfn_vpc = ec2.CfnVPC(
            self,
            "Vpc",
            cidr_block=vpc_cidr,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            tags=[cdk.CfnTag(key="Name", value=f"{name_prefix}-vpc")],
        )

        self.internet_gateway = ec2.CfnInternetGateway(
            self,
            "InternetGateway",
            tags=[cdk.CfnTag(key="Name", value=f"{name_prefix}-igw")],
        )

        gateway_attachment = ec2.CfnVPCGatewayAttachment(
            self,
            "InternetGatewayAttachment",
            vpc_id=self.cfn_vpc.ref,
            internet_gateway_id=self.internet_gateway.ref,
        )

        self.route_table = ec2.CfnRouteTable(
            self,
            "RouteTable",
            vpc_id=self.cfn_vpc.ref,
            tags=[cdk.CfnTag(key="Name", value=f"{name_prefix}-rt")],
        )

        default_route = ec2.CfnRoute(
            self,
            "DefaultRoute",
            route_table_id=self.route_table.ref,
            destination_cidr_block="0.0.0.0/0",
            gateway_id=self.internet_gateway.ref,
        )
        # The gateway must be attached before a route can target it
        default_route.node.add_dependency(gateway_attachment)

        self.public_subnets = ZonalSubnets(
            self,
            "PublicSubnets",
            name_prefix=name_prefix,
            vpc_id=self.cfn_vpc.ref,
            route_table_id=self.route_table.ref,
            cidr_blocks=cidr_blocks,
            availability_zones=availability_zones,
            map_public_ip_on_launch=map_public_ip_on_launch,
        )

        # An imported VPC needs at least one zone
        self.vpc: Optional[ec2.IVpc] = None
        if availability_zones:
            self.vpc = ec2.Vpc.from_vpc_attributes(
                self,
                "VpcRef",
                vpc_id=self.cfn_vpc.ref,
                vpc_cidr_block=vpc_cidr,
                availability_zones=list(availability_zones),
            )

    @property
    def vpc_id(self) -> str:
        """VPC id (token until deployed)."""
        return self.cfn_vpc.ref

    @property
    def route_table_id(self) -> str:
        """Route table id (token until deployed)."""
        return self.route_table.ref
