"""Subnet allocation across availability zones."""

import ipaddress
import logging
from dataclasses import dataclass
from typing import List, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubnetAllocation:
    """One subnet to declare: its position, CIDR block and zone."""

    index: int
    cidr_block: str
    availability_zone: str


def allocate_subnets(
    cidr_blocks: Sequence[str], availability_zones: Sequence[str]
) -> List[SubnetAllocation]:
    """Pair subnet CIDR blocks with availability zones by index.

    Args:
        cidr_blocks: Non-overlapping IPv4 CIDR blocks, one per zone.
        availability_zones: Zones receiving a subnet each.

    Returns:
        One allocation per zone, in zone order. Empty when no zones are given.

    Raises:
        ValueError: If the lists differ in length, a block is not an IPv4
            network, or two blocks overlap.
    """
    if len(cidr_blocks) != len(availability_zones):
        raise ValueError(
            f"Cannot allocate subnets: {len(cidr_blocks)} CIDR blocks for "
            f"{len(availability_zones)} availability zones"
        )

    networks = [ipaddress.IPv4Network(cidr) for cidr in cidr_blocks]
    for i, network in enumerate(networks):
        for other in networks[i + 1 :]:
            if network.overlaps(other):
                raise ValueError(f"Subnet CIDR blocks overlap: {network} and {other}")

    allocations = [
        SubnetAllocation(index=i, cidr_block=cidr, availability_zone=zone)
        for i, (cidr, zone) in enumerate(zip(cidr_blocks, availability_zones))
    ]
    logger.debug(f"Allocated {len(allocations)} subnets across {list(availability_zones)}")
    return allocations
