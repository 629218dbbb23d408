"""
Network Module
AWS VPC, subnets, NAT gateways, routing and security groups
"""

from .functions import (
    create_vpc_resources,
    use_existing_network,
    create_ec2_network,
    create_network,
)

__all__ = [
    "create_vpc_resources",
    "use_existing_network",
    "create_ec2_network",
    "create_network",
]
