"""
Network Module Functions
Creates VPC, zone subnets, NAT gateways, route tables, flow logs and security groups
for EKS and EC2 k3s clusters
"""

import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List, Optional

from clusterkit import helpers
from clusterkit.config import ClusterConfig


def create_vpc(name: str, cidr: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create VPC with DNS settings

    Args:
        name: VPC name
        cidr: VPC CIDR block
        tags: Additional tags

    Returns:
        Dict with vpc resource and outputs
    """
    tags = tags or {}

    vpc = aws.ec2.Vpc(
        f"{name}-vpc",
        cidr_block=cidr,
        enable_dns_hostnames=True,
        enable_dns_support=True,
        tags={
            **tags,
            "Name": f"{name}-vpc",
            f"kubernetes.io/cluster/{name}": "shared",
            "Module": "network"
        }
    )

    return {
        "vpc": vpc,
        "vpc_id": vpc.id,
        "vpc_cidr_block": vpc.cidr_block
    }


def create_internet_gateway(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    igw = aws.ec2.InternetGateway(
        f"{name}-igw",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-igw",
            "Module": "network"
        }
    )

    return {
        "igw": igw,
        "igw_id": igw.id
    }


def create_zone_subnets(name: str, purpose: str, vpc_id: pulumi.Output[str], region: str,
                        blocks_by_zone: Dict[str, List[str]], public: bool,
                        extra_tags: Dict[str, str] = None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one subnet per CIDR block, in the zone the block is listed under

    Args:
        name: Resource name prefix
        purpose: Subnet role used in names (eks-private, rds, fargate...)
        vpc_id: VPC ID
        region: AWS region, zone suffixes are expanded against it
        blocks_by_zone: CIDR blocks keyed by zone suffix
        public: Assign public IPs on launch
        extra_tags: Tags specific to this subnet role
        tags: Additional tags

    Returns:
        Dict with subnet resources, ids and the subnets grouped by zone
    """
    tags = tags or {}
    extra_tags = extra_tags or {}

    subnets = []
    by_zone = {}
    for zone, blocks in blocks_by_zone.items():
        for i, cidr in enumerate(blocks):
            subnet_name = f"{name}-{purpose}-{zone}-{i+1}"
            subnet = aws.ec2.Subnet(
                subnet_name,
                vpc_id=vpc_id,
                cidr_block=cidr,
                availability_zone=helpers.zone_name(region, zone),
                map_public_ip_on_launch=public,
                tags={
                    **tags,
                    **extra_tags,
                    "Name": subnet_name,
                    "Type": "public" if public else "private",
                    f"kubernetes.io/cluster/{name}": "shared",
                    "Module": "network"
                }
            )
            subnets.append(subnet)
            by_zone.setdefault(zone, []).append(subnet)

    return {
        "subnets": subnets,
        "subnet_ids": [subnet.id for subnet in subnets],
        "by_zone": by_zone
    }


def create_nat_gateways(name: str, public_subnets_by_zone: Dict[str, List[aws.ec2.Subnet]],
                        igw: aws.ec2.InternetGateway, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one Elastic IP and NAT gateway per zone, in the zone's first public subnet

    Returns:
        Dict with NAT gateways keyed by zone and their public IPs
    """
    tags = tags or {}

    nat_gateways = {}
    eips = {}
    for zone, subnets in public_subnets_by_zone.items():
        eip = aws.ec2.Eip(
            f"{name}-nat-eip-{zone}",
            domain="vpc",
            tags={
                **tags,
                "Name": f"{name}-nat-eip-{zone}",
                "Module": "network"
            },
            opts=pulumi.ResourceOptions(depends_on=[igw])
        )
        nat_gateways[zone] = aws.ec2.NatGateway(
            f"{name}-nat-{zone}",
            allocation_id=eip.id,
            subnet_id=subnets[0].id,
            tags={
                **tags,
                "Name": f"{name}-nat-{zone}",
                "Module": "network"
            }
        )
        eips[zone] = eip

    return {
        "nat_gateways": nat_gateways,
        "eips": eips,
        "nat_public_ips": [eip.public_ip for eip in eips.values()]
    }


def custom_routes(routing_table: List[Dict[str, str]]) -> List[aws.ec2.RouteTableRouteArgs]:
    """Translate configured {destination, target} pairs into route arguments"""
    routes = []
    for route in routing_table:
        field = helpers.route_target_field(route["target"])
        routes.append(aws.ec2.RouteTableRouteArgs(
            cidr_block=route["destination"],
            **{field: route["target"]}
        ))
    return routes


def create_route_table(name: str, vpc_id: pulumi.Output[str], routes: List[aws.ec2.RouteTableRouteArgs],
                       subnets: List[aws.ec2.Subnet], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create a route table and associate subnets with it

    Args:
        name: Route table name
        vpc_id: VPC ID
        routes: Routes of the table
        subnets: Subnets to associate
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_table = aws.ec2.RouteTable(
        name,
        vpc_id=vpc_id,
        routes=routes,
        tags={
            **tags,
            "Name": name,
            "Module": "network"
        }
    )

    associations = []
    for i, subnet in enumerate(subnets):
        association = aws.ec2.RouteTableAssociation(
            f"{name}-rta-{i+1}",
            subnet_id=subnet.id,
            route_table_id=route_table.id
        )
        associations.append(association)

    return {
        "route_table": route_table,
        "associations": associations,
        "route_table_id": route_table.id
    }


def create_flow_logs(name: str, cluster_id: str, vpc_id: pulumi.Output[str], retention_days: int,
                     tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Ship VPC flow logs to a dedicated S3 bucket expiring after the retention period

    Returns:
        Dict with bucket and flow log resources
    """
    tags = tags or {}
    bucket_name = helpers.flow_logs_bucket_name(cluster_id)

    bucket = aws.s3.Bucket(
        f"{name}-flow-logs-bucket",
        bucket=bucket_name,
        force_destroy=True,
        tags={
            **tags,
            "Name": bucket_name,
            "Module": "network"
        }
    )

    aws.s3.BucketPublicAccessBlock(
        f"{name}-flow-logs-bucket-pab",
        bucket=bucket.id,
        block_public_acls=True,
        block_public_policy=True,
        ignore_public_acls=True,
        restrict_public_buckets=True
    )

    aws.s3.BucketLifecycleConfiguration(
        f"{name}-flow-logs-bucket-lifecycle",
        bucket=bucket.id,
        rules=[aws.s3.BucketLifecycleConfigurationRuleArgs(
            id="flow_logs_retention",
            status="Enabled",
            filter=aws.s3.BucketLifecycleConfigurationRuleFilterArgs(prefix=""),
            expiration=aws.s3.BucketLifecycleConfigurationRuleExpirationArgs(days=retention_days)
        )]
    )

    flow_log = aws.ec2.FlowLog(
        f"{name}-flow-log",
        vpc_id=vpc_id,
        traffic_type="ALL",
        log_destination_type="s3",
        log_destination=bucket.arn,
        tags={
            **tags,
            "Name": f"{name}-flow-log",
            "Module": "network"
        }
    )

    return {
        "bucket": bucket,
        "flow_log": flow_log,
        "bucket_name": bucket.id
    }


def create_cluster_security_group(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-cluster-sg",
        name_prefix=f"{name}-cluster-",
        description=f"EKS control plane of {name}",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-cluster-sg",
            "Module": "network"
        }
    )

    egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-egress",
        type="egress",
        from_port=0,
        to_port=0,
        protocol="-1",
        cidr_blocks=[helpers.ANY_CIDR],
        security_group_id=security_group.id
    )

    return {
        "security_group": security_group,
        "egress_rule": egress_rule,
        "security_group_id": security_group.id
    }


def create_node_security_group(name: str, vpc_id: pulumi.Output[str], cluster_sg_id: pulumi.Output[str],
                               tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group for worker nodes

    Karpenter discovers this group through the karpenter.sh/discovery tag.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        cluster_sg_id: Cluster security group ID
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-node-sg",
        name_prefix=f"{name}-node-",
        description=f"EKS worker nodes of {name}",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-node-sg",
            f"kubernetes.io/cluster/{name}": "owned",
            "karpenter.sh/discovery": name,
            "Module": "network"
        }
    )

    node_ingress_self = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-self",
        type="ingress",
        from_port=0,
        to_port=0,
        protocol="-1",
        self=True,
        security_group_id=security_group.id
    )

    node_ingress_cluster = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-cluster",
        type="ingress",
        from_port=1025,
        to_port=65535,
        protocol="tcp",
        source_security_group_id=cluster_sg_id,
        security_group_id=security_group.id
    )

    node_egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-node-egress",
        type="egress",
        from_port=0,
        to_port=0,
        protocol="-1",
        cidr_blocks=[helpers.ANY_CIDR],
        security_group_id=security_group.id
    )

    cluster_ingress_node = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-ingress-node",
        type="ingress",
        from_port=443,
        to_port=443,
        protocol="tcp",
        source_security_group_id=security_group.id,
        security_group_id=cluster_sg_id
    )

    return {
        "security_group": security_group,
        "node_ingress_self": node_ingress_self,
        "node_ingress_cluster": node_ingress_cluster,
        "node_egress_rule": node_egress_rule,
        "cluster_ingress_node": cluster_ingress_node,
        "security_group_id": security_group.id
    }


def create_database_subnet_groups(name: str, rds_subnet_ids: List, documentdb_subnet_ids: List,
                                  elasticache_subnet_ids: List, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the RDS, DocumentDB and ElastiCache subnet groups

    A group is skipped when it has no subnets.

    Returns:
        Dict with subnet group names (None when skipped)
    """
    tags = tags or {}
    result = {
        "rds_subnet_group_name": None,
        "documentdb_subnet_group_name": None,
        "elasticache_subnet_group_name": None
    }

    if rds_subnet_ids:
        group = aws.rds.SubnetGroup(
            f"{name}-rds-subnet-group",
            name=f"{name}-rds",
            subnet_ids=rds_subnet_ids,
            tags={**tags, "Name": f"{name}-rds", "Module": "network"}
        )
        result["rds_subnet_group_name"] = group.name

    if documentdb_subnet_ids:
        group = aws.docdb.SubnetGroup(
            f"{name}-documentdb-subnet-group",
            name=f"{name}-documentdb",
            subnet_ids=documentdb_subnet_ids,
            tags={**tags, "Name": f"{name}-documentdb", "Module": "network"}
        )
        result["documentdb_subnet_group_name"] = group.name

    if elasticache_subnet_ids:
        group = aws.elasticache.SubnetGroup(
            f"{name}-elasticache-subnet-group",
            name=f"{name}-elasticache",
            subnet_ids=elasticache_subnet_ids,
            tags={**tags, "Name": f"{name}-elasticache", "Module": "network"}
        )
        result["elasticache_subnet_group_name"] = group.name

    return result


def _split_blocks(blocks_by_zone: Dict[str, List[str]], zones: List[str], network_mode: str):
    private, public = {}, {}
    for zone in zones:
        zone_private, zone_public = helpers.split_subnet_blocks(zone, blocks_by_zone.get(zone, []), network_mode)
        if zone_private:
            private[zone] = zone_private
        if zone_public:
            public[zone] = zone_public
    return private, public


def _zones_only(blocks_by_zone: Dict[str, List[str]], zones: List[str]) -> Dict[str, List[str]]:
    return {zone: blocks_by_zone[zone] for zone in zones if blocks_by_zone.get(zone)}


def create_vpc_resources(cfg: ClusterConfig, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete VPC infrastructure for an EKS cluster

    WithNatGateways: nodes live in private subnets routed through their zone's
    NAT gateway, load balancers in public subnets. WithoutNatGateways: every
    EKS subnet is public and routed through the internet gateway.

    Args:
        cfg: Cluster configuration
        tags: Additional tags for all resources

    Returns:
        Dict with all VPC resources and outputs

    Raises:
        ValueError: With NAT gateways and an odd number of blocks in a zone
    """
    tags = tags or {}
    name = cfg.cluster_name
    network = cfg.network

    private_blocks, public_blocks = _split_blocks(network.eks_subnet_blocks, cfg.zones, network.network_mode)
    pulumi.log.info(f"{name}: creating VPC {network.vpc_cidr_block} in {network.network_mode} mode")

    vpc_result = create_vpc(name, network.vpc_cidr_block, tags)
    vpc_id = vpc_result["vpc_id"]
    igw_result = create_internet_gateway(name, vpc_id, tags)

    public_result = create_zone_subnets(
        name, "eks-public", vpc_id, cfg.region, public_blocks, public=True,
        extra_tags={
            "kubernetes.io/role/elb": "1",
            **({} if network.with_nat_gateways else {"karpenter.sh/discovery": name})
        },
        tags=tags
    )
    private_result = create_zone_subnets(
        name, "eks-private", vpc_id, cfg.region, private_blocks, public=False,
        extra_tags={"kubernetes.io/role/internal-elb": "1", "karpenter.sh/discovery": name},
        tags=tags
    )

    internet_routes = [aws.ec2.RouteTableRouteArgs(cidr_block=helpers.ANY_CIDR, gateway_id=igw_result["igw_id"])]
    internet_routes += custom_routes(network.vpc_custom_routing_table)

    db_result = {}
    for purpose, blocks in (
        ("rds", network.rds_subnet_blocks),
        ("documentdb", network.documentdb_subnet_blocks),
        ("elasticache", network.elasticache_subnet_blocks),
    ):
        db_result[purpose] = create_zone_subnets(
            name, purpose, vpc_id, cfg.region, _zones_only(blocks, cfg.zones), public=True, tags=tags
        )

    public_route_table = create_route_table(
        f"{name}-public-rt", vpc_id, internet_routes,
        public_result["subnets"] + [s for purpose in db_result.values() for s in purpose["subnets"]],
        tags
    )

    nat_result = {"nat_gateways": {}, "nat_public_ips": []}
    private_route_tables = {}
    if network.with_nat_gateways:
        nat_result = create_nat_gateways(name, public_result["by_zone"], igw_result["igw"], tags)
        for zone, subnets in private_result["by_zone"].items():
            routes = [aws.ec2.RouteTableRouteArgs(
                cidr_block=helpers.ANY_CIDR,
                nat_gateway_id=nat_result["nat_gateways"][zone].id
            )] + custom_routes(network.vpc_custom_routing_table)
            private_route_tables[zone] = create_route_table(f"{name}-private-rt-{zone}", vpc_id, routes, subnets, tags)

    fargate_result = None
    if cfg.enable_karpenter and cfg.karpenter.bootstrap_on_fargate:
        fargate_result = create_fargate_subnets(cfg, vpc_id, igw_result, nat_result["nat_gateways"],
                                                public_route_table["route_table_id"], tags)

    cluster_sg_result = create_cluster_security_group(name, vpc_id, tags)
    node_sg_result = create_node_security_group(name, vpc_id, cluster_sg_result["security_group_id"], tags)

    subnet_groups = create_database_subnet_groups(
        name,
        db_result["rds"]["subnet_ids"],
        db_result["documentdb"]["subnet_ids"],
        db_result["elasticache"]["subnet_ids"],
        tags
    )

    flow_logs_result = None
    if cfg.advanced.vpc_enable_flow_logs:
        flow_logs_result = create_flow_logs(name, cfg.cluster_id, vpc_id,
                                            cfg.advanced.vpc_flow_logs_retention_days, tags)

    node_subnet_ids = private_result["subnet_ids"] if network.with_nat_gateways else public_result["subnet_ids"]

    return {
        "vpc_id": vpc_id,
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        "node_subnet_ids": node_subnet_ids,
        "cluster_subnet_ids": (node_subnet_ids + public_result["subnet_ids"]
                               if network.with_nat_gateways else node_subnet_ids),
        "fargate_subnet_ids": fargate_result["subnet_ids"] if fargate_result else [],
        "nat_public_ips": nat_result["nat_public_ips"],
        "cluster_security_group_id": cluster_sg_result["security_group_id"],
        "node_security_group_id": node_sg_result["security_group_id"],
        **subnet_groups,
        # Keep references to all resources for dependencies
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"],
        "_public_route_table": public_route_table["route_table"],
        "_private_route_tables": private_route_tables,
        "_nat_gateways": nat_result["nat_gateways"],
        "_flow_logs": flow_logs_result
    }


def create_fargate_subnets(cfg: ClusterConfig, vpc_id: pulumi.Output[str], igw_result: Dict[str, Any],
                           nat_gateways: Dict[str, aws.ec2.NatGateway], public_route_table_id,
                           tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create private subnets for the Fargate profile running Karpenter

    Fargate pods need outbound access through NAT. Clusters without NAT
    gateways get a dedicated public subnet in the first zone holding a single
    NAT gateway for Fargate traffic.

    Returns:
        Dict with Fargate subnet ids
    """
    tags = tags or {}
    name = cfg.cluster_name
    network = cfg.network

    fargate_result = create_zone_subnets(
        name, "fargate", vpc_id, cfg.region, _zones_only(network.fargate_subnet_blocks, cfg.zones),
        public=False, tags=tags
    )

    if not nat_gateways:
        first_zone = cfg.zones[0]
        nat_subnet_result = create_zone_subnets(
            name, "fargate-nat", vpc_id, cfg.region, {first_zone: [network.nat_for_fargate_subnet_block]},
            public=True, tags=tags
        )
        aws.ec2.RouteTableAssociation(
            f"{name}-fargate-nat-rta",
            subnet_id=nat_subnet_result["subnets"][0].id,
            route_table_id=public_route_table_id
        )
        nat_result = create_nat_gateways(f"{name}-fargate", nat_subnet_result["by_zone"], igw_result["igw"], tags)
        shared_nat = nat_result["nat_gateways"][first_zone]
        nat_gateways = {zone: shared_nat for zone in fargate_result["by_zone"]}

    for zone, subnets in fargate_result["by_zone"].items():
        routes = [aws.ec2.RouteTableRouteArgs(cidr_block=helpers.ANY_CIDR, nat_gateway_id=nat_gateways[zone].id)]
        create_route_table(f"{name}-fargate-rt-{zone}", vpc_id, routes, subnets, tags)

    return fargate_result


def use_existing_network(cfg: ClusterConfig, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Reference a user provided VPC instead of creating one

    Only the security groups and database subnet groups are created, inside
    the existing VPC.

    Args:
        cfg: Cluster configuration with network.user_provided_network set
        tags: Additional tags

    Returns:
        Dict shaped like create_vpc_resources output
    """
    tags = tags or {}
    name = cfg.cluster_name
    user_network = cfg.network.user_provided_network
    pulumi.log.info(f"{name}: deploying into existing VPC {user_network.vpc_id}")

    def flatten(ids_by_zone: Dict[str, List[str]]) -> List[str]:
        return [subnet_id for zone in cfg.zones for subnet_id in ids_by_zone.get(zone, [])]

    existing_vpc = aws.ec2.get_vpc_output(id=user_network.vpc_id)

    cluster_sg_result = create_cluster_security_group(name, user_network.vpc_id, tags)
    node_sg_result = create_node_security_group(name, user_network.vpc_id, cluster_sg_result["security_group_id"], tags)

    subnet_groups = create_database_subnet_groups(
        name,
        flatten(user_network.rds_subnet_ids),
        flatten(user_network.documentdb_subnet_ids),
        flatten(user_network.elasticache_subnet_ids),
        tags
    )

    return {
        "vpc_id": pulumi.Output.from_input(user_network.vpc_id),
        "vpc_cidr_block": existing_vpc.cidr_block,
        "public_subnet_ids": [],
        "private_subnet_ids": flatten(user_network.eks_subnet_ids),
        "node_subnet_ids": flatten(user_network.eks_subnet_ids),
        "cluster_subnet_ids": flatten(user_network.eks_subnet_ids),
        "fargate_subnet_ids": flatten(user_network.karpenter_subnet_ids),
        "nat_public_ips": [],
        "cluster_security_group_id": cluster_sg_result["security_group_id"],
        "node_security_group_id": node_sg_result["security_group_id"],
        **subnet_groups,
        "_vpc": None,
        "_igw": None,
        "_public_route_table": None,
        "_private_route_tables": {},
        "_nat_gateways": {},
        "_flow_logs": None
    }


def create_ec2_network(cfg: ClusterConfig, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the VPC hosting a single k3s instance

    Same NAT gateway logic as EKS, applied to the ec2 subnet blocks. The
    instance itself always lands in a public subnet so its API is reachable.

    Args:
        cfg: Cluster configuration
        tags: Additional tags

    Returns:
        Dict with VPC id, CIDR and the subnet ids
    """
    tags = tags or {}
    name = cfg.cluster_name
    network = cfg.network

    private_blocks, public_blocks = _split_blocks(network.ec2_subnet_blocks, cfg.zones, network.network_mode)

    vpc_result = create_vpc(name, network.vpc_cidr_block, tags)
    vpc_id = vpc_result["vpc_id"]
    igw_result = create_internet_gateway(name, vpc_id, tags)

    public_result = create_zone_subnets(name, "ec2-public", vpc_id, cfg.region, public_blocks, public=True, tags=tags)
    private_result = create_zone_subnets(name, "ec2-private", vpc_id, cfg.region, private_blocks, public=False,
                                         tags=tags)

    db_result = {}
    for purpose, blocks in (
        ("rds", network.rds_subnet_blocks),
        ("documentdb", network.documentdb_subnet_blocks),
        ("elasticache", network.elasticache_subnet_blocks),
    ):
        db_result[purpose] = create_zone_subnets(
            name, purpose, vpc_id, cfg.region, _zones_only(blocks, cfg.zones), public=True, tags=tags
        )

    internet_routes = [aws.ec2.RouteTableRouteArgs(cidr_block=helpers.ANY_CIDR, gateway_id=igw_result["igw_id"])]
    internet_routes += custom_routes(network.vpc_custom_routing_table)
    create_route_table(
        f"{name}-public-rt", vpc_id, internet_routes,
        public_result["subnets"] + [s for purpose in db_result.values() for s in purpose["subnets"]],
        tags
    )

    if network.with_nat_gateways:
        nat_result = create_nat_gateways(name, public_result["by_zone"], igw_result["igw"], tags)
        for zone, subnets in private_result["by_zone"].items():
            routes = [aws.ec2.RouteTableRouteArgs(
                cidr_block=helpers.ANY_CIDR,
                nat_gateway_id=nat_result["nat_gateways"][zone].id
            )]
            create_route_table(f"{name}-private-rt-{zone}", vpc_id, routes, subnets, tags)

    subnet_groups = create_database_subnet_groups(
        name,
        db_result["rds"]["subnet_ids"],
        db_result["documentdb"]["subnet_ids"],
        db_result["elasticache"]["subnet_ids"],
        tags
    )

    if cfg.advanced.vpc_enable_flow_logs:
        create_flow_logs(name, cfg.cluster_id, vpc_id, cfg.advanced.vpc_flow_logs_retention_days, tags)

    return {
        "vpc_id": vpc_id,
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        **subnet_groups,
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"]
    }


def create_network(cfg: ClusterConfig, tags: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Pick the network layout matching the cluster kind and network settings"""
    if cfg.kind == "ec2":
        return create_ec2_network(cfg, tags)
    if cfg.network.user_provided_network is not None:
        return use_existing_network(cfg, tags)
    return create_vpc_resources(cfg, tags)
