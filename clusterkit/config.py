"""
Configuration management for clusterkit stacks
Reads Pulumi stack configuration into typed settings and validates it
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pulumi

from clusterkit.helpers import WITH_NAT_GATEWAYS

CLUSTER_KINDS = ("eks", "ec2", "gke")

WITHOUT_NAT_GATEWAYS = "WithoutNatGateways"
NETWORK_MODES = (WITH_NAT_GATEWAYS, WITHOUT_NAT_GATEWAYS)

DATABASE_ENGINES = ("postgresql", "mysql", "redis", "mongodb")

DEFAULT_ZONES = ["a", "b", "c"]
DEFAULT_VPC_CIDR = "10.0.0.0/16"

DEFAULT_EKS_SUBNET_BLOCKS = {
    "a": ["10.0.0.0/20", "10.0.16.0/20"],
    "b": ["10.0.32.0/20", "10.0.48.0/20"],
    "c": ["10.0.64.0/20", "10.0.80.0/20"],
}
DEFAULT_EC2_SUBNET_BLOCKS = {
    "a": ["10.0.100.0/24", "10.0.101.0/24"],
    "b": ["10.0.102.0/24", "10.0.103.0/24"],
    "c": ["10.0.104.0/24", "10.0.105.0/24"],
}
DEFAULT_FARGATE_SUBNET_BLOCKS = {
    "a": ["10.0.166.0/24"],
    "b": ["10.0.168.0/24"],
    "c": ["10.0.170.0/24"],
}
DEFAULT_NAT_FOR_FARGATE_SUBNET_BLOCK = "10.0.132.0/22"
DEFAULT_DOCUMENTDB_SUBNET_BLOCKS = {
    "a": ["10.0.196.0/23"],
    "b": ["10.0.198.0/23"],
    "c": ["10.0.200.0/23"],
}
DEFAULT_ELASTICACHE_SUBNET_BLOCKS = {
    "a": ["10.0.202.0/23"],
    "b": ["10.0.204.0/23"],
    "c": ["10.0.206.0/23"],
}
DEFAULT_RDS_SUBNET_BLOCKS = {
    "a": ["10.0.214.0/23"],
    "b": ["10.0.216.0/23"],
    "c": ["10.0.218.0/23"],
}

DEFAULT_DNS_PROVIDERS = {"eks": "route53", "ec2": "route53", "gke": "cloud-dns"}


@dataclass
class UserProvidedNetwork:
    """Existing AWS VPC and subnets to deploy into instead of creating a network"""
    vpc_id: str
    eks_subnet_ids: Dict[str, List[str]]
    karpenter_subnet_ids: Dict[str, List[str]] = field(default_factory=dict)
    rds_subnet_ids: Dict[str, List[str]] = field(default_factory=dict)
    documentdb_subnet_ids: Dict[str, List[str]] = field(default_factory=dict)
    elasticache_subnet_ids: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class GkeUserNetwork:
    """Existing GCP VPC to attach a GKE cluster to"""
    vpc_name: str
    subnetwork_name: str
    vpc_project_id: Optional[str] = None
    ip_range_pods_name: Optional[str] = None
    additional_ip_range_pods_names: List[str] = field(default_factory=list)
    ip_range_services_name: Optional[str] = None


@dataclass
class NetworkSettings:
    vpc_cidr_block: str = DEFAULT_VPC_CIDR
    network_mode: str = WITHOUT_NAT_GATEWAYS
    eks_subnet_blocks: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_EKS_SUBNET_BLOCKS))
    ec2_subnet_blocks: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_EC2_SUBNET_BLOCKS))
    rds_subnet_blocks: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_RDS_SUBNET_BLOCKS))
    documentdb_subnet_blocks: Dict[str, List[str]] = field(
        default_factory=lambda: dict(DEFAULT_DOCUMENTDB_SUBNET_BLOCKS))
    elasticache_subnet_blocks: Dict[str, List[str]] = field(
        default_factory=lambda: dict(DEFAULT_ELASTICACHE_SUBNET_BLOCKS))
    fargate_subnet_blocks: Dict[str, List[str]] = field(
        default_factory=lambda: dict(DEFAULT_FARGATE_SUBNET_BLOCKS))
    nat_for_fargate_subnet_block: str = DEFAULT_NAT_FOR_FARGATE_SUBNET_BLOCK
    user_provided_network: Optional[UserProvidedNetwork] = None
    vpc_custom_routing_table: List[Dict[str, str]] = field(default_factory=list)

    @property
    def with_nat_gateways(self) -> bool:
        return self.network_mode == WITH_NAT_GATEWAYS


@dataclass
class NodeGroup:
    name: str
    instance_type: str
    min_nodes: int
    max_nodes: int
    desired_nodes: Optional[int] = None
    disk_size_in_gib: int = 20
    spot: bool = False
    architecture: str = "AMD64"

    @property
    def capacity_type(self) -> str:
        """Get node group capacity type based on spot instance configuration"""
        return "SPOT" if self.spot else "ON_DEMAND"

    @property
    def ami_type(self) -> str:
        return "AL2023_ARM_64_STANDARD" if self.architecture == "ARM64" else "AL2023_x86_64_STANDARD"


@dataclass
class KarpenterSettings:
    spot_enabled: bool = False
    disk_size_in_gib: int = 50
    default_architecture: str = "AMD64"
    bootstrap_on_fargate: bool = True
    max_node_drain_time_in_secs: Optional[int] = None
    instance_categories: List[str] = field(default_factory=lambda: ["c", "m", "r", "t"])
    excluded_instance_types: List[str] = field(default_factory=list)
    limits: Dict[str, str] = field(default_factory=lambda: {"cpu": "1000", "memory": "1000Gi"})
    disruption_budgets: List[Dict[str, Any]] = field(default_factory=lambda: [{"nodes": "10%"}])
    consolidate_after: str = "1m"


@dataclass
class DnsSettings:
    provider: str
    domain: str = ""
    tls_email_report: str = ""
    cloudflare_email: str = ""


@dataclass
class AdvancedSettings:
    cloudwatch_eks_logs_retention_days: int = 90
    eks_encrypt_secrets_kms_key_arn: str = ""
    ec2_metadata_imds: str = "required"
    eks_upgrade_timeout_in_min: int = 60
    vpc_enable_flow_logs: bool = False
    vpc_flow_logs_retention_days: int = 365
    static_ip_mode: bool = False
    platform_allowed_cidrs: List[str] = field(default_factory=list)
    k8s_api_allowed_cidrs: Optional[List[str]] = None
    database_allowed_cidrs: Dict[str, List[str]] = field(default_factory=dict)
    database_deny_any_access: Dict[str, bool] = field(default_factory=dict)
    resource_expiration_in_seconds: Optional[int] = None
    loki_log_retention_in_week: int = 12
    nginx_log_format_upstream: Optional[str] = None
    gcp_vpc_enable_flow_logs: bool = False
    gcp_vpc_flow_logs_sampling: float = 0.0

    def allowed_cidrs_for(self, engine: str) -> List[str]:
        if self.database_deny_any_access.get(engine, False):
            return []
        return self.database_allowed_cidrs.get(engine, ["0.0.0.0/0"])


@dataclass
class Features:
    metrics_history_enabled: bool = False
    log_history_enabled: bool = True
    datadog_enabled: bool = False
    datadog_site: str = "datadoghq.com"
    grafana_admin_user: str = "admin"


@dataclass
class DatabaseSpec:
    name: str
    engine: str
    version: str
    instance_class: str
    disk_size_in_gib: int = 10
    username: str = "superuser"
    password_secret: str = ""
    publicly_accessible: bool = False

    @property
    def password_key(self) -> str:
        return self.password_secret or f"{self.name}_password"


@dataclass
class Ec2Settings:
    instance_type: str = "t3.large"
    disk_size_in_gib: int = 20
    exposed_port: Optional[int] = None
    user_ssh_keys: List[str] = field(default_factory=list)
    kubeconfig_ready: bool = False

    @property
    def user_ssh_key(self) -> str:
        # AWS key pairs only hold a single key
        return self.user_ssh_keys[0] if self.user_ssh_keys else ""


@dataclass
class GkeSettings:
    project_id: str = ""
    user_network: Optional[GkeUserNetwork] = None
    cluster_ipv4_cidr_block: str = ""
    services_ipv4_cidr_block: str = ""
    maintenance_start_time: str = ""
    maintenance_end_time: str = ""
    release_channel: str = "REGULAR"


@dataclass
class AddonVersionOverrides:
    vpc_cni: Optional[str] = None
    kube_proxy: Optional[str] = None
    coredns: Optional[str] = None
    ebs_csi: Optional[str] = None


@dataclass
class ClusterConfig:
    """Centralized configuration for one cluster stack"""
    kind: str
    cluster_id: str
    cluster_name: str
    region: str
    kubernetes_version: str
    cluster_long_id: str = ""
    organization_id: str = ""
    zones: List[str] = field(default_factory=lambda: list(DEFAULT_ZONES))
    tags: Dict[str, str] = field(default_factory=dict)
    test_cluster: bool = False
    dns: DnsSettings = field(default_factory=lambda: DnsSettings(provider="route53"))
    network: NetworkSettings = field(default_factory=NetworkSettings)
    node_groups: List[NodeGroup] = field(default_factory=list)
    karpenter: Optional[KarpenterSettings] = None
    advanced: AdvancedSettings = field(default_factory=AdvancedSettings)
    features: Features = field(default_factory=Features)
    databases: List[DatabaseSpec] = field(default_factory=list)
    ec2: Ec2Settings = field(default_factory=Ec2Settings)
    gke: GkeSettings = field(default_factory=GkeSettings)
    addon_overrides: AddonVersionOverrides = field(default_factory=AddonVersionOverrides)

    @property
    def enable_karpenter(self) -> bool:
        return self.kind == "eks" and self.karpenter is not None

    @property
    def region_cluster_id(self) -> str:
        return f"{self.region}-{self.cluster_id}"

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "ClusterId": self.cluster_id,
            "ClusterLongId": self.cluster_long_id,
            "OrganizationId": self.organization_id,
            "Region": self.region,
            "ManagedBy": "pulumi",
        }
        if self.advanced.resource_expiration_in_seconds:
            base_tags["ttl"] = str(self.advanced.resource_expiration_in_seconds)
        base_tags.update(self.tags)
        return base_tags

    @property
    def common_labels(self) -> Dict[str, str]:
        """GCP labels: lowercase keys and values only"""
        return {
            key.lower(): str(value).lower().replace(".", "-")
            for key, value in self.common_tags.items()
            if value
        }


def _validate_cidrs(label: str, cidrs: List[str]) -> None:
    for cidr in cidrs:
        try:
            ipaddress.ip_network(cidr, strict=False)
        except ValueError as e:
            raise ValueError(f"invalid CIDR block {cidr!r} in {label}: {e}") from e


def _blocks(config, key: str, default: Dict[str, List[str]]) -> Dict[str, List[str]]:
    blocks = config.get_object(key) or default
    for zone, cidrs in blocks.items():
        _validate_cidrs(f"{key}.{zone}", cidrs)
    return {zone: list(cidrs) for zone, cidrs in blocks.items()}


def _node_groups(raw: List[Dict[str, Any]]) -> List[NodeGroup]:
    groups = []
    for item in raw:
        group = NodeGroup(**item)
        desired = group.desired_nodes if group.desired_nodes is not None else group.min_nodes
        if not group.min_nodes <= desired <= group.max_nodes:
            raise ValueError(
                f"node group {group.name}: expected min_nodes <= desired_nodes <= max_nodes, "
                f"got {group.min_nodes}/{desired}/{group.max_nodes}"
            )
        group.desired_nodes = desired
        groups.append(group)
    return groups


def _databases(raw: List[Dict[str, Any]]) -> List[DatabaseSpec]:
    databases = []
    for item in raw:
        spec = DatabaseSpec(**item)
        if spec.engine not in DATABASE_ENGINES:
            raise ValueError(
                f"database {spec.name}: unknown engine {spec.engine!r}, "
                f"expected one of {', '.join(DATABASE_ENGINES)}"
            )
        databases.append(spec)
    return databases


def _advanced(raw: Dict[str, Any]) -> AdvancedSettings:
    advanced = AdvancedSettings(**raw)
    _validate_cidrs("platform_allowed_cidrs", advanced.platform_allowed_cidrs)
    _validate_cidrs("k8s_api_allowed_cidrs", advanced.k8s_api_allowed_cidrs or [])
    for engine, cidrs in advanced.database_allowed_cidrs.items():
        _validate_cidrs(f"database_allowed_cidrs.{engine}", cidrs)
    return advanced


def load_config(config=None) -> ClusterConfig:
    """
    Build the cluster configuration from Pulumi stack configuration

    Args:
        config: Object with the pulumi.Config reader interface, defaults to pulumi.Config()

    Returns:
        Validated ClusterConfig

    Raises:
        ValueError: When a setting is missing or inconsistent
    """
    config = config or pulumi.Config()

    kind = config.get("kind") or "eks"
    if kind not in CLUSTER_KINDS:
        raise ValueError(f"unknown cluster kind {kind!r}, expected one of {', '.join(CLUSTER_KINDS)}")

    cluster_id = config.require("cluster_id")
    provider_namespace = "gcp" if kind == "gke" else "aws"
    region = config.get("region") or pulumi.Config(provider_namespace).require("region")

    default_version = "v1.29.1+k3s1" if kind == "ec2" else "1.29"

    network_mode = config.get("network_mode") or WITHOUT_NAT_GATEWAYS
    if network_mode not in NETWORK_MODES:
        raise ValueError(f"unknown network mode {network_mode!r}, expected one of {', '.join(NETWORK_MODES)}")

    vpc_cidr_block = config.get("vpc_cidr_block") or DEFAULT_VPC_CIDR
    _validate_cidrs("vpc_cidr_block", [vpc_cidr_block])

    user_network = config.get_object("user_provided_network")
    network = NetworkSettings(
        vpc_cidr_block=vpc_cidr_block,
        network_mode=network_mode,
        eks_subnet_blocks=_blocks(config, "eks_subnet_blocks", DEFAULT_EKS_SUBNET_BLOCKS),
        ec2_subnet_blocks=_blocks(config, "ec2_subnet_blocks", DEFAULT_EC2_SUBNET_BLOCKS),
        rds_subnet_blocks=_blocks(config, "rds_subnet_blocks", DEFAULT_RDS_SUBNET_BLOCKS),
        documentdb_subnet_blocks=_blocks(config, "documentdb_subnet_blocks", DEFAULT_DOCUMENTDB_SUBNET_BLOCKS),
        elasticache_subnet_blocks=_blocks(config, "elasticache_subnet_blocks", DEFAULT_ELASTICACHE_SUBNET_BLOCKS),
        fargate_subnet_blocks=_blocks(config, "fargate_subnet_blocks", DEFAULT_FARGATE_SUBNET_BLOCKS),
        nat_for_fargate_subnet_block=config.get("nat_for_fargate_subnet_block") or DEFAULT_NAT_FOR_FARGATE_SUBNET_BLOCK,
        user_provided_network=UserProvidedNetwork(**user_network) if kind != "gke" and user_network else None,
        vpc_custom_routing_table=config.get_object("vpc_custom_routing_table") or [],
    )

    zones = config.get_object("zones")
    if zones is None:
        zones = [] if kind == "gke" else list(DEFAULT_ZONES)
    if kind == "eks" and not zones:
        raise ValueError("an EKS cluster needs at least one availability zone")

    karpenter_raw = config.get_object("karpenter")
    gke_network = config.get_object("gke_user_network")
    gcp_project = config.get("gcp_project") or ""
    if kind == "gke" and not gcp_project:
        gcp_project = pulumi.Config("gcp").require("project")

    cfg = ClusterConfig(
        kind=kind,
        cluster_id=cluster_id,
        cluster_long_id=config.get("cluster_long_id") or "",
        cluster_name=config.get("cluster_name") or f"clusterkit-{cluster_id}",
        organization_id=config.get("organization_id") or "",
        region=region,
        kubernetes_version=config.get("kubernetes_version") or default_version,
        zones=zones,
        tags=config.get_object("tags") or {},
        test_cluster=config.get_bool("test_cluster") or False,
        dns=DnsSettings(
            provider=config.get("dns_provider") or DEFAULT_DNS_PROVIDERS[kind],
            domain=config.get("dns_domain") or "",
            tls_email_report=config.get("tls_email_report") or "",
            cloudflare_email=config.get("cloudflare_email") or "",
        ),
        network=network,
        node_groups=_node_groups(config.get_object("node_groups") or []),
        karpenter=KarpenterSettings(**karpenter_raw) if karpenter_raw is not None else None,
        advanced=_advanced(config.get_object("advanced") or {}),
        features=Features(**(config.get_object("features") or {})),
        databases=_databases(config.get_object("databases") or []),
        ec2=Ec2Settings(**(config.get_object("ec2") or {})),
        gke=GkeSettings(
            project_id=gcp_project,
            user_network=GkeUserNetwork(**gke_network) if gke_network else None,
            cluster_ipv4_cidr_block=config.get("gke_cluster_ipv4_cidr_block") or "",
            services_ipv4_cidr_block=config.get("gke_services_ipv4_cidr_block") or "",
            maintenance_start_time=config.get("gke_maintenance_start_time") or "",
            maintenance_end_time=config.get("gke_maintenance_end_time") or "",
            release_channel=config.get("gke_release_channel") or "REGULAR",
        ),
        addon_overrides=AddonVersionOverrides(**(config.get_object("addon_version_overrides") or {})),
    )

    if cfg.kind == "eks" and not cfg.enable_karpenter and not cfg.node_groups:
        cfg.node_groups = [NodeGroup(name="default", instance_type="t3a.large", min_nodes=3,
                                     max_nodes=10, desired_nodes=3)]
    if cfg.enable_karpenter and not cfg.karpenter.bootstrap_on_fargate and not cfg.node_groups:
        raise ValueError(
            "karpenter without bootstrap_on_fargate needs at least one node group to run its controller"
        )

    return cfg


def get_config() -> ClusterConfig:
    """Get the stack configuration instance"""
    return load_config()
