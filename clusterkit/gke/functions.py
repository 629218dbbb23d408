"""
GKE Module Functions
Creates the VPC network, Cloud NAT and Autopilot cluster on GCP, and binds
Kubernetes service accounts to Google service accounts
"""

import pulumi
import pulumi_gcp as gcp
from typing import Any, Dict, Iterable, Optional

from clusterkit import helpers
from clusterkit.config import ClusterConfig

# GKE recurring windows take full RFC3339 timestamps, only the time of day matters
MAINTENANCE_REFERENCE_DATE = "2024-01-01"

DEFAULT_PODS_CIDR_BLOCK = "10.4.0.0/14"
DEFAULT_SERVICES_CIDR_BLOCK = "10.8.0.0/20"


def maintenance_policy(start_time: str, end_time: str = "") -> Optional[gcp.container.ClusterMaintenancePolicyArgs]:
    """
    Build the cluster maintenance policy from HH:MM times

    A start time alone gives a daily window. A start and an end time give a
    daily recurring window between both. No start time leaves the policy to GKE.
    """
    if not start_time:
        return None
    if not end_time:
        return gcp.container.ClusterMaintenancePolicyArgs(
            daily_maintenance_window=gcp.container.ClusterMaintenancePolicyDailyMaintenanceWindowArgs(
                start_time=start_time
            )
        )
    return gcp.container.ClusterMaintenancePolicyArgs(
        recurring_window=gcp.container.ClusterMaintenancePolicyRecurringWindowArgs(
            start_time=f"{MAINTENANCE_REFERENCE_DATE}T{start_time}:00Z",
            end_time=f"{MAINTENANCE_REFERENCE_DATE}T{end_time}:00Z",
            recurrence="FREQ=DAILY"
        )
    )


def create_gke_network(cfg: ClusterConfig) -> Dict[str, Any]:
    """
    Create or reference the VPC network of a GKE cluster

    Automatic mode creates a custom-mode network and a subnetwork, both named
    after the cluster. The subnetwork carries the pods and services secondary
    ranges used by the cluster. WithNatGateways adds a Cloud Router and Cloud NAT with a
    reserved egress address, and makes the cluster private. A user provided
    network is only referenced.

    Args:
        cfg: Cluster configuration

    Returns:
        Dict with network and subnetwork references and the IP allocation settings
    """
    name = cfg.cluster_name
    project = cfg.gke.project_id
    user_network = cfg.gke.user_network
    is_private = cfg.network.with_nat_gateways

    if user_network is not None:
        network_project = user_network.vpc_project_id or project
        pulumi.log.info(f"{name}: attaching to existing network {network_project}/{user_network.vpc_name}")
        return {
            "network": f"projects/{network_project}/global/networks/{user_network.vpc_name}",
            "subnetwork": f"projects/{network_project}/regions/{cfg.region}/subnetworks/{user_network.subnetwork_name}",
            "network_project_id": network_project,
            "cluster_is_private": is_private,
            "pods_range_name": user_network.ip_range_pods_name,
            "additional_pods_range_names": list(user_network.additional_ip_range_pods_names),
            "services_range_name": user_network.ip_range_services_name,
            "nat_address": None,
            "_network": None,
            "_subnetwork": None
        }

    network = gcp.compute.Network(
        f"{name}-network",
        name=name,
        project=project,
        auto_create_subnetworks=False,
        routing_mode="REGIONAL"
    )

    log_config = None
    if cfg.advanced.gcp_vpc_enable_flow_logs:
        log_config = gcp.compute.SubnetworkLogConfigArgs(
            aggregation_interval="INTERVAL_5_SEC",
            flow_sampling=cfg.advanced.gcp_vpc_flow_logs_sampling,
            metadata="INCLUDE_ALL_METADATA"
        )

    pods_range_name = f"{name}-pods"
    services_range_name = f"{name}-services"
    subnetwork = gcp.compute.Subnetwork(
        f"{name}-subnetwork",
        name=name,
        project=project,
        region=cfg.region,
        network=network.id,
        ip_cidr_range=cfg.network.vpc_cidr_block,
        secondary_ip_ranges=[
            gcp.compute.SubnetworkSecondaryIpRangeArgs(
                range_name=pods_range_name,
                ip_cidr_range=cfg.gke.cluster_ipv4_cidr_block or DEFAULT_PODS_CIDR_BLOCK
            ),
            gcp.compute.SubnetworkSecondaryIpRangeArgs(
                range_name=services_range_name,
                ip_cidr_range=cfg.gke.services_ipv4_cidr_block or DEFAULT_SERVICES_CIDR_BLOCK
            ),
        ],
        private_ip_google_access=True,
        log_config=log_config
    )

    nat_address = None
    if is_private:
        router = gcp.compute.Router(
            f"{name}-router",
            name=name,
            project=project,
            region=cfg.region,
            network=network.id
        )
        address = gcp.compute.Address(
            f"{name}-nat-address",
            name=f"{name}-nat",
            project=project,
            region=cfg.region,
            labels=cfg.common_labels
        )
        gcp.compute.RouterNat(
            f"{name}-nat",
            name=name,
            project=project,
            region=cfg.region,
            router=router.name,
            nat_ip_allocate_option="MANUAL_ONLY",
            nat_ips=[address.self_link],
            source_subnetwork_ip_ranges_to_nat="ALL_SUBNETWORKS_ALL_IP_RANGES"
        )
        nat_address = address.address

    return {
        "network": network.id,
        "subnetwork": subnetwork.id,
        "network_project_id": project,
        "cluster_is_private": is_private,
        "pods_range_name": pods_range_name,
        "additional_pods_range_names": [],
        "services_range_name": services_range_name,
        "nat_address": nat_address,
        "_network": network,
        "_subnetwork": subnetwork
    }


def create_gke_cluster(cfg: ClusterConfig, network: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create the GKE Autopilot cluster

    Args:
        cfg: Cluster configuration
        network: Output of create_gke_network

    Returns:
        Dict with cluster resource, endpoint, CA certificate and kubeconfig
    """
    name = cfg.cluster_name

    additional_ranges = None
    if network["additional_pods_range_names"]:
        additional_ranges = gcp.container.ClusterIpAllocationPolicyAdditionalPodRangesConfigArgs(
            pod_range_names=network["additional_pods_range_names"]
        )

    allowed_cidrs, _ = helpers.public_access_cidrs(
        cfg.advanced.static_ip_mode,
        cfg.advanced.platform_allowed_cidrs,
        cfg.advanced.k8s_api_allowed_cidrs
    )
    authorized_networks = None
    if allowed_cidrs != [helpers.ANY_CIDR]:
        authorized_networks = gcp.container.ClusterMasterAuthorizedNetworksConfigArgs(
            cidr_blocks=[
                gcp.container.ClusterMasterAuthorizedNetworksConfigCidrBlockArgs(
                    cidr_block=cidr,
                    display_name=f"allowed-{i+1}"
                )
                for i, cidr in enumerate(allowed_cidrs)
            ]
        )

    pulumi.log.info(f"{name}: creating {'private' if network['cluster_is_private'] else 'public'} Autopilot cluster")

    cluster = gcp.container.Cluster(
        f"{name}-cluster",
        name=name,
        project=cfg.gke.project_id,
        location=cfg.region,
        enable_autopilot=True,
        min_master_version=cfg.kubernetes_version,
        network=network["network"],
        subnetwork=network["subnetwork"],
        ip_allocation_policy=gcp.container.ClusterIpAllocationPolicyArgs(
            cluster_secondary_range_name=network["pods_range_name"],
            services_secondary_range_name=network["services_range_name"],
            additional_pod_ranges_config=additional_ranges
        ),
        private_cluster_config=gcp.container.ClusterPrivateClusterConfigArgs(
            enable_private_nodes=network["cluster_is_private"],
            enable_private_endpoint=False
        ),
        master_authorized_networks_config=authorized_networks,
        maintenance_policy=maintenance_policy(cfg.gke.maintenance_start_time, cfg.gke.maintenance_end_time),
        release_channel=gcp.container.ClusterReleaseChannelArgs(channel=cfg.gke.release_channel),
        resource_labels=cfg.common_labels,
        deletion_protection=False
    )

    kubeconfig = pulumi.Output.all(
        cluster.name,
        cluster.endpoint,
        cluster.master_auth.cluster_ca_certificate
    ).apply(lambda args: helpers.gke_kubeconfig(args[0], args[1], args[2]))

    return {
        "cluster_name": cluster.name,
        "cluster_endpoint": cluster.endpoint,
        "cluster_certificate_authority_data": cluster.master_auth.cluster_ca_certificate,
        "kubeconfig": kubeconfig,
        "_cluster": cluster,
        "_compute": [cluster]
    }


def create_workload_identity(name: str, cfg: ClusterConfig, namespace: str, service_account: str,
                             roles: Iterable[str], bucket: Optional[pulumi.Input[str]] = None,
                             opts: Optional[pulumi.ResourceOptions] = None) -> Dict[str, Any]:
    """
    Bind a Kubernetes service account to a new Google service account

    Args:
        name: Resource name prefix, hashed into the Google account id
        cfg: Cluster configuration
        namespace: Kubernetes namespace
        service_account: Kubernetes service account name
        roles: Project roles granted to the Google account
        bucket: Grant roles/storage.objectAdmin on this bucket only
        opts: Resource options, typically depends_on the cluster

    Returns:
        Dict with the Google account and its email, to annotate the Kubernetes account with
    """
    project = cfg.gke.project_id

    account = gcp.serviceaccount.Account(
        f"{name}-gsa",
        account_id=helpers.gcp_service_account_id(name, service_account),
        project=project,
        display_name=f"{service_account} in {cfg.cluster_name}",
        opts=opts
    )

    gcp.serviceaccount.IAMMember(
        f"{name}-workload-identity",
        service_account_id=account.name,
        role="roles/iam.workloadIdentityUser",
        member=f"serviceAccount:{project}.svc.id.goog[{namespace}/{service_account}]"
    )

    for role in roles:
        gcp.projects.IAMMember(
            f"{name}-{role.split('/')[-1]}",
            project=project,
            role=role,
            member=account.email.apply(lambda email: f"serviceAccount:{email}")
        )

    if bucket is not None:
        gcp.storage.BucketIAMMember(
            f"{name}-bucket-access",
            bucket=bucket,
            role="roles/storage.objectAdmin",
            member=account.email.apply(lambda email: f"serviceAccount:{email}")
        )

    return {
        "account": account,
        "email": account.email
    }
