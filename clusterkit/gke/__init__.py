"""
GKE Module
VPC network, Cloud NAT, Autopilot cluster and Workload Identity bindings
"""

from .functions import (
    create_gke_network,
    create_gke_cluster,
    create_workload_identity,
    maintenance_policy,
)

__all__ = [
    "create_gke_network",
    "create_gke_cluster",
    "create_workload_identity",
    "maintenance_policy",
]
