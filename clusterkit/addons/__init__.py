"""
Addons Module
Helm chart catalogue and the controllers installed in every cluster
"""

from .functions import (
    CHARTS,
    create_kubernetes_provider,
    deploy_chart,
    karpenter_node_pools,
    install_addons,
)

__all__ = [
    "CHARTS",
    "create_kubernetes_provider",
    "deploy_chart",
    "karpenter_node_pools",
    "install_addons",
]
