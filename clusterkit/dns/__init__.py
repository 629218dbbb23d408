"""
DNS Module
external-dns and cert-manager
"""

from .functions import (
    cluster_issuer_spec,
    setup_dns,
)

__all__ = [
    "cluster_issuer_spec",
    "setup_dns",
]
