"""
IAM Module
Roles for the EKS control plane, nodes, Fargate and Pod Identity
"""

from .functions import (
    assume_role_policy,
    create_iam_resources,
    create_pod_identity_role,
)

__all__ = [
    "assume_role_policy",
    "create_iam_resources",
    "create_pod_identity_role",
]
