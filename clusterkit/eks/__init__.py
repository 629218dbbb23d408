"""
EKS Module
Creates the EKS cluster, node groups, Fargate profile and managed add-ons
"""

from .functions import create_eks_resources

__all__ = ["create_eks_resources"]
