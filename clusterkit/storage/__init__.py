"""
Storage Module
Kubeconfig and logs buckets
"""

from .functions import create_aws_buckets, create_gcs_buckets

__all__ = ["create_aws_buckets", "create_gcs_buckets"]
