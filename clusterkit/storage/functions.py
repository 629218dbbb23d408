"""
Storage Module Functions
Creates the kubeconfig and logs buckets on S3 or GCS
"""

import pulumi
import pulumi_aws as aws
import pulumi_gcp as gcp
from typing import Any, Dict, Optional

from clusterkit import helpers
from clusterkit.config import ClusterConfig


def create_s3_bucket(name: str, bucket_name: str, purpose: str, expiration_days: Optional[int] = None,
                     versioned: bool = False, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create a private, encrypted S3 bucket

    Args:
        name: Resource name prefix
        bucket_name: S3 bucket name
        purpose: Short purpose tag (kubeconfig, logs)
        expiration_days: Expire objects after this many days
        versioned: Enable versioning
        tags: Additional tags

    Returns:
        Dict with bucket resources and outputs
    """
    tags = tags or {}

    bucket = aws.s3.Bucket(
        f"{name}-{purpose}-bucket",
        bucket=bucket_name,
        force_destroy=True,
        tags={
            **tags,
            "Name": bucket_name,
            "Purpose": purpose,
            "Module": "storage"
        }
    )

    if versioned:
        aws.s3.BucketVersioning(
            f"{name}-{purpose}-bucket-versioning",
            bucket=bucket.id,
            versioning_configuration=aws.s3.BucketVersioningVersioningConfigurationArgs(
                status="Enabled"
            )
        )

    aws.s3.BucketServerSideEncryptionConfiguration(
        f"{name}-{purpose}-bucket-encryption",
        bucket=bucket.id,
        rules=[
            aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
                apply_server_side_encryption_by_default=aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
                    sse_algorithm="AES256"
                ),
                bucket_key_enabled=True
            )
        ]
    )

    aws.s3.BucketPublicAccessBlock(
        f"{name}-{purpose}-bucket-pab",
        bucket=bucket.id,
        block_public_acls=True,
        block_public_policy=True,
        ignore_public_acls=True,
        restrict_public_buckets=True
    )

    if expiration_days:
        aws.s3.BucketLifecycleConfiguration(
            f"{name}-{purpose}-bucket-lifecycle",
            bucket=bucket.id,
            rules=[
                aws.s3.BucketLifecycleConfigurationRuleArgs(
                    id=f"{purpose}_retention",
                    status="Enabled",
                    filter=aws.s3.BucketLifecycleConfigurationRuleFilterArgs(prefix=""),
                    expiration=aws.s3.BucketLifecycleConfigurationRuleExpirationArgs(days=expiration_days)
                )
            ]
        )

    return {
        "bucket": bucket,
        "bucket_name": bucket.id,
        "bucket_arn": bucket.arn
    }


def create_aws_buckets(cfg: ClusterConfig, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the kubeconfig bucket, and the Loki logs bucket when log history is enabled

    Args:
        cfg: Cluster configuration
        tags: Additional tags

    Returns:
        Dict with bucket names and ARNs, logs entries are None when disabled
    """
    tags = tags or {}
    name = cfg.cluster_name

    kubeconfig = create_s3_bucket(name, helpers.kubeconfig_bucket_name(cfg.cluster_id), "kubeconfig",
                                  versioned=True, tags=tags)

    logs = None
    if cfg.features.log_history_enabled:
        logs = create_s3_bucket(name, helpers.logs_bucket_name(cfg.cluster_id), "logs",
                                expiration_days=cfg.advanced.loki_log_retention_in_week * 7, tags=tags)

    return {
        "kubeconfig_bucket_name": kubeconfig["bucket_name"],
        "kubeconfig_bucket_arn": kubeconfig["bucket_arn"],
        "logs_bucket_name": logs["bucket_name"] if logs else None,
        "logs_bucket_arn": logs["bucket_arn"] if logs else None,
        "_kubeconfig_bucket": kubeconfig["bucket"],
        "_logs_bucket": logs["bucket"] if logs else None
    }


def create_gcs_bucket(name: str, bucket_name: str, purpose: str, cfg: ClusterConfig,
                      expiration_days: Optional[int] = None) -> gcp.storage.Bucket:
    lifecycle_rules = []
    if expiration_days:
        lifecycle_rules.append(gcp.storage.BucketLifecycleRuleArgs(
            action=gcp.storage.BucketLifecycleRuleActionArgs(type="Delete"),
            condition=gcp.storage.BucketLifecycleRuleConditionArgs(age=expiration_days)
        ))

    return gcp.storage.Bucket(
        f"{name}-{purpose}-bucket",
        name=bucket_name,
        project=cfg.gke.project_id,
        location=cfg.region.upper(),
        force_destroy=True,
        uniform_bucket_level_access=True,
        public_access_prevention="enforced",
        lifecycle_rules=lifecycle_rules,
        labels={**cfg.common_labels, "purpose": purpose}
    )


def create_gcs_buckets(cfg: ClusterConfig) -> Dict[str, Any]:
    """
    Create the kubeconfig and logs buckets on GCS

    Args:
        cfg: Cluster configuration

    Returns:
        Dict with bucket names, the logs entry is None when log history is disabled
    """
    name = cfg.cluster_name

    kubeconfig = create_gcs_bucket(name, helpers.kubeconfig_bucket_name(cfg.cluster_id), "kubeconfig", cfg)

    logs = None
    if cfg.features.log_history_enabled:
        logs = create_gcs_bucket(name, helpers.logs_bucket_name(cfg.cluster_id), "logs", cfg,
                                 expiration_days=cfg.advanced.loki_log_retention_in_week * 7)

    return {
        "kubeconfig_bucket_name": kubeconfig.name,
        "logs_bucket_name": logs.name if logs else None,
        "_kubeconfig_bucket": kubeconfig,
        "_logs_bucket": logs
    }
