"""
State Storage Module Functions
Creates the S3 bucket, DynamoDB lock table and KMS key backing cluster stacks
"""

import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List

from clusterkit import helpers


def create_s3_bucket(name: str, bucket_name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create S3 bucket for Pulumi state storage

    Args:
        name: Resource name
        bucket_name: S3 bucket name
        tags: Additional tags

    Returns:
        Dict with bucket resource and outputs
    """
    tags = tags or {}

    bucket = aws.s3.Bucket(
        f"{name}-pulumi-state-bucket",
        bucket=bucket_name,
        tags={
            **tags,
            "Name": f"{name}-pulumi-state",
            "Purpose": "Pulumi state storage",
            "Module": "state-storage"
        },
        opts=pulumi.ResourceOptions(protect=True)
    )

    return {
        "bucket": bucket,
        "bucket_id": bucket.id,
        "bucket_name": bucket_name
    }


def configure_s3_bucket_settings(name: str, bucket_id: pulumi.Output[str], kms_key_arn=None) -> Dict[str, Any]:
    """
    Configure S3 bucket settings for state storage

    Args:
        name: Resource name prefix
        bucket_id: S3 bucket ID
        kms_key_arn: Encrypt objects with this KMS key instead of AES256

    Returns:
        Dict with bucket configuration resources
    """
    versioning = aws.s3.BucketVersioning(
        f"{name}-state-bucket-versioning",
        bucket=bucket_id,
        versioning_configuration=aws.s3.BucketVersioningVersioningConfigurationArgs(
            status="Enabled"
        )
    )

    if kms_key_arn is not None:
        default_encryption = aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
            sse_algorithm="aws:kms",
            kms_master_key_id=kms_key_arn
        )
    else:
        default_encryption = aws.s3.BucketServerSideEncryptionConfigurationRuleApplyServerSideEncryptionByDefaultArgs(
            sse_algorithm="AES256"
        )

    encryption = aws.s3.BucketServerSideEncryptionConfiguration(
        f"{name}-state-bucket-encryption",
        bucket=bucket_id,
        rules=[
            aws.s3.BucketServerSideEncryptionConfigurationRuleArgs(
                apply_server_side_encryption_by_default=default_encryption,
                bucket_key_enabled=True
            )
        ]
    )

    public_access_block = aws.s3.BucketPublicAccessBlock(
        f"{name}-state-bucket-pab",
        bucket=bucket_id,
        block_public_acls=True,
        block_public_policy=True,
        ignore_public_acls=True,
        restrict_public_buckets=True
    )

    lifecycle = aws.s3.BucketLifecycleConfiguration(
        f"{name}-state-bucket-lifecycle",
        bucket=bucket_id,
        rules=[
            aws.s3.BucketLifecycleConfigurationRuleArgs(
                id="state_lifecycle",
                status="Enabled",
                filter=aws.s3.BucketLifecycleConfigurationRuleFilterArgs(
                    prefix=""
                ),
                noncurrent_version_expiration=aws.s3.BucketLifecycleConfigurationRuleNoncurrentVersionExpirationArgs(
                    noncurrent_days=30
                ),
                abort_incomplete_multipart_upload=aws.s3.BucketLifecycleConfigurationRuleAbortIncompleteMultipartUploadArgs(
                    days_after_initiation=1
                )
            )
        ]
    )

    return {
        "versioning": versioning,
        "encryption": encryption,
        "public_access_block": public_access_block,
        "lifecycle": lifecycle
    }


def create_dynamodb_table(name: str, table_name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create DynamoDB table for state locking

    Args:
        name: Resource name prefix
        table_name: DynamoDB table name
        tags: Additional tags

    Returns:
        Dict with table resource and outputs
    """
    tags = tags or {}

    table = aws.dynamodb.Table(
        f"{name}-pulumi-state-lock-table",
        name=table_name,
        billing_mode="PAY_PER_REQUEST",
        hash_key="LockID",
        attributes=[
            aws.dynamodb.TableAttributeArgs(
                name="LockID",
                type="S"
            )
        ],
        server_side_encryption=aws.dynamodb.TableServerSideEncryptionArgs(
            enabled=True
        ),
        tags={
            **tags,
            "Name": f"{name}-pulumi-state-lock",
            "Purpose": "Pulumi state locking",
            "Module": "state-storage"
        }
    )

    return {
        "table": table,
        "table_name": table.name,
        "table_arn": table.arn
    }


def create_secrets_key(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """KMS key and alias used as the stack secrets provider"""
    tags = tags or {}

    kms_key = aws.kms.Key(
        f"{name}-pulumi-secrets-key",
        description=f"Pulumi secrets encryption key for {name}",
        key_usage="ENCRYPT_DECRYPT",
        enable_key_rotation=True,
        tags={
            **tags,
            "Name": f"{name}-pulumi-secrets",
            "Module": "state-storage"
        }
    )

    alias = aws.kms.Alias(
        f"{name}-pulumi-secrets-alias",
        name=f"alias/{name}-pulumi-secrets",
        target_key_id=kms_key.key_id
    )

    return {
        "key": kms_key,
        "alias": alias,
        "key_arn": kms_key.arn,
        "key_id": kms_key.key_id,
        "alias_name": f"alias/{name}-pulumi-secrets"
    }


def get_backend_configuration_commands(bucket_name: str, aws_region: str, kms_alias: str) -> List[str]:
    """
    Get commands to configure Pulumi backend

    Args:
        bucket_name: S3 bucket name
        aws_region: AWS region
        kms_alias: Alias of the secrets key

    Returns:
        List of configuration commands
    """
    return [
        f"export PULUMI_BACKEND_URL=s3://{bucket_name}",
        f"pulumi stack init <stack> --secrets-provider=awskms://{kms_alias}?region={aws_region}",
        f"pulumi config set aws:region {aws_region}",
        "pulumi up"
    ]


def create_state_storage_resources(cluster_name: str,
                                   aws_region: str,
                                   tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete state storage infrastructure

    Args:
        cluster_name: Cluster name for resource naming
        aws_region: AWS region
        tags: Additional tags for all resources

    Returns:
        Dict with all state storage resources and outputs
    """
    tags = tags or {}

    # Region in the name keeps the bucket globally unique
    bucket_name = helpers.sanitize_name(f"{cluster_name}-pulumi-state-{aws_region}")
    dynamodb_table_name = f"{cluster_name}-pulumi-state-lock"

    key_result = create_secrets_key(cluster_name, tags)
    bucket_result = create_s3_bucket(cluster_name, bucket_name, tags)
    bucket_config_result = configure_s3_bucket_settings(cluster_name, bucket_result["bucket_id"],
                                                        key_result["key_arn"])
    table_result = create_dynamodb_table(cluster_name, dynamodb_table_name, tags)

    backend_config = {
        "backend_type": "s3",
        "bucket": bucket_name,
        "region": aws_region,
        "dynamodb_table": dynamodb_table_name,
        "encrypt": "true"
    }

    return {
        "bucket_name_output": bucket_result["bucket_id"],
        "dynamodb_table_name_output": table_result["table_name"],
        "kms_key_arn": key_result["key_arn"],
        "kms_key_id": key_result["key_id"],
        "backend_config": backend_config,
        "configuration_commands": get_backend_configuration_commands(bucket_name, aws_region,
                                                                     key_result["alias_name"]),
        # Keep references to resources for dependencies
        "_bucket": bucket_result["bucket"],
        "_table": table_result["table"],
        "_key": key_result["key"],
        "_bucket_config": bucket_config_result
    }
