"""
State Storage Module
S3 bucket, DynamoDB lock table and KMS key for the Pulumi backend
"""

from .functions import create_state_storage_resources

__all__ = ["create_state_storage_resources"]
