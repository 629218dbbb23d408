"""
State Storage Bootstrap
Creates the S3 bucket, DynamoDB lock table and KMS key used as backend by cluster stacks
"""

import pulumi

from clusterkit.state_storage import create_state_storage_resources

config = pulumi.Config()
cluster_name = config.get("cluster_name") or "clusterkit"
aws_region = config.get("region") or pulumi.Config("aws").require("region")

tags = {
    "ManagedBy": "pulumi",
    "Purpose": "state-storage-bootstrap",
    **(config.get_object("tags") or {})
}

state = create_state_storage_resources(cluster_name, aws_region, tags)

pulumi.export("bucket_name", state["bucket_name_output"])
pulumi.export("dynamodb_table_name", state["dynamodb_table_name_output"])
pulumi.export("kms_key_arn", state["kms_key_arn"])
pulumi.export("kms_key_id", state["kms_key_id"])
pulumi.export("backend_config", state["backend_config"])
pulumi.export("backend_configuration_commands", state["configuration_commands"])
