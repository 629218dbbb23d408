"""
Databases Module
RDS, ElastiCache, DocumentDB and Cloud SQL
"""

from .functions import (
    create_aws_database,
    create_gcp_database,
    create_databases,
    engine_port,
    cloud_sql_version,
)

__all__ = [
    "create_aws_database",
    "create_gcp_database",
    "create_databases",
    "engine_port",
    "cloud_sql_version",
]
