"""
Databases Module Functions
Creates managed databases: RDS, ElastiCache and DocumentDB on AWS, Cloud SQL on GCP
"""

import pulumi
import pulumi_aws as aws
import pulumi_gcp as gcp
from typing import Any, Dict, List

from clusterkit import helpers
from clusterkit.config import ClusterConfig, DatabaseSpec

ENGINE_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
    "redis": 6379,
    "mongodb": 27017,
}

RDS_ENGINES = {
    "postgresql": "postgres",
    "mysql": "mysql",
}

CLOUD_SQL_PREFIXES = {
    "postgresql": "POSTGRES",
    "mysql": "MYSQL",
}


def engine_port(engine: str) -> int:
    """
    Raises:
        ValueError: Unknown engine
    """
    try:
        return ENGINE_PORTS[engine]
    except KeyError:
        raise ValueError(f"unknown database engine {engine!r}") from None


def cloud_sql_version(engine: str, version: str) -> str:
    """
    Map an engine and version to a Cloud SQL database version (POSTGRES_15, MYSQL_8_0)

    Raises:
        ValueError: Engine not offered by Cloud SQL
    """
    if engine not in CLOUD_SQL_PREFIXES:
        raise ValueError(f"engine {engine!r} is not available on Cloud SQL, expected postgresql or mysql")
    return f"{CLOUD_SQL_PREFIXES[engine]}_{version.replace('.', '_')}"


def database_identifier(cluster_id: str, name: str, max_len: int = 63) -> str:
    return helpers.sanitize_name(f"{cluster_id}-{name}", max_len=max_len)


def create_database_security_group(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                                   tags: Dict[str, str] = None) -> aws.ec2.SecurityGroup:
    """
    Security group opening the engine port to the VPC and to the allowed
    CIDRs of the engine, unless access is denied for that engine
    """
    tags = tags or {}
    name = f"{cfg.cluster_name}-{spec.name}"
    port = engine_port(spec.engine)

    ingress = [aws.ec2.SecurityGroupIngressArgs(
        description="cluster VPC",
        protocol="tcp",
        from_port=port,
        to_port=port,
        cidr_blocks=[network["vpc_cidr_block"]]
    )]

    allowed = cfg.advanced.allowed_cidrs_for(spec.engine)
    if allowed:
        ingress.append(aws.ec2.SecurityGroupIngressArgs(
            description="allowed CIDRs",
            protocol="tcp",
            from_port=port,
            to_port=port,
            cidr_blocks=allowed
        ))

    return aws.ec2.SecurityGroup(
        f"{name}-db-sg",
        name_prefix=f"{name}-db-",
        description=f"{spec.engine} database {spec.name}",
        vpc_id=network["vpc_id"],
        ingress=ingress,
        egress=[aws.ec2.SecurityGroupEgressArgs(
            protocol="-1",
            from_port=0,
            to_port=0,
            cidr_blocks=[helpers.ANY_CIDR]
        )],
        tags={
            **tags,
            "Name": f"{name}-db-sg",
            "Module": "databases"
        }
    )


def create_rds_instance(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                        security_group: aws.ec2.SecurityGroup, password: pulumi.Input[str],
                        tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}
    identifier = database_identifier(cfg.cluster_id, spec.name)

    instance = aws.rds.Instance(
        f"{cfg.cluster_name}-{spec.name}-rds",
        identifier=identifier,
        engine=RDS_ENGINES[spec.engine],
        engine_version=spec.version,
        instance_class=spec.instance_class,
        allocated_storage=spec.disk_size_in_gib,
        storage_type="gp3",
        storage_encrypted=True,
        username=spec.username,
        password=password,
        port=engine_port(spec.engine),
        db_subnet_group_name=network["rds_subnet_group_name"],
        vpc_security_group_ids=[security_group.id],
        publicly_accessible=spec.publicly_accessible,
        backup_retention_period=7,
        skip_final_snapshot=cfg.test_cluster,
        final_snapshot_identifier=None if cfg.test_cluster else f"{identifier}-final",
        apply_immediately=True,
        tags={
            **tags,
            "Name": identifier,
            "DatabaseName": spec.name,
            "Module": "databases"
        }
    )

    return {
        "resource": instance,
        "host": instance.address,
        "port": instance.port
    }


def create_elasticache_cluster(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                               security_group: aws.ec2.SecurityGroup, tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}
    identifier = database_identifier(cfg.cluster_id, spec.name, max_len=40)

    if spec.publicly_accessible:
        pulumi.log.warn(f"{spec.name}: ElastiCache clusters are only reachable from inside the VPC")

    cluster = aws.elasticache.Cluster(
        f"{cfg.cluster_name}-{spec.name}-elasticache",
        cluster_id=identifier,
        engine="redis",
        engine_version=spec.version,
        node_type=spec.instance_class,
        num_cache_nodes=1,
        port=engine_port(spec.engine),
        subnet_group_name=network["elasticache_subnet_group_name"],
        security_group_ids=[security_group.id],
        apply_immediately=True,
        tags={
            **tags,
            "Name": identifier,
            "DatabaseName": spec.name,
            "Module": "databases"
        }
    )

    return {
        "resource": cluster,
        "host": cluster.cache_nodes.apply(lambda nodes: nodes[0].address if nodes else ""),
        "port": pulumi.Output.from_input(engine_port(spec.engine))
    }


def create_documentdb_cluster(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                              security_group: aws.ec2.SecurityGroup, password: pulumi.Input[str],
                              tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}
    identifier = database_identifier(cfg.cluster_id, spec.name)

    cluster = aws.docdb.Cluster(
        f"{cfg.cluster_name}-{spec.name}-documentdb",
        cluster_identifier=identifier,
        engine="docdb",
        engine_version=spec.version,
        master_username=spec.username,
        master_password=password,
        port=engine_port(spec.engine),
        db_subnet_group_name=network["documentdb_subnet_group_name"],
        vpc_security_group_ids=[security_group.id],
        storage_encrypted=True,
        backup_retention_period=7,
        skip_final_snapshot=cfg.test_cluster,
        final_snapshot_identifier=None if cfg.test_cluster else f"{identifier}-final",
        apply_immediately=True,
        tags={
            **tags,
            "Name": identifier,
            "DatabaseName": spec.name,
            "Module": "databases"
        }
    )

    aws.docdb.ClusterInstance(
        f"{cfg.cluster_name}-{spec.name}-documentdb-instance",
        identifier=f"{identifier}-1",
        cluster_identifier=cluster.id,
        instance_class=spec.instance_class,
        apply_immediately=True,
        tags={
            **tags,
            "Name": f"{identifier}-1",
            "Module": "databases"
        }
    )

    return {
        "resource": cluster,
        "host": cluster.endpoint,
        "port": cluster.port
    }


def create_aws_database(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                        password: pulumi.Input[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one managed database on AWS

    Args:
        spec: Database settings
        network: Output of create_network, provides the VPC and subnet groups
        cfg: Cluster configuration
        password: Master password, ignored by Redis
        tags: Additional tags

    Returns:
        Dict with the database resource, host and port
    """
    security_group = create_database_security_group(spec, network, cfg, tags)

    if spec.engine in RDS_ENGINES:
        return create_rds_instance(spec, network, cfg, security_group, password, tags)
    if spec.engine == "redis":
        return create_elasticache_cluster(spec, network, cfg, security_group, tags)
    if spec.engine == "mongodb":
        return create_documentdb_cluster(spec, network, cfg, security_group, password, tags)
    raise ValueError(f"unknown database engine {spec.engine!r}")


def create_private_service_access(cfg: ClusterConfig, network: Dict[str, Any]) -> gcp.servicenetworking.Connection:
    """Peer the cluster network with Google services so Cloud SQL gets private IPs"""
    name = cfg.cluster_name

    address = gcp.compute.GlobalAddress(
        f"{name}-private-services",
        name=f"{name}-private-services",
        project=cfg.gke.project_id,
        purpose="VPC_PEERING",
        address_type="INTERNAL",
        prefix_length=16,
        network=network["network"]
    )

    return gcp.servicenetworking.Connection(
        f"{name}-private-services-connection",
        network=network["network"],
        service="servicenetworking.googleapis.com",
        reserved_peering_ranges=[address.name]
    )


def create_gcp_database(spec: DatabaseSpec, network: Dict[str, Any], cfg: ClusterConfig,
                        password: pulumi.Input[str], connection=None) -> Dict[str, Any]:
    """
    Create a Cloud SQL instance with its database and user

    Args:
        spec: Database settings
        network: Output of create_gke_network
        cfg: Cluster configuration
        password: User password
        connection: Private service access connection the instance waits for

    Returns:
        Dict with the instance, host and port

    Raises:
        ValueError: Engine not offered by Cloud SQL
    """
    identifier = database_identifier(cfg.cluster_id, spec.name)
    version = cloud_sql_version(spec.engine, spec.version)

    authorized_networks: List[gcp.sql.DatabaseInstanceSettingsIpConfigurationAuthorizedNetworkArgs] = []
    if spec.publicly_accessible:
        authorized_networks = [
            gcp.sql.DatabaseInstanceSettingsIpConfigurationAuthorizedNetworkArgs(
                name=f"allowed-{i+1}",
                value=cidr
            )
            for i, cidr in enumerate(cfg.advanced.allowed_cidrs_for(spec.engine))
        ]

    instance = gcp.sql.DatabaseInstance(
        f"{cfg.cluster_name}-{spec.name}-cloudsql",
        name=identifier,
        project=cfg.gke.project_id,
        region=cfg.region,
        database_version=version,
        deletion_protection=not cfg.test_cluster,
        settings=gcp.sql.DatabaseInstanceSettingsArgs(
            tier=spec.instance_class,
            disk_size=spec.disk_size_in_gib,
            disk_autoresize=True,
            user_labels={**cfg.common_labels, "database": helpers.sanitize_name(spec.name)},
            backup_configuration=gcp.sql.DatabaseInstanceSettingsBackupConfigurationArgs(enabled=True),
            ip_configuration=gcp.sql.DatabaseInstanceSettingsIpConfigurationArgs(
                ipv4_enabled=spec.publicly_accessible,
                private_network=network["network"],
                authorized_networks=authorized_networks
            )
        ),
        opts=pulumi.ResourceOptions(depends_on=[connection] if connection is not None else [])
    )

    gcp.sql.Database(
        f"{cfg.cluster_name}-{spec.name}-database",
        name=spec.name,
        project=cfg.gke.project_id,
        instance=instance.name
    )

    gcp.sql.User(
        f"{cfg.cluster_name}-{spec.name}-user",
        name=spec.username,
        project=cfg.gke.project_id,
        instance=instance.name,
        password=password
    )

    host = instance.public_ip_address if spec.publicly_accessible else instance.private_ip_address
    return {
        "resource": instance,
        "host": host,
        "port": pulumi.Output.from_input(engine_port(spec.engine))
    }


def create_databases(cfg: ClusterConfig, network: Dict[str, Any], passwords: Dict[str, pulumi.Input[str]],
                     tags: Dict[str, str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Create every configured database

    Args:
        cfg: Cluster configuration
        network: Output of the AWS or GCP network module
        passwords: Passwords keyed by database name
        tags: Additional tags, AWS only

    Returns:
        Dict of {name: {host, port}} ready to export
    """
    results = {}
    connection = None
    for spec in cfg.databases:
        if cfg.kind == "gke":
            if connection is None and network["_network"] is not None:
                connection = create_private_service_access(cfg, network)
            result = create_gcp_database(spec, network, cfg, passwords.get(spec.name), connection)
        else:
            result = create_aws_database(spec, network, cfg, passwords.get(spec.name), tags)
        results[spec.name] = {"host": result["host"], "port": result["port"]}
    return results
