"""
Kubernetes cluster stack
One stack per cluster; the `kind` setting picks EKS, k3s on EC2 or GKE Autopilot
"""
import pulumi
from clusterkit.config import get_config
from clusterkit.helpers import connection_details
from clusterkit.templating import build_context
from clusterkit.network import create_network
from clusterkit.iam import create_iam_resources
from clusterkit.eks import create_eks_resources
from clusterkit.ec2 import create_k3s_instance
from clusterkit.gke import create_gke_network, create_gke_cluster
from clusterkit.storage import create_aws_buckets, create_gcs_buckets
from clusterkit.databases import create_databases
from clusterkit.addons import create_kubernetes_provider, install_addons
from clusterkit.dns import setup_dns
from clusterkit.observability import setup_observability

# Configuration
config = pulumi.Config()
cfg = get_config()
tags = cfg.common_tags
context = build_context(cfg)

pulumi.log.info(f"{cfg.cluster_name}: {cfg.kind} cluster in {cfg.region}, network mode {cfg.network.network_mode}")


def deploy_eks():
    network = create_network(cfg, tags)
    iam = create_iam_resources(
        cfg.cluster_name,
        enable_karpenter=cfg.enable_karpenter,
        bootstrap_on_fargate=bool(cfg.karpenter and cfg.karpenter.bootstrap_on_fargate),
        tags=tags
    )
    cluster = create_eks_resources(cfg, iam, network, tags)
    storage = create_aws_buckets(cfg, tags)
    cluster_info = {
        **cluster,
        "vpc_id": network["vpc_id"],
        "node_role_name": iam["node_group_role_name"],
        "node_role_arn": iam["node_group_role_arn"],
        "logs_bucket_name": storage["logs_bucket_name"],
        "logs_bucket_arn": storage["logs_bucket_arn"],
    }
    return network, network["vpc_id"], cluster_info


def deploy_ec2():
    network = create_network(cfg, tags)
    storage = create_aws_buckets(cfg, tags)
    instance = create_k3s_instance(cfg, network, storage, context, tags)
    cluster_info = {
        **instance,
        "logs_bucket_name": storage["logs_bucket_name"],
        "logs_bucket_arn": storage["logs_bucket_arn"],
    }
    return network, network["vpc_id"], cluster_info


def deploy_gke():
    network = create_gke_network(cfg)
    cluster = create_gke_cluster(cfg, network)
    storage = create_gcs_buckets(cfg)
    cluster_info = {
        **cluster,
        "logs_bucket_name": storage["logs_bucket_name"],
    }
    return network, network["network"], cluster_info


deployers = {"eks": deploy_eks, "ec2": deploy_ec2, "gke": deploy_gke}

# 1. Network, cluster and buckets
network, vpc_id, cluster_info = deployers[cfg.kind]()

# 2. Databases
passwords = {spec.name: config.require_secret(spec.password_key) for spec in cfg.databases}
databases = create_databases(cfg, network, passwords, tags)

# 3. Charts, once the API is reachable
if cluster_info["kubeconfig"] is not None:
    provider = create_kubernetes_provider(cfg.cluster_name, cluster_info["kubeconfig"], cluster_info["_compute"])
    addons = install_addons(cfg, provider, context, cluster_info, tags)
    cluster_info["_ready"] = addons["_ready"] + [addons["releases"]["ingress-nginx"]]
    dns = setup_dns(cfg, provider, context, cluster_info, tags)
    observability = setup_observability(cfg, provider, context, cluster_info, tags)
    pulumi.export("charts_installed", sorted(
        list(addons["releases"]) + list(dns["releases"]) + list(observability["releases"])
    ))
else:
    pulumi.log.warn(f"{cfg.cluster_name}: kubeconfig unavailable, charts will be installed on the next update")

# Exports
pulumi.export("cluster_name", cluster_info["cluster_name"])
pulumi.export("cluster_endpoint", cluster_info["cluster_endpoint"])
if cluster_info["kubeconfig"] is not None:
    pulumi.export("kubeconfig", pulumi.Output.secret(cluster_info["kubeconfig"]))
pulumi.export("region", cfg.region)
pulumi.export("vpc_id", vpc_id)
pulumi.export("databases", databases)
if cfg.kind == "ec2":
    pulumi.export("public_ip", cluster_info["public_ip"])
pulumi.export("connection_details", pulumi.Output.all(
    cluster_name=cluster_info["cluster_name"],
    cluster_endpoint=cluster_info["cluster_endpoint"],
    region=cfg.region,
    databases=databases
).apply(lambda outputs: "\n".join(connection_details(outputs))))
