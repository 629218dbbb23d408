"""
DNS Module Functions
external-dns for the cluster domain and cert-manager with a Let's Encrypt issuer
"""

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as k8s
from typing import Any, Dict, List

from clusterkit.addons import deploy_chart
from clusterkit.addons.policies import ROUTE53_POLICY
from clusterkit.config import ClusterConfig
from clusterkit.gke import create_workload_identity
from clusterkit.iam import create_pod_identity_role

CLUSTER_ISSUER_NAME = "letsencrypt-clusterkit"
INGRESS_CLASS = "nginx-clusterkit"


def external_dns_credentials(cfg: ClusterConfig, cluster_info: Dict[str, Any],
                             tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Grant external-dns access to the DNS provider

    Route53 goes through Pod Identity on EKS and through the node role on EC2,
    Cloud DNS through Workload Identity. Cloudflare takes an API token from the
    stack secrets.

    Returns:
        Dict with chart value overrides and the resources the release waits for
    """
    name = cfg.cluster_name
    provider = cfg.dns.provider

    if provider == "route53" and cfg.kind == "eks":
        identity = create_pod_identity_role(
            f"{name}-external-dns",
            cluster_name=cluster_info["cluster_name"],
            namespace="kube-system",
            service_account="external-dns",
            policy_document=ROUTE53_POLICY,
            tags=tags
        )
        return {"values": {}, "depends_on": [identity["association"]]}

    if provider == "route53" and cfg.kind == "ec2":
        policy = aws.iam.RolePolicy(
            f"{name}-k3s-route53-policy",
            role=cluster_info["node_role_name"],
            policy=ROUTE53_POLICY
        )
        return {"values": {}, "depends_on": [policy]}

    if provider == "cloud-dns":
        identity = create_workload_identity(
            f"{name}-external-dns",
            cfg,
            namespace="kube-system",
            service_account="external-dns",
            roles=["roles/dns.admin"],
            opts=pulumi.ResourceOptions(depends_on=cluster_info["_compute"])
        )
        return {
            "values": {"serviceAccount": {"annotations": {"iam.gke.io/gcp-service-account": identity["email"]}}},
            "depends_on": [identity["account"]]
        }

    if provider == "cloudflare":
        token = pulumi.Config().require_secret("cloudflare_api_token")
        return {"values": {"cloudflare": {"apiToken": token}}, "depends_on": []}

    raise ValueError(f"unsupported DNS provider {provider!r}")


def cluster_issuer_spec(acme_server_url: str, email: str) -> Dict[str, Any]:
    """ACME issuer solving HTTP-01 challenges through the cluster ingress controller"""
    acme = {
        "server": acme_server_url,
        "privateKeySecretRef": {"name": f"{CLUSTER_ISSUER_NAME}-account-key"},
        "solvers": [{"http01": {"ingress": {"ingressClassName": INGRESS_CLASS}}}],
    }
    if email:
        acme["email"] = email
    return {"acme": acme}


def setup_dns(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
              cluster_info: Dict[str, Any], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Install external-dns and cert-manager

    external-dns is only installed when a DNS domain is configured. The
    ClusterIssuer is created once cert-manager is up.

    Args:
        cfg: Cluster configuration
        provider: Kubernetes provider
        context: Render context from templating.build_context
        cluster_info: Cluster outputs, with _ready listing what charts wait for
        tags: Additional AWS tags

    Returns:
        Dict with Helm releases and the cluster issuer
    """
    tags = tags or {}
    name = cfg.cluster_name
    ready: List[pulumi.Resource] = list(cluster_info.get("_ready", cluster_info["_compute"]))
    releases = {}

    if cfg.dns.domain:
        credentials = external_dns_credentials(cfg, cluster_info, tags)
        releases["external-dns"] = deploy_chart(
            "external-dns", provider, context, "kube-system",
            values=credentials["values"],
            depends_on=ready + credentials["depends_on"]
        )
    else:
        pulumi.log.info(f"{name}: no DNS domain configured, external-dns is not installed")

    if not cfg.dns.tls_email_report:
        pulumi.log.warn(f"{name}: tls_email_report is empty, Let's Encrypt expiry notices will not be sent")

    releases["cert-manager"] = deploy_chart("cert-manager", provider, context, "cert-manager",
                                            depends_on=ready)

    issuer = k8s.apiextensions.CustomResource(
        f"{name}-cluster-issuer",
        api_version="cert-manager.io/v1",
        kind="ClusterIssuer",
        metadata=k8s.meta.v1.ObjectMetaArgs(name=CLUSTER_ISSUER_NAME),
        spec=cluster_issuer_spec(context["acme_server_url"], cfg.dns.tls_email_report),
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[releases["cert-manager"]])
    )

    return {
        "releases": releases,
        "cluster_issuer": CLUSTER_ISSUER_NAME,
        "_cluster_issuer": issuer
    }
