"""
Jinja2 rendering for Helm chart values and the k3s bootstrap script
"""

from typing import Any, Dict

import yaml
from jinja2 import Environment, PackageLoader, StrictUndefined

from clusterkit import helpers
from clusterkit.config import ClusterConfig
from clusterkit.versions import KubernetesVersion, ec2_kubernetes_port, is_old_k3s_version

_environment = None

EXTERNAL_DNS_PROVIDERS = {
    "route53": "aws",
    "cloud-dns": "google",
    "cloudflare": "cloudflare",
}


def template_environment() -> Environment:
    """Shared environment; undefined variables fail the render"""
    global _environment
    if _environment is None:
        _environment = Environment(
            loader=PackageLoader("clusterkit", "templates"),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
    return _environment


def build_context(cfg: ClusterConfig) -> Dict[str, Any]:
    """
    Build the render context shared by every template

    Args:
        cfg: Cluster configuration

    Returns:
        Dict of template variables
    """
    version = KubernetesVersion.parse(cfg.kubernetes_version)
    domain = cfg.dns.domain
    cluster_domain = f"{cfg.cluster_id}.{domain}" if domain else ""

    context = {
        "cloud_provider": "gcp" if cfg.kind == "gke" else "aws",
        "kind": cfg.kind,
        "kubernetes_cluster_id": cfg.cluster_id,
        "kubernetes_cluster_long_id": cfg.cluster_long_id,
        "kubernetes_cluster_name": cfg.cluster_name,
        "organization_id": cfg.organization_id,
        "region": cfg.region,
        "region_cluster_id": cfg.region_cluster_id,
        "kubernetes_version": str(version),
        "kubernetes_short_version": version.short,
        "test_cluster": cfg.test_cluster,
        "dns_provider": cfg.dns.provider,
        "external_dns_provider": EXTERNAL_DNS_PROVIDERS.get(cfg.dns.provider, cfg.dns.provider),
        "cloudflare_email": cfg.dns.cloudflare_email,
        "gcp_project": cfg.gke.project_id,
        "managed_dns_domain": domain,
        "managed_dns_domains": [domain] if domain else [],
        "cluster_domain": cluster_domain,
        "dns_email_report": cfg.dns.tls_email_report,
        "acme_server_url": helpers.acme_server_url(cfg.test_cluster),
        "enable_karpenter": cfg.enable_karpenter,
        "bootstrap_on_fargate": bool(cfg.karpenter and cfg.karpenter.bootstrap_on_fargate),
        "metrics_history_enabled": cfg.features.metrics_history_enabled,
        "log_history_enabled": cfg.features.log_history_enabled,
        "grafana_admin_user": cfg.features.grafana_admin_user,
        "datadog_site": cfg.features.datadog_site,
        "vpc_qovery_network_mode": cfg.network.network_mode,
        "user_provided_network": cfg.network.user_provided_network is not None,
        "vpc_cidr_block": cfg.network.vpc_cidr_block,
        "nginx_controller_log_format_upstream": cfg.advanced.nginx_log_format_upstream,
        "loki_retention_hours": cfg.advanced.loki_log_retention_in_week * 7 * 24,
        "resource_expiration_in_seconds": cfg.advanced.resource_expiration_in_seconds,
        "s3_kubeconfig_bucket": helpers.kubeconfig_bucket_name(cfg.cluster_id),
        "logs_bucket": helpers.logs_bucket_name(cfg.cluster_id),
        "is_old_k3s_version": False,
        "ec2_port": None,
    }

    if cfg.kind == "ec2":
        context["is_old_k3s_version"] = is_old_k3s_version(version)
        context["ec2_port"] = ec2_kubernetes_port(version, cfg.ec2.exposed_port)
        context["k3s_version"] = str(version)

    return context


def render_template(name: str, context: Dict[str, Any]) -> str:
    return template_environment().get_template(name).render(**context)


def render_values(chart: str, context: Dict[str, Any], **extra) -> Dict[str, Any]:
    """
    Render values/<chart>.j2.yaml and parse it into a values dict

    Args:
        chart: Chart name
        context: Render context from build_context
        extra: Chart specific variables, override context keys

    Returns:
        Values mapping, empty when the template renders nothing

    Raises:
        jinja2.UndefinedError: A variable used by the template is missing
        ValueError: The rendered document is not a mapping
    """
    rendered = render_template(f"values/{chart}.j2.yaml", {**context, **extra})
    values = yaml.safe_load(rendered)
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise ValueError(f"values for chart {chart} must be a mapping, got {type(values).__name__}")
    return values


def render_user_data(context: Dict[str, Any], **extra) -> str:
    return render_template("k3s_user_data.sh.j2", {**context, **extra})
