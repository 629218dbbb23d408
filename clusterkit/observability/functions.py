"""
Observability Module Functions
Prometheus metrics history, Loki log history and the Datadog agent
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Any, Dict

from clusterkit.addons import deploy_chart
from clusterkit.addons.policies import bucket_access_policy
from clusterkit.config import ClusterConfig
from clusterkit.gke import create_workload_identity
from clusterkit.iam import create_pod_identity_role

PROMETHEUS_NAMESPACE = "prometheus"
LOGGING_NAMESPACE = "logging"
DATADOG_NAMESPACE = "datadog"


def prometheus_storage(test_cluster: bool) -> Dict[str, str]:
    if test_cluster:
        return {"prometheus_retention": "1d", "prometheus_storage_size": "10Gi"}
    return {"prometheus_retention": "15d", "prometheus_storage_size": "50Gi"}


def setup_metrics(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
                  ready: list) -> Dict[str, Any]:
    # Grafana generates its own admin password when none is configured
    grafana_password = pulumi.Config().get_secret("grafana_admin_password")
    stack_values = {"grafana": {"adminPassword": grafana_password}} if grafana_password is not None else None

    crds = deploy_chart("prometheus-operator-crds", provider, context, PROMETHEUS_NAMESPACE,
                        depends_on=ready)
    stack = deploy_chart("kube-prometheus-stack", provider, context, PROMETHEUS_NAMESPACE,
                         values=stack_values, depends_on=ready + [crds], **prometheus_storage(cfg.test_cluster))
    adapter = deploy_chart("prometheus-adapter", provider, context, PROMETHEUS_NAMESPACE,
                           depends_on=[stack])
    return {
        "prometheus-operator-crds": crds,
        "kube-prometheus-stack": stack,
        "prometheus-adapter": adapter
    }


def loki_credentials(cfg: ClusterConfig, cluster_info: Dict[str, Any],
                     tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Grant Loki access to the logs bucket

    EKS binds the loki service account through Pod Identity and GKE through
    Workload Identity. On EC2 the instance role already holds the grant.

    Returns:
        Dict with chart value overrides and the resources the release waits for
    """
    name = cfg.cluster_name

    if cfg.kind == "eks":
        identity = create_pod_identity_role(
            f"{name}-loki",
            cluster_name=cluster_info["cluster_name"],
            namespace=LOGGING_NAMESPACE,
            service_account="loki",
            policy_document=bucket_access_policy(cluster_info["logs_bucket_arn"]),
            tags=tags
        )
        return {"values": {}, "depends_on": [identity["association"]]}

    if cfg.kind == "gke":
        identity = create_workload_identity(
            f"{name}-loki",
            cfg,
            namespace=LOGGING_NAMESPACE,
            service_account="loki",
            roles=[],
            bucket=cluster_info["logs_bucket_name"],
            opts=pulumi.ResourceOptions(depends_on=cluster_info["_compute"])
        )
        return {
            "values": {"serviceAccount": {"annotations": {"iam.gke.io/gcp-service-account": identity["email"]}}},
            "depends_on": [identity["account"]]
        }

    return {"values": {}, "depends_on": []}


def setup_logs(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
               cluster_info: Dict[str, Any], ready: list, tags: Dict[str, str] = None) -> Dict[str, Any]:
    if cluster_info.get("logs_bucket_name") is None:
        raise ValueError(f"{cfg.cluster_name}: log history is enabled but no logs bucket was created")

    credentials = loki_credentials(cfg, cluster_info, tags)
    loki = deploy_chart("loki", provider, context, LOGGING_NAMESPACE,
                        values=credentials["values"],
                        depends_on=ready + credentials["depends_on"])
    promtail = deploy_chart("promtail", provider, context, LOGGING_NAMESPACE, depends_on=[loki])
    return {"loki": loki, "promtail": promtail}


def setup_observability(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
                        cluster_info: Dict[str, Any], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Install the observability charts enabled by the feature flags

    Args:
        cfg: Cluster configuration
        provider: Kubernetes provider
        context: Render context from templating.build_context
        cluster_info: Cluster outputs, with the logs bucket and _ready
        tags: Additional AWS tags

    Returns:
        Dict with Helm releases keyed by chart name
    """
    tags = tags or {}
    name = cfg.cluster_name
    ready = list(cluster_info.get("_ready", cluster_info["_compute"]))
    releases = {}

    if cfg.features.metrics_history_enabled:
        releases.update(setup_metrics(cfg, provider, context, ready))
        # Loki and Promtail ship ServiceMonitors
        ready.append(releases["prometheus-operator-crds"])
    else:
        pulumi.log.info(f"{name}: metrics history disabled")

    if cfg.features.log_history_enabled:
        releases.update(setup_logs(cfg, provider, context, cluster_info, ready, tags))
    else:
        pulumi.log.info(f"{name}: log history disabled")

    if cfg.features.datadog_enabled:
        api_key = pulumi.Config().require_secret("datadog_api_key")
        releases["datadog"] = deploy_chart(
            "datadog", provider, context, DATADOG_NAMESPACE,
            values={"datadog": {"apiKey": api_key}},
            depends_on=ready
        )

    return {"releases": releases}
