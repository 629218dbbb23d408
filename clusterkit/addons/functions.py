"""
Addons Module Functions
Helm chart catalogue and the cluster add-ons: metrics, autoscaling, load balancing, ingress
"""

import pulumi
import pulumi_kubernetes as k8s
from typing import Any, Dict, List, Optional

from clusterkit import helpers, templating
from clusterkit.addons import policies
from clusterkit.config import ClusterConfig, KarpenterSettings
from clusterkit.iam import create_pod_identity_role

CHARTS = {
    "cert-manager": {"repo": "https://charts.jetstack.io", "version": "v1.15.3"},
    "external-dns": {"repo": "https://charts.bitnami.com/bitnami", "version": "8.3.8"},
    "ingress-nginx": {"repo": "https://kubernetes.github.io/ingress-nginx", "version": "4.11.5"},
    "kube-prometheus-stack": {"repo": "https://prometheus-community.github.io/helm-charts", "version": "67.3.1"},
    "prometheus-operator-crds": {"repo": "https://prometheus-community.github.io/helm-charts", "version": "17.0.2"},
    "prometheus-adapter": {"repo": "https://prometheus-community.github.io/helm-charts", "version": "4.11.0"},
    "aws-node-termination-handler": {"repo": "https://aws.github.io/eks-charts", "version": "0.21.0"},
    "aws-load-balancer-controller": {"repo": "https://aws.github.io/eks-charts", "version": "1.8.3"},
    "cluster-autoscaler": {"repo": "https://kubernetes.github.io/autoscaler", "version": "9.39.0"},
    "metrics-server": {"repo": "https://kubernetes-sigs.github.io/metrics-server/", "version": "3.12.1"},
    "loki": {"repo": "https://grafana.github.io/helm-charts", "version": "5.41.4"},
    "promtail": {"repo": "https://grafana.github.io/helm-charts", "version": "6.17.0"},
    "datadog": {"repo": "https://helm.datadoghq.com", "version": "2.22.17"},
    "vpa": {"repo": "https://charts.fairwinds.com/stable", "version": "4.7.1"},
    "karpenter": {"repo": "oci://public.ecr.aws/karpenter", "version": "1.5.1"},
    "karpenter-crd": {"repo": "oci://public.ecr.aws/karpenter", "version": "1.5.1"},
}


def create_kubernetes_provider(name: str, kubeconfig: pulumi.Input[str],
                               depends_on: Optional[List[pulumi.Resource]] = None) -> k8s.Provider:
    """
    Create Kubernetes provider for the cluster

    Args:
        name: Provider name prefix
        kubeconfig: Kubeconfig document
        depends_on: Cluster compute the provider waits for

    Returns:
        Kubernetes provider instance
    """
    return k8s.Provider(
        f"{name}-k8s-provider",
        kubeconfig=kubeconfig,
        opts=pulumi.ResourceOptions(depends_on=depends_on or [])
    )


def chart_source(name: str) -> Dict[str, Any]:
    """
    Resolve chart reference arguments of a catalogued chart

    OCI registries are addressed through the chart reference itself, classic
    repositories through repository options.

    Raises:
        ValueError: Chart not in the catalogue
    """
    if name not in CHARTS:
        raise ValueError(f"chart {name!r} is not in the catalogue")
    entry = CHARTS[name]
    if entry["repo"].startswith("oci://"):
        return {"chart": f"{entry['repo']}/{name}", "version": entry["version"], "repository_opts": None}
    return {
        "chart": name,
        "version": entry["version"],
        "repository_opts": k8s.helm.v3.RepositoryOptsArgs(repo=entry["repo"])
    }


def deploy_chart(name: str, provider: k8s.Provider, context: Dict[str, Any], namespace: str,
                 values: Optional[Dict[str, Any]] = None,
                 depends_on: Optional[List[pulumi.Resource]] = None,
                 skip_crds: bool = False,
                 **extra) -> k8s.helm.v3.Release:
    """
    Install a catalogued chart with values rendered from its template

    A failed install or upgrade is rolled back by Helm.

    Args:
        name: Chart name, also the release name
        provider: Kubernetes provider
        context: Render context from templating.build_context
        namespace: Release namespace, created when missing
        values: Values merged over the rendered ones, may hold Outputs
        depends_on: Resources the release waits for
        skip_crds: Leave CRDs to a separate CRD chart
        extra: Chart specific template variables

    Returns:
        Helm release
    """
    source = chart_source(name)
    rendered = templating.render_values(name, context, namespace=namespace, **extra)
    merged = helpers.deep_merge(rendered, values or {})

    return k8s.helm.v3.Release(
        f"{context['kubernetes_cluster_name']}-{name}",
        name=name,
        chart=source["chart"],
        version=source["version"],
        repository_opts=source["repository_opts"],
        namespace=namespace,
        create_namespace=True,
        skip_crds=skip_crds,
        values=merged,
        atomic=True,
        cleanup_on_fail=True,
        timeout=900,
        opts=pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    )


def karpenter_node_pools(settings: KarpenterSettings, cluster_name: str, node_role_name: pulumi.Input[str],
                         imds_tokens: str = "required") -> Dict[str, Any]:
    """
    Build the EC2NodeClass and the default and stable NodePool specs

    The default pool takes any workload within the configured limits. The
    stable pool only consolidates within the configured disruption budgets,
    for workloads that should not move often.

    Args:
        settings: Karpenter settings
        cluster_name: Cluster name, used as subnet and security group discovery tag
        node_role_name: IAM role assumed by the nodes
        imds_tokens: Instance metadata token requirement

    Returns:
        Dict with "node_class" spec and "node_pools" specs keyed by pool name
    """
    capacity_types = ["spot", "on-demand"] if settings.spot_enabled else ["on-demand"]
    requirements = [
        {"key": "karpenter.k8s.aws/instance-category", "operator": "In",
         "values": list(settings.instance_categories)},
        {"key": "kubernetes.io/arch", "operator": "In", "values": [settings.default_architecture.lower()]},
        {"key": "kubernetes.io/os", "operator": "In", "values": ["linux"]},
        {"key": "karpenter.sh/capacity-type", "operator": "In", "values": capacity_types},
    ]
    if settings.excluded_instance_types:
        requirements.append({"key": "node.kubernetes.io/instance-type", "operator": "NotIn",
                             "values": list(settings.excluded_instance_types)})

    def template(pool: str) -> Dict[str, Any]:
        spec = {
            "metadata": {"labels": {"clusterkit.io/node-pool": pool}},
            "spec": {
                "nodeClassRef": {"group": "karpenter.k8s.aws", "kind": "EC2NodeClass", "name": "default"},
                "requirements": requirements,
                "expireAfter": "720h",
            }
        }
        if settings.max_node_drain_time_in_secs:
            spec["spec"]["terminationGracePeriod"] = f"{settings.max_node_drain_time_in_secs}s"
        return spec

    node_pools = {
        "default": {
            "template": template("default"),
            "limits": dict(settings.limits),
            "disruption": {
                "consolidationPolicy": "WhenEmptyOrUnderutilized",
                "consolidateAfter": settings.consolidate_after,
            },
        },
        "stable": {
            "template": template("stable"),
            "disruption": {
                "consolidationPolicy": "WhenEmptyOrUnderutilized",
                "consolidateAfter": settings.consolidate_after,
                "budgets": [dict(budget) for budget in settings.disruption_budgets],
            },
        },
    }

    node_class = {
        "amiSelectorTerms": [{"alias": "al2023@latest"}],
        "role": node_role_name,
        "subnetSelectorTerms": [{"tags": {"karpenter.sh/discovery": cluster_name}}],
        "securityGroupSelectorTerms": [{"tags": {"karpenter.sh/discovery": cluster_name}}],
        "metadataOptions": {
            "httpEndpoint": "enabled",
            "httpTokens": imds_tokens,
            "httpPutResponseHopLimit": 2,
        },
        "blockDeviceMappings": [{
            "deviceName": "/dev/xvda",
            "ebs": {
                "volumeSize": f"{settings.disk_size_in_gib}Gi",
                "volumeType": "gp3",
                "encrypted": True,
                "deleteOnTermination": True,
            }
        }],
        "tags": {"karpenter.sh/discovery": cluster_name},
    }

    return {"node_class": node_class, "node_pools": node_pools}


def install_karpenter(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
                      cluster_info: Dict[str, Any], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Install Karpenter with its Pod Identity role, then its node class and node pools

    Returns:
        Dict with releases and the node pool resources
    """
    name = cfg.cluster_name
    compute = cluster_info["_compute"]

    crd = deploy_chart("karpenter-crd", provider, context, "kube-system", depends_on=compute)

    identity = create_pod_identity_role(
        f"{name}-karpenter",
        cluster_name=cluster_info["cluster_name"],
        namespace="kube-system",
        service_account="karpenter",
        policy_document=policies.karpenter_controller_policy(cluster_info["cluster_arn"],
                                                             cluster_info["node_role_arn"]),
        tags=tags
    )

    karpenter = deploy_chart(
        "karpenter", provider, context, "kube-system",
        values={"settings": {"clusterEndpoint": cluster_info["cluster_endpoint"]}},
        depends_on=compute + [crd, identity["association"]],
        skip_crds=True
    )

    specs = karpenter_node_pools(cfg.karpenter, name, cluster_info["node_role_name"],
                                 cfg.advanced.ec2_metadata_imds)

    node_class = k8s.apiextensions.CustomResource(
        f"{name}-node-class-default",
        api_version="karpenter.k8s.aws/v1",
        kind="EC2NodeClass",
        metadata=k8s.meta.v1.ObjectMetaArgs(name="default"),
        spec=specs["node_class"],
        opts=pulumi.ResourceOptions(provider=provider, depends_on=[karpenter])
    )

    node_pools = []
    for pool_name, spec in specs["node_pools"].items():
        node_pools.append(k8s.apiextensions.CustomResource(
            f"{name}-node-pool-{pool_name}",
            api_version="karpenter.sh/v1",
            kind="NodePool",
            metadata=k8s.meta.v1.ObjectMetaArgs(name=pool_name),
            spec=spec,
            opts=pulumi.ResourceOptions(provider=provider, depends_on=[node_class])
        ))

    return {
        "releases": {"karpenter-crd": crd, "karpenter": karpenter},
        "role_arn": identity["role_arn"],
        "_node_pools": node_pools
    }


def install_addons(cfg: ClusterConfig, provider: k8s.Provider, context: Dict[str, Any],
                   cluster_info: Dict[str, Any], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Install the cluster add-ons

    Every cluster gets metrics-server, VPA and ingress-nginx, except GKE
    Autopilot where the first two are built in. EKS clusters also get the AWS
    load balancer controller, then Karpenter when enabled, otherwise
    cluster-autoscaler and the node termination handler for the node groups.

    Args:
        cfg: Cluster configuration
        provider: Kubernetes provider
        context: Render context from templating.build_context
        cluster_info: Cluster outputs (cluster_name, cluster_arn, cluster_endpoint,
            vpc_id, node_role_name, node_role_arn, _compute)
        tags: Additional AWS tags

    Returns:
        Dict with Helm releases and the resources later charts should wait for
    """
    tags = tags or {}
    name = cfg.cluster_name
    releases = {}
    ready = list(cluster_info["_compute"])

    if cfg.kind == "eks":
        if cfg.enable_karpenter:
            karpenter = install_karpenter(cfg, provider, context, cluster_info, tags)
            releases.update(karpenter["releases"])
            ready.extend(karpenter["_node_pools"])
        else:
            autoscaler_identity = create_pod_identity_role(
                f"{name}-cluster-autoscaler",
                cluster_name=cluster_info["cluster_name"],
                namespace="kube-system",
                service_account="cluster-autoscaler",
                policy_document=policies.CLUSTER_AUTOSCALER_POLICY,
                tags=tags
            )
            releases["cluster-autoscaler"] = deploy_chart(
                "cluster-autoscaler", provider, context, "kube-system",
                depends_on=ready + [autoscaler_identity["association"]]
            )
            releases["aws-node-termination-handler"] = deploy_chart(
                "aws-node-termination-handler", provider, context, "kube-system", depends_on=ready
            )

        lb_identity = create_pod_identity_role(
            f"{name}-aws-load-balancer-controller",
            cluster_name=cluster_info["cluster_name"],
            namespace="kube-system",
            service_account="aws-load-balancer-controller",
            policy_document=policies.LOAD_BALANCER_CONTROLLER_POLICY,
            tags=tags
        )
        releases["aws-load-balancer-controller"] = deploy_chart(
            "aws-load-balancer-controller", provider, context, "kube-system",
            values={"vpcId": cluster_info["vpc_id"]},
            depends_on=ready + [lb_identity["association"]]
        )

    if cfg.kind == "gke":
        pulumi.log.info(f"{name}: metrics-server and VPA are managed by GKE Autopilot")
    else:
        releases["metrics-server"] = deploy_chart("metrics-server", provider, context, "kube-system",
                                                  depends_on=ready)
        releases["vpa"] = deploy_chart("vpa", provider, context, "kube-system",
                                       depends_on=ready + [releases["metrics-server"]])

    ingress_deps = ready + ([releases["aws-load-balancer-controller"]] if cfg.kind == "eks" else [])
    releases["ingress-nginx"] = deploy_chart("ingress-nginx", provider, context, "ingress-nginx",
                                             depends_on=ingress_deps)

    return {
        "releases": releases,
        "_ready": ready
    }
