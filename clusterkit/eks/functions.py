"""
EKS Module Functions
Creates the EKS control plane, managed node groups, the Karpenter Fargate
profile and the managed add-ons
"""

import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List, Optional

from clusterkit import helpers, versions
from clusterkit.config import ClusterConfig, NodeGroup
from clusterkit.iam import create_pod_identity_role

EBS_CSI_POLICY = "arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy"


def create_cloudwatch_log_group(name: str, retention_days: int = 90, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create CloudWatch log group for EKS cluster

    Args:
        name: Cluster name
        retention_days: Log retention in days
        tags: Additional tags

    Returns:
        Dict with log group resource and outputs
    """
    tags = tags or {}

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-eks-log-group",
        name=f"/aws/eks/{name}/cluster",
        retention_in_days=retention_days,
        tags={
            **tags,
            "Name": f"{name}-eks-log-group",
            "Module": "eks"
        }
    )

    return {
        "log_group": log_group,
        "log_group_name": log_group.name
    }


def create_kms_key(name: str, existing_key_arn: str = "", tags: Dict[str, str] = None):
    """
    Create or use existing KMS key for EKS encryption

    Args:
        name: Cluster name
        existing_key_arn: ARN of existing KMS key
        tags: Additional tags

    Returns:
        KMS key ARN
    """
    if existing_key_arn:
        return existing_key_arn

    tags = tags or {}

    kms_key = aws.kms.Key(
        f"{name}-eks-kms-key",
        description=f"EKS Secret Encryption Key for {name}",
        enable_key_rotation=True,
        tags={
            **tags,
            "Name": f"{name}-eks-kms-key",
            "Module": "eks"
        }
    )

    aws.kms.Alias(
        f"{name}-eks-kms-alias",
        name=f"alias/{name}-eks",
        target_key_id=kms_key.key_id
    )

    return kms_key.arn


def create_eks_cluster(name: str, version: str, role_arn: pulumi.Output[str],
                       subnet_ids: List, security_group_ids: List,
                       kms_key_arn, log_group: aws.cloudwatch.LogGroup,
                       endpoint_private_access: bool = False,
                       public_access_cidrs: List[str] = None,
                       upgrade_timeout_in_min: int = 60,
                       region: str = "",
                       tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS cluster

    Args:
        name: Cluster name
        version: Kubernetes version (major.minor)
        role_arn: IAM role ARN for cluster
        subnet_ids: List of subnet IDs
        security_group_ids: List of security group IDs
        kms_key_arn: KMS key ARN for secrets encryption
        log_group: CloudWatch log group, created first so EKS does not create its own
        endpoint_private_access: Enable private API endpoint
        public_access_cidrs: List of CIDRs for public access
        upgrade_timeout_in_min: Timeout applied to control plane updates
        region: AWS region, written to the kubeconfig token command
        tags: Additional tags

    Returns:
        Dict with cluster resource and outputs
    """
    tags = tags or {}
    public_access_cidrs = public_access_cidrs or [helpers.ANY_CIDR]

    cluster = aws.eks.Cluster(
        f"{name}-cluster",
        name=name,
        version=version,
        role_arn=role_arn,
        vpc_config=aws.eks.ClusterVpcConfigArgs(
            subnet_ids=subnet_ids,
            endpoint_private_access=endpoint_private_access,
            endpoint_public_access=True,
            public_access_cidrs=public_access_cidrs,
            security_group_ids=security_group_ids
        ),
        access_config=aws.eks.ClusterAccessConfigArgs(
            authentication_mode="API_AND_CONFIG_MAP",
            bootstrap_cluster_creator_admin_permissions=True
        ),
        enabled_cluster_log_types=["api", "audit", "authenticator", "controllerManager", "scheduler"],
        encryption_config=aws.eks.ClusterEncryptionConfigArgs(
            provider=aws.eks.ClusterEncryptionConfigProviderArgs(
                key_arn=kms_key_arn
            ),
            resources=["secrets"]
        ),
        tags={
            **tags,
            "Name": f"{name}-cluster",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(
            depends_on=[log_group],
            custom_timeouts=pulumi.CustomTimeouts(update=f"{upgrade_timeout_in_min}m")
        )
    )

    kubeconfig = pulumi.Output.all(
        cluster.name,
        cluster.endpoint,
        cluster.certificate_authority.data
    ).apply(lambda args: helpers.eks_kubeconfig(args[0], args[1], args[2], region))

    return {
        "cluster": cluster,
        "cluster_id": cluster.id,
        "cluster_arn": cluster.arn,
        "cluster_endpoint": cluster.endpoint,
        "cluster_version": cluster.version,
        "cluster_certificate_authority_data": cluster.certificate_authority.data,
        "kubeconfig": kubeconfig
    }


def create_node_group(name: str, group: NodeGroup, cluster_name: pulumi.Output[str], role_arn: pulumi.Output[str],
                      subnet_ids: List, tags: Dict[str, str] = None,
                      opts: Optional[pulumi.ResourceOptions] = None) -> Dict[str, Any]:
    """
    Create EKS managed node group

    Args:
        name: Cluster name, prefixes the node group name
        group: Node group sizing and instance settings
        cluster_name: EKS cluster name
        role_arn: IAM role ARN for node group
        subnet_ids: List of subnet IDs
        tags: Additional tags
        opts: Resource options

    Returns:
        Dict with node group resource and outputs
    """
    tags = tags or {}

    node_group = aws.eks.NodeGroup(
        f"{name}-{group.name}-node-group",
        cluster_name=cluster_name,
        node_group_name_prefix=f"{name}-{group.name}-",
        node_role_arn=role_arn,
        subnet_ids=subnet_ids,
        ami_type=group.ami_type,
        capacity_type=group.capacity_type,
        instance_types=[group.instance_type],
        disk_size=group.disk_size_in_gib,
        scaling_config=aws.eks.NodeGroupScalingConfigArgs(
            desired_size=group.desired_nodes,
            max_size=group.max_nodes,
            min_size=group.min_nodes
        ),
        update_config=aws.eks.NodeGroupUpdateConfigArgs(
            max_unavailable_percentage=25
        ),
        tags={
            **tags,
            "Name": f"{name}-{group.name}-node-group",
            "k8s.io/cluster-autoscaler/enabled": "true",
            f"k8s.io/cluster-autoscaler/{name}": "owned",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions.merge(
            pulumi.ResourceOptions(ignore_changes=["scalingConfig.desiredSize"]),
            opts
        )
    )

    return {
        "node_group": node_group,
        "node_group_arn": node_group.arn,
        "node_group_status": node_group.status
    }


def create_karpenter_fargate_profile(name: str, cluster_name: pulumi.Output[str], role_arn: pulumi.Output[str],
                                     subnet_ids: List, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the Fargate profile hosting Karpenter and CoreDNS until Karpenter provisions nodes

    Returns:
        Dict with the Fargate profile
    """
    tags = tags or {}

    profile = aws.eks.FargateProfile(
        f"{name}-karpenter-fargate",
        cluster_name=cluster_name,
        fargate_profile_name="karpenter",
        pod_execution_role_arn=role_arn,
        subnet_ids=subnet_ids,
        selectors=[
            aws.eks.FargateProfileSelectorArgs(
                namespace="kube-system",
                labels={"app.kubernetes.io/name": "karpenter"}
            ),
            aws.eks.FargateProfileSelectorArgs(
                namespace="kube-system",
                labels={"k8s-app": "kube-dns"}
            )
        ],
        tags={
            **tags,
            "Name": f"{name}-karpenter-fargate",
            "Module": "eks"
        }
    )

    return {
        "fargate_profile": profile
    }


def create_karpenter_node_access(name: str, cluster_name: pulumi.Output[str], node_role_arn: pulumi.Output[str],
                                 tags: Dict[str, str] = None) -> aws.eks.AccessEntry:
    """Let nodes launched by Karpenter with the node role join the cluster"""
    tags = tags or {}

    return aws.eks.AccessEntry(
        f"{name}-karpenter-node-access",
        cluster_name=cluster_name,
        principal_arn=node_role_arn,
        type="EC2_LINUX",
        tags={
            **tags,
            "Name": f"{name}-karpenter-node-access",
            "Module": "eks"
        }
    )


def _addon(name: str, cluster_name: pulumi.Output[str], addon_name: str, addon_version: Optional[str],
           tags: Dict[str, str], configuration_values: Optional[str] = None,
           depends_on: Optional[List] = None, pinned: bool = True) -> aws.eks.Addon:
    if pinned and addon_version is None:
        pulumi.log.warn(f"{name}: no pinned {addon_name} build for this Kubernetes version, using the EKS default")

    return aws.eks.Addon(
        f"{name}-{addon_name}-addon",
        cluster_name=cluster_name,
        addon_name=addon_name,
        addon_version=addon_version,
        configuration_values=configuration_values,
        resolve_conflicts_on_create="OVERWRITE",
        resolve_conflicts_on_update="OVERWRITE",
        tags={
            **tags,
            "Name": f"{name}-{addon_name}-addon",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=depends_on or [])
    )


def create_eks_addons(cfg: ClusterConfig, cluster_name: pulumi.Output[str], compute: List,
                      tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create EKS managed add-ons pinned to the cluster's Kubernetes version

    Args:
        cfg: Cluster configuration
        cluster_name: EKS cluster name
        compute: Node groups or Fargate profile the scheduled add-ons wait for
        tags: Additional tags

    Returns:
        Dict with addon resources

    Raises:
        ValueError: The Kubernetes version predates the pinned add-on builds
    """
    tags = tags or {}
    name = cfg.cluster_name
    version = cfg.kubernetes_version
    overrides = cfg.addon_overrides
    coredns_on_fargate = cfg.enable_karpenter and cfg.karpenter.bootstrap_on_fargate

    addons = {
        "vpc_cni": _addon(name, cluster_name, "vpc-cni",
                          versions.vpc_cni_version(version, overrides.vpc_cni), tags),
        "kube_proxy": _addon(name, cluster_name, "kube-proxy",
                             versions.kube_proxy_version(version, overrides.kube_proxy), tags),
        "pod_identity_agent": _addon(name, cluster_name, "eks-pod-identity-agent", None, tags, pinned=False),
    }

    addons["coredns"] = _addon(
        name, cluster_name, "coredns",
        versions.coredns_version(version, overrides.coredns), tags,
        configuration_values='{"computeType": "Fargate"}' if coredns_on_fargate else None,
        depends_on=compute
    )

    ebs_identity = create_pod_identity_role(
        f"{name}-ebs-csi",
        cluster_name=cluster_name,
        namespace="kube-system",
        service_account="ebs-csi-controller-sa",
        managed_policy_arns=[EBS_CSI_POLICY],
        tags=tags,
        opts=pulumi.ResourceOptions(depends_on=[addons["pod_identity_agent"]])
    )
    addons["ebs_csi"] = _addon(
        name, cluster_name, "aws-ebs-csi-driver",
        versions.ebs_csi_version(version, overrides.ebs_csi), tags,
        depends_on=compute + [ebs_identity["association"]]
    )

    return {"addons": addons}


def create_eks_resources(cfg: ClusterConfig, iam: Dict[str, Any], network: Dict[str, Any],
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete EKS infrastructure

    Managed node groups are created from the configured node groups. With
    Karpenter bootstrapping on Fargate they are skipped: a Fargate profile
    hosts Karpenter and CoreDNS instead.

    Args:
        cfg: Cluster configuration
        iam: Output of create_iam_resources
        network: Output of create_network
        tags: Additional tags

    Returns:
        Dict with all EKS resources and outputs
    """
    tags = tags or {}
    name = cfg.cluster_name
    version = versions.KubernetesVersion.parse(cfg.kubernetes_version)

    log_group_result = create_cloudwatch_log_group(name, cfg.advanced.cloudwatch_eks_logs_retention_days, tags)
    kms_key_arn = create_kms_key(name, cfg.advanced.eks_encrypt_secrets_kms_key_arn, tags)

    public_cidrs, private_access = helpers.public_access_cidrs(
        cfg.advanced.static_ip_mode,
        cfg.advanced.platform_allowed_cidrs,
        cfg.advanced.k8s_api_allowed_cidrs
    )

    cluster_result = create_eks_cluster(
        name=name,
        version=version.short,
        role_arn=iam["cluster_role_arn"],
        subnet_ids=network["cluster_subnet_ids"],
        security_group_ids=[network["cluster_security_group_id"]],
        kms_key_arn=kms_key_arn,
        log_group=log_group_result["log_group"],
        endpoint_private_access=private_access,
        public_access_cidrs=public_cidrs,
        upgrade_timeout_in_min=cfg.advanced.eks_upgrade_timeout_in_min,
        region=cfg.region,
        tags=tags
    )
    cluster = cluster_result["cluster"]

    on_fargate = cfg.enable_karpenter and cfg.karpenter.bootstrap_on_fargate
    compute = []
    node_groups = {}
    fargate_profile = None
    if on_fargate:
        if cfg.node_groups:
            pulumi.log.warn(f"{name}: Karpenter bootstraps on Fargate, configured node groups are ignored")
        fargate_profile = create_karpenter_fargate_profile(
            name, cluster.name, iam["fargate_role_arn"], network["fargate_subnet_ids"], tags
        )["fargate_profile"]
        compute.append(fargate_profile)
    else:
        for group in cfg.node_groups:
            node_groups[group.name] = create_node_group(
                name, group, cluster.name, iam["node_group_role_arn"], network["node_subnet_ids"], tags,
                opts=pulumi.ResourceOptions(depends_on=[iam["_instance_profile"]])
            )["node_group"]
        compute.extend(node_groups.values())

    node_access = None
    if cfg.enable_karpenter:
        pulumi.log.info(f"{name}: nodes are provisioned by Karpenter")
        node_access = create_karpenter_node_access(name, cluster.name, iam["node_group_role_arn"], tags)

    addons_result = create_eks_addons(cfg, cluster.name, compute, tags)

    return {
        "cluster_name": cluster.name,
        "cluster_arn": cluster_result["cluster_arn"],
        "cluster_endpoint": cluster_result["cluster_endpoint"],
        "cluster_version_output": cluster_result["cluster_version"],
        "cluster_certificate_authority_data": cluster_result["cluster_certificate_authority_data"],
        "kubeconfig": cluster_result["kubeconfig"],
        "node_group_arns": {key: group.arn for key, group in node_groups.items()},
        # Keep references to resources for dependencies
        "_log_group": log_group_result["log_group"],
        "_cluster": cluster,
        "_node_groups": node_groups,
        "_fargate_profile": fargate_profile,
        "_node_access": node_access,
        "_addons": addons_result["addons"],
        "_compute": compute
    }
