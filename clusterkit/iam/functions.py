"""
IAM Module Functions
Creates IAM roles for the EKS control plane, worker nodes, Fargate and
Pod Identity bound service accounts
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Any, Dict, Iterable, Optional

NODE_POLICIES = [
    ("worker", "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"),
    ("cni", "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"),
    ("registry", "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly"),
    ("ssm", "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore")
]

FARGATE_POD_EXECUTION_POLICY = "arn:aws:iam::aws:policy/AmazonEKSFargatePodExecutionRolePolicy"


def assume_role_policy(service: str, actions: Iterable[str] = ("sts:AssumeRole",)) -> str:
    """Trust policy letting an AWS service principal assume a role"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": list(actions)
        }]
    })


def create_cluster_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS cluster

    Args:
        name: Role name
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-cluster-role",
        name=f"{name}-cluster-role",
        assume_role_policy=assume_role_policy("eks.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-cluster-role",
            "Module": "iam"
        }
    )

    policy_attachment = aws.iam.RolePolicyAttachment(
        f"{name}-cluster-policy",
        policy_arn="arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
        role=role.name
    )

    return {
        "role": role,
        "policy_attachment": policy_attachment,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_node_group_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM role for EKS worker nodes, shared by managed node groups and Karpenter nodes

    Args:
        name: Role name prefix
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-ng-role",
        name=f"{name}-ng-role",
        assume_role_policy=assume_role_policy("ec2.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-node-group-role",
            "Module": "iam"
        }
    )

    policy_attachments = {}
    for policy_name, policy_arn in NODE_POLICIES:
        attachment = aws.iam.RolePolicyAttachment(
            f"{name}-node-{policy_name}-policy",
            policy_arn=policy_arn,
            role=role.name
        )
        policy_attachments[f"{policy_name}_policy"] = attachment

    instance_profile = aws.iam.InstanceProfile(
        f"{name}-node-instance-profile",
        name=f"{name}-node-instance-profile",
        role=role.name,
        tags={
            **tags,
            "Name": f"{name}-node-instance-profile",
            "Module": "iam"
        }
    )

    return {
        "role": role,
        "policy_attachments": policy_attachments,
        "instance_profile": instance_profile,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_fargate_role(name: str, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """Create the pod execution role of the Fargate profile hosting Karpenter"""
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-fargate-role",
        name=f"{name}-fargate-role",
        assume_role_policy=assume_role_policy("eks-fargate-pods.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-fargate-role",
            "Module": "iam"
        }
    )

    policy_attachment = aws.iam.RolePolicyAttachment(
        f"{name}-fargate-policy",
        policy_arn=FARGATE_POD_EXECUTION_POLICY,
        role=role.name
    )

    return {
        "role": role,
        "policy_attachment": policy_attachment,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_pod_identity_role(name: str, cluster_name: pulumi.Input[str], namespace: str, service_account: str,
                             policy_document: Optional[pulumi.Input[str]] = None,
                             managed_policy_arns: Iterable[str] = (),
                             tags: Dict[str, str] = None,
                             opts: Optional[pulumi.ResourceOptions] = None) -> Dict[str, Any]:
    """
    Create an IAM role bound to a Kubernetes service account through EKS Pod Identity

    Args:
        name: Resource name prefix
        cluster_name: EKS cluster name
        namespace: Service account namespace
        service_account: Service account name
        policy_document: Inline policy JSON attached as a customer managed policy
        managed_policy_arns: AWS managed policies to attach
        tags: Additional tags
        opts: Resource options of the association, typically depends_on the cluster

    Returns:
        Dict with role, policy and association resources
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-role",
        assume_role_policy=assume_role_policy("pods.eks.amazonaws.com", ("sts:AssumeRole", "sts:TagSession")),
        tags={
            **tags,
            "Name": f"{name}-role",
            "Module": "iam"
        }
    )

    policy = None
    if policy_document is not None:
        policy = aws.iam.Policy(
            f"{name}-policy",
            policy=policy_document,
            tags={
                **tags,
                "Name": f"{name}-policy",
                "Module": "iam"
            }
        )
        aws.iam.RolePolicyAttachment(
            f"{name}-policy-attach",
            role=role.name,
            policy_arn=policy.arn
        )

    for i, policy_arn in enumerate(managed_policy_arns):
        aws.iam.RolePolicyAttachment(
            f"{name}-managed-policy-{i+1}",
            role=role.name,
            policy_arn=policy_arn
        )

    association = aws.eks.PodIdentityAssociation(
        f"{name}-pod-identity",
        cluster_name=cluster_name,
        namespace=namespace,
        service_account=service_account,
        role_arn=role.arn,
        tags=tags,
        opts=opts
    )

    return {
        "role": role,
        "policy": policy,
        "association": association,
        "role_arn": role.arn
    }


def create_iam_resources(cluster_name: str, enable_karpenter: bool = False,
                         bootstrap_on_fargate: bool = False,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create IAM resources for EKS

    Args:
        cluster_name: EKS cluster name
        enable_karpenter: Karpenter manages the nodes
        bootstrap_on_fargate: Karpenter itself runs on Fargate
        tags: Additional tags

    Returns:
        Dict with all IAM resources and outputs
    """
    tags = tags or {}

    cluster_role_result = create_cluster_role(cluster_name, tags)
    node_role_result = create_node_group_role(cluster_name, tags)

    fargate_role_result = None
    if enable_karpenter and bootstrap_on_fargate:
        fargate_role_result = create_fargate_role(cluster_name, tags)

    return {
        "cluster_role_arn": cluster_role_result["role_arn"],
        "cluster_role_name": cluster_role_result["role_name"],
        "node_group_role_arn": node_role_result["role_arn"],
        "node_group_role_name": node_role_result["role_name"],
        "fargate_role_arn": fargate_role_result["role_arn"] if fargate_role_result else None,
        # Keep references to resources for dependencies
        "_cluster_role": cluster_role_result["role"],
        "_node_role": node_role_result["role"],
        "_cluster_policy_attachment": cluster_role_result["policy_attachment"],
        "_node_policy_attachments": node_role_result["policy_attachments"],
        "_instance_profile": node_role_result["instance_profile"],
        "_fargate_role": fargate_role_result["role"] if fargate_role_result else None
    }
