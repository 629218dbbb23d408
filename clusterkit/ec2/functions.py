"""
EC2 Module Functions
Creates a single EC2 instance running k3s, bootstrapped by a user data script
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Any, Dict

from clusterkit import helpers, templating
from clusterkit.config import ClusterConfig
from clusterkit.iam import assume_role_policy

CANONICAL_OWNER_ID = "099720109477"
UBUNTU_IMAGE_NAME = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"


def get_ubuntu_ami() -> str:
    ami = aws.ec2.get_ami(
        most_recent=True,
        owners=[CANONICAL_OWNER_ID],
        filters=[
            aws.ec2.GetAmiFilterArgs(name="name", values=[UBUNTU_IMAGE_NAME]),
            aws.ec2.GetAmiFilterArgs(name="virtualization-type", values=["hvm"])
        ]
    )
    return ami.id


def create_instance_role(name: str, kubeconfig_bucket_arn: pulumi.Output[str], logs_bucket_arn=None,
                         tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the instance role and profile of the k3s node

    The node uploads its kubeconfig to the kubeconfig bucket and, with log
    history enabled, Loki writes chunks to the logs bucket with the same
    credentials.

    Args:
        name: Resource name prefix
        kubeconfig_bucket_arn: Kubeconfig bucket ARN
        logs_bucket_arn: Logs bucket ARN, None when log history is disabled
        tags: Additional tags

    Returns:
        Dict with role and instance profile
    """
    tags = tags or {}

    role = aws.iam.Role(
        f"{name}-k3s-role",
        name=f"{name}-k3s-role",
        assume_role_policy=assume_role_policy("ec2.amazonaws.com"),
        tags={
            **tags,
            "Name": f"{name}-k3s-role",
            "Module": "ec2"
        }
    )

    bucket_arns = [kubeconfig_bucket_arn] + ([logs_bucket_arn] if logs_bucket_arn is not None else [])
    policy_document = pulumi.Output.all(*bucket_arns).apply(lambda arns: json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": ["s3:PutObject", "s3:GetObject", "s3:DeleteObject"],
            "Resource": [f"{arn}/*" for arn in arns]
        }, {
            "Effect": "Allow",
            "Action": ["s3:ListBucket"],
            "Resource": list(arns)
        }]
    }))

    aws.iam.RolePolicy(
        f"{name}-k3s-buckets-policy",
        role=role.id,
        policy=policy_document
    )

    aws.iam.RolePolicyAttachment(
        f"{name}-k3s-ssm-policy",
        policy_arn="arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore",
        role=role.name
    )

    instance_profile = aws.iam.InstanceProfile(
        f"{name}-k3s-instance-profile",
        name=f"{name}-k3s-instance-profile",
        role=role.name,
        tags={
            **tags,
            "Name": f"{name}-k3s-instance-profile",
            "Module": "ec2"
        }
    )

    return {
        "role": role,
        "instance_profile": instance_profile
    }


def create_instance_security_group(name: str, vpc_id: pulumi.Output[str], api_port: int, cfg: ClusterConfig,
                                   tags: Dict[str, str] = None) -> aws.ec2.SecurityGroup:
    """
    Security group of the k3s node: Kubernetes API, HTTP(S) for the ingress
    controller and SSH when a key is configured
    """
    tags = tags or {}
    api_cidrs, _ = helpers.public_access_cidrs(
        cfg.advanced.static_ip_mode,
        cfg.advanced.platform_allowed_cidrs,
        cfg.advanced.k8s_api_allowed_cidrs
    )

    ingress = [
        aws.ec2.SecurityGroupIngressArgs(
            description="Kubernetes API",
            protocol="tcp",
            from_port=api_port,
            to_port=api_port,
            cidr_blocks=api_cidrs
        ),
        aws.ec2.SecurityGroupIngressArgs(
            description="HTTP",
            protocol="tcp",
            from_port=80,
            to_port=80,
            cidr_blocks=[helpers.ANY_CIDR]
        )
    ]
    if api_port != 443:
        ingress.append(aws.ec2.SecurityGroupIngressArgs(
            description="HTTPS",
            protocol="tcp",
            from_port=443,
            to_port=443,
            cidr_blocks=[helpers.ANY_CIDR]
        ))
    if cfg.ec2.user_ssh_key:
        ingress.append(aws.ec2.SecurityGroupIngressArgs(
            description="SSH",
            protocol="tcp",
            from_port=22,
            to_port=22,
            cidr_blocks=[helpers.ANY_CIDR]
        ))

    return aws.ec2.SecurityGroup(
        f"{name}-k3s-sg",
        name_prefix=f"{name}-k3s-",
        description=f"k3s node of {name}",
        vpc_id=vpc_id,
        ingress=ingress,
        egress=[aws.ec2.SecurityGroupEgressArgs(
            protocol="-1",
            from_port=0,
            to_port=0,
            cidr_blocks=[helpers.ANY_CIDR]
        )],
        tags={
            **tags,
            "Name": f"{name}-k3s-sg",
            "Module": "ec2"
        }
    )


def create_k3s_instance(cfg: ClusterConfig, network: Dict[str, Any], storage: Dict[str, Any],
                        context: Dict[str, Any], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create the k3s node

    The Elastic IP is allocated before the instance so its DNS name can be
    baked into the API certificate and the published kubeconfig.

    Args:
        cfg: Cluster configuration
        network: Output of create_ec2_network
        storage: Output of create_aws_buckets
        context: Render context from templating.build_context
        tags: Additional tags

    Returns:
        Dict with instance, endpoint and, once published, the kubeconfig
    """
    tags = tags or {}
    name = cfg.cluster_name
    api_port = context["ec2_port"]

    if context["is_old_k3s_version"]:
        pulumi.log.warn(f"{name}: k3s {context['k3s_version']} serves its API on legacy port {api_port}")

    role_result = create_instance_role(name, storage["kubeconfig_bucket_arn"], storage["logs_bucket_arn"], tags)
    security_group = create_instance_security_group(name, network["vpc_id"], api_port, cfg, tags)

    key_name = None
    if cfg.ec2.user_ssh_key:
        key_pair = aws.ec2.KeyPair(
            f"{name}-k3s-key",
            key_name_prefix=f"{name}-",
            public_key=cfg.ec2.user_ssh_key,
            tags={**tags, "Name": f"{name}-k3s-key", "Module": "ec2"}
        )
        key_name = key_pair.key_name

    eip = aws.ec2.Eip(
        f"{name}-k3s-eip",
        domain="vpc",
        tags={**tags, "Name": f"{name}-k3s-eip", "Module": "ec2"},
        opts=pulumi.ResourceOptions(depends_on=[network["_igw"]])
    )

    user_data = eip.public_dns.apply(
        lambda hostname: templating.render_user_data(context, public_hostname=hostname)
    )

    instance = aws.ec2.Instance(
        f"{name}-k3s",
        ami=get_ubuntu_ami(),
        instance_type=cfg.ec2.instance_type,
        subnet_id=network["public_subnet_ids"][0],
        vpc_security_group_ids=[security_group.id],
        iam_instance_profile=role_result["instance_profile"].name,
        key_name=key_name,
        user_data=user_data,
        metadata_options=aws.ec2.InstanceMetadataOptionsArgs(
            http_endpoint="enabled",
            http_tokens=cfg.advanced.ec2_metadata_imds,
            http_put_response_hop_limit=2
        ),
        root_block_device=aws.ec2.InstanceRootBlockDeviceArgs(
            volume_size=cfg.ec2.disk_size_in_gib,
            volume_type="gp3",
            encrypted=True
        ),
        tags={
            **tags,
            "Name": f"{name}-k3s",
            "Module": "ec2"
        }
    )

    aws.ec2.EipAssociation(
        f"{name}-k3s-eip-association",
        instance_id=instance.id,
        allocation_id=eip.allocation_id
    )

    endpoint = eip.public_dns.apply(lambda hostname: f"https://{hostname}:{api_port}")

    kubeconfig = None
    if cfg.ec2.kubeconfig_ready:
        kubeconfig = aws.s3.get_object_output(
            bucket=storage["kubeconfig_bucket_name"],
            key=f"{cfg.cluster_id}.yaml"
        ).body
    else:
        pulumi.log.info(f"{name}: kubeconfig not published yet, set ec2.kubeconfig_ready once the node is up")

    return {
        "cluster_name": pulumi.Output.from_input(name),
        "cluster_endpoint": endpoint,
        "kubeconfig": kubeconfig,
        "instance_id": instance.id,
        "public_ip": eip.public_ip,
        "public_hostname": eip.public_dns,
        "node_role_name": role_result["role"].name,
        "_instance": instance,
        "_compute": [instance]
    }
