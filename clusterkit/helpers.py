"""
Pure helpers for networking, naming and kubeconfig generation.

Nothing in this module touches the Pulumi runtime: all functions take and
return plain Python values so they can be unit-tested without a stack. The
resource modules call them with resolved values, typically from inside an
``Output.apply``.
"""

import hashlib
import re
import shlex
from typing import Dict, List, Optional, Tuple

WITH_NAT_GATEWAYS = "WithNatGateways"

ANY_CIDR = "0.0.0.0/0"

LETSENCRYPT_STAGING_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"
LETSENCRYPT_PRODUCTION_URL = "https://acme-v02.api.letsencrypt.org/directory"


def split_subnet_blocks(
    zone: str,
    blocks: List[str],
    network_mode: str,
) -> Tuple[List[str], List[str]]:
    """
    Split a zone's subnet blocks into (private, public) lists.

    With NAT gateways each zone carries as many public subnets (holding the
    NAT gateway) as private ones (holding the nodes), so the list must have an
    even length: the first half is private and the second half public.
    Without NAT gateways there are no private subnets and every block is
    public.

    Raises:
        ValueError: With NAT gateways and an odd number of blocks.
    """
    if network_mode != WITH_NAT_GATEWAYS:
        return [], list(blocks)

    if len(blocks) % 2 == 1:
        raise ValueError(
            f"subnets count is not even for zone {zone}: got {len(blocks)} blocks, "
            "expected as many public as private subnets"
        )
    half = len(blocks) // 2
    return list(blocks[:half]), list(blocks[half:])


def public_access_cidrs(
    static_ip_mode: Optional[bool],
    allowed_cidrs: Optional[List[str]],
    api_allowed_cidrs: Optional[List[str]] = None,
) -> Tuple[List[str], bool]:
    """
    Compute the Kubernetes API public access CIDRs and private endpoint flag.

    The API stays open to the world unless static IP mode is on and a
    platform allow-list is provided. In that case only the platform list
    (plus any user-provided list) may reach the public endpoint, and the
    private endpoint is turned on so nodes keep access.
    """
    if static_ip_mode and allowed_cidrs:
        return list(allowed_cidrs) + list(api_allowed_cidrs or []), True
    return [ANY_CIDR], False


def sanitize_name(
    name: str,
    max_len: int = 63,
) -> str:
    """
    Lowercase a name and keep only [a-z0-9-], as bucket and GCP resource
    names require. Leading and trailing hyphens are stripped after truncation.
    """
    cleaned = re.sub(r"[^a-z0-9-]+", "-", name.lower())
    return cleaned[:max_len].strip("-")


def gcp_service_account_id(name: str, role: str) -> str:
    """
    Google service account id for a workload: a name prefix, the role and a
    short hash of the full name. GCP ids are 6 to 30 characters and start with
    a letter, so the prefix is cut to fit and the hash keeps ids apart.
    """
    digest = hashlib.sha1(name.encode()).hexdigest()[:6]
    role = sanitize_name(role, max_len=12)
    room = 30 - len(role) - len(digest) - 2
    prefix = sanitize_name(name, max_len=room)
    if not prefix[:1].isalpha():
        prefix = sanitize_name(f"sa-{prefix}", max_len=room)
    return "-".join(part for part in (prefix, role, digest) if part)


def kubeconfig_bucket_name(cluster_id: str) -> str:
    return sanitize_name(f"clusterkit-kubeconfigs-{cluster_id}")


def logs_bucket_name(cluster_id: str) -> str:
    return sanitize_name(f"clusterkit-logs-{cluster_id}")


def flow_logs_bucket_name(cluster_id: str) -> str:
    return sanitize_name(f"clusterkit-vpc-flow-logs-{cluster_id}")


def zone_name(region: str, zone: str) -> str:
    """Expand a zone suffix ("a") to a full zone name ("eu-west-3a")."""
    return zone if zone.startswith(region) else f"{region}{zone}"


def acme_server_url(test_cluster: bool) -> str:
    return LETSENCRYPT_STAGING_URL if test_cluster else LETSENCRYPT_PRODUCTION_URL


def _kubeconfig(name: str, endpoint: str, ca_data: str, command: str, args: List[str]) -> str:
    arg_lines = "".join(f"        - {arg}\n" for arg in args)
    return f"""apiVersion: v1
clusters:
- cluster:
    certificate-authority-data: {ca_data}
    server: {endpoint}
  name: {name}
contexts:
- context:
    cluster: {name}
    user: {name}
  name: {name}
current-context: {name}
kind: Config
users:
- name: {name}
  user:
    exec:
      apiVersion: client.authentication.k8s.io/v1beta1
      command: {command}
      args:
{arg_lines}"""


def eks_kubeconfig(name: str, endpoint: str, ca_data: str, region: str) -> str:
    return _kubeconfig(name, endpoint, ca_data, "aws",
                       ["eks", "get-token", "--cluster-name", name, "--region", region])


def gke_kubeconfig(name: str, endpoint: str, ca_data: str) -> str:
    if not endpoint.startswith("https://"):
        endpoint = f"https://{endpoint}"
    return _kubeconfig(name, endpoint, ca_data, "gke-gcloud-auth-plugin", ["--use_application_default_credentials"])


def shell_identifier(key: str) -> str:
    """Turn an output key into an upper-case shell variable name."""
    ident = re.sub(r"[^A-Za-z0-9_]", "_", key).upper()
    if ident and ident[0].isdigit():
        ident = f"_{ident}"
    return ident


def connection_details(outputs: Dict[str, object]) -> List[str]:
    """
    Build ``export`` lines from stack outputs.

    Cluster identity keys come first, then each database host and port found
    under the ``databases`` output. Empty values are skipped.
    """
    exports = []
    for key, env in (
        ("kubeconfig_path", "KUBECONFIG"),
        ("cluster_name", "CLUSTER_NAME"),
        ("cluster_endpoint", "CLUSTER_ENDPOINT"),
        ("region", "CLOUD_REGION"),
    ):
        value = outputs.get(key)
        if value:
            exports.append(f"export {env}={shlex.quote(str(value))}")

    databases = outputs.get("databases") or {}
    for name, details in sorted(databases.items()):
        prefix = shell_identifier(name)
        for field in ("host", "port"):
            value = (details or {}).get(field)
            if value:
                exports.append(f"export {prefix}_{field.upper()}={shlex.quote(str(value))}")
    return exports


ROUTE_TARGET_FIELDS = {
    "igw-": "gateway_id",
    "vgw-": "gateway_id",
    "nat-": "nat_gateway_id",
    "pcx-": "vpc_peering_connection_id",
    "tgw-": "transit_gateway_id",
    "eni-": "network_interface_id",
    "vpce-": "vpc_endpoint_id",
}


def route_target_field(target: str) -> str:
    """
    Map an AWS route target id to the route argument carrying it.

    Raises:
        ValueError: When the id prefix is not a known route target.
    """
    for prefix, field in ROUTE_TARGET_FIELDS.items():
        if target.startswith(prefix):
            return field
    raise ValueError(f"unsupported route target {target!r}")


def deep_merge(base: Dict, overrides: Dict) -> Dict:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
