"""
Kubernetes version handling
Version parsing, legacy k3s detection and pinned EKS managed add-on builds
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Union

_VERSION_RE = re.compile(r"^(?P<prefix>v)?(?P<major>\d+)\.(?P<minor>\d+)(?:\.(?P<patch>\d+))?(?P<suffix>\+[0-9A-Za-z.-]+)?$")

LEGACY_K3S_SUFFIX = "+k3s1"
LEGACY_K3S_PATCH = 8
LEGACY_K3S_PORT = 9876
DEFAULT_K3S_PORT = 443

# aws eks describe-addon-versions --kubernetes-version <minor> --addon-name <addon>
VPC_CNI_VERSIONS = {
    23: "v1.12.1-eksbuild.1",
    24: "v1.12.2-eksbuild.1",
    25: "v1.13.2-eksbuild.1",
    26: "v1.13.2-eksbuild.1",
    27: "v1.15.1-eksbuild.1",
    28: "v1.18.0-eksbuild.1",
    29: "v1.18.3-eksbuild.2",
    30: "v1.18.3-eksbuild.2",
    31: "v1.19.3-eksbuild.1",
    32: "v1.19.6-eksbuild.7",
    33: "v1.19.6-eksbuild.7",
}

KUBE_PROXY_VERSIONS = {
    23: "v1.23.16-eksbuild.2",
    24: "v1.24.10-eksbuild.2",
    25: "v1.25.6-eksbuild.1",
    26: "v1.26.2-eksbuild.1",
    27: "v1.27.6-eksbuild.2",
    28: "v1.28.2-eksbuild.2",
    29: "v1.29.0-eksbuild.1",
    30: "v1.30.3-eksbuild.5",
    31: "v1.31.3-eksbuild.2",
}

COREDNS_VERSIONS = {
    23: "v1.8.7-eksbuild.10",
    24: "v1.9.3-eksbuild.11",
    25: "v1.9.3-eksbuild.11",
    26: "v1.9.3-eksbuild.11",
    27: "v1.10.1-eksbuild.7",
    28: "v1.10.1-eksbuild.7",
    29: "v1.10.1-eksbuild.7",
}


@dataclass(frozen=True)
class KubernetesVersion:
    major: int
    minor: int
    patch: Optional[int] = None
    prefix: str = ""
    suffix: str = ""

    @classmethod
    def parse(cls, text: str) -> "KubernetesVersion":
        """
        Parse a Kubernetes version string

        Accepts "1.29", "v1.30.2" and k3s style "v1.28.8+k3s1".

        Raises:
            ValueError: When the string is not a Kubernetes version
        """
        match = _VERSION_RE.match(text.strip())
        if not match:
            raise ValueError(f"invalid Kubernetes version {text!r}")
        patch = match.group("patch")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(patch) if patch is not None else None,
            prefix=match.group("prefix") or "",
            suffix=match.group("suffix") or "",
        )

    @property
    def short(self) -> str:
        return f"{self.major}.{self.minor}"

    def __str__(self) -> str:
        text = f"{self.prefix}{self.major}.{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        return text + self.suffix


VersionLike = Union[str, KubernetesVersion]


def _as_version(version: VersionLike) -> KubernetesVersion:
    if isinstance(version, KubernetesVersion):
        return version
    return KubernetesVersion.parse(version)


def is_old_k3s_version(version: VersionLike) -> bool:
    """k3s builds still serving the API on the legacy port"""
    version = _as_version(version)
    return version.suffix == LEGACY_K3S_SUFFIX and version.patch == LEGACY_K3S_PATCH


def ec2_kubernetes_port(version: VersionLike, exposed_port: Optional[int] = None) -> int:
    if exposed_port:
        return exposed_port
    if is_old_k3s_version(version):
        return LEGACY_K3S_PORT
    return DEFAULT_K3S_PORT


def addon_version(addon: str, table: Dict[int, str], version: VersionLike,
                  override: Optional[str] = None) -> Optional[str]:
    """
    Resolve the managed add-on build for a Kubernetes version

    Args:
        addon: Add-on name, used in error messages
        table: Pinned builds keyed by Kubernetes minor version
        version: Cluster Kubernetes version
        override: Explicit build to use instead of the table

    Returns:
        The add-on version, or None to let EKS install its default build

    Raises:
        ValueError: When the Kubernetes version predates the table
    """
    if override:
        return override
    if not table:
        return None

    version = _as_version(version)
    if version.major != 1 or version.minor < min(table):
        raise ValueError(f"{addon} add-on does not support Kubernetes {version.short}")
    return table.get(version.minor)


def vpc_cni_version(version: VersionLike, override: Optional[str] = None) -> Optional[str]:
    return addon_version("vpc-cni", VPC_CNI_VERSIONS, version, override)


def kube_proxy_version(version: VersionLike, override: Optional[str] = None) -> Optional[str]:
    return addon_version("kube-proxy", KUBE_PROXY_VERSIONS, version, override)


def coredns_version(version: VersionLike, override: Optional[str] = None) -> Optional[str]:
    return addon_version("coredns", COREDNS_VERSIONS, version, override)


def ebs_csi_version(version: VersionLike, override: Optional[str] = None) -> Optional[str]:
    return addon_version("aws-ebs-csi-driver", {}, version, override)
