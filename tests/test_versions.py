"""
Unit tests for Kubernetes version handling
"""

import unittest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clusterkit.versions import (
    KubernetesVersion,
    coredns_version,
    ebs_csi_version,
    ec2_kubernetes_port,
    is_old_k3s_version,
    vpc_cni_version,
)


class TestKubernetesVersion(unittest.TestCase):

    def test_parse_k3s_version(self):
        version = KubernetesVersion.parse("v1.28.8+k3s1")
        self.assertEqual((version.major, version.minor, version.patch), (1, 28, 8))
        self.assertEqual(version.prefix, "v")
        self.assertEqual(version.suffix, "+k3s1")
        self.assertEqual(str(version), "v1.28.8+k3s1")

    def test_parse_short_version(self):
        version = KubernetesVersion.parse("1.29")
        self.assertIsNone(version.patch)
        self.assertEqual(version.short, "1.29")
        self.assertEqual(str(version), "1.29")

    def test_parse_rejects_garbage(self):
        with self.assertRaises(ValueError):
            KubernetesVersion.parse("latest")


class TestK3s(unittest.TestCase):

    def test_legacy_build_detection(self):
        self.assertTrue(is_old_k3s_version("v1.28.8+k3s1"))
        self.assertFalse(is_old_k3s_version("v1.28.8+k3s2"))
        self.assertFalse(is_old_k3s_version("v1.29.1+k3s1"))

    def test_api_port(self):
        self.assertEqual(ec2_kubernetes_port("v1.28.8+k3s1"), 9876)
        self.assertEqual(ec2_kubernetes_port("v1.29.1+k3s1"), 443)
        self.assertEqual(ec2_kubernetes_port("v1.28.8+k3s1", 6443), 6443)


class TestAddonVersions(unittest.TestCase):

    def test_pinned_build(self):
        self.assertEqual(vpc_cni_version("1.29"), "v1.18.3-eksbuild.2")

    def test_override_wins(self):
        self.assertEqual(vpc_cni_version("1.29", "v1.20.0-eksbuild.1"), "v1.20.0-eksbuild.1")

    def test_too_old_version_is_rejected(self):
        with self.assertRaises(ValueError):
            vpc_cni_version("1.22")

    def test_newer_version_falls_back_to_eks_default(self):
        self.assertIsNone(coredns_version("1.33"))

    def test_unpinned_addon(self):
        self.assertIsNone(ebs_csi_version("1.29"))


if __name__ == "__main__":
    unittest.main()
