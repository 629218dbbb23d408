"""
Unit tests for stack configuration loading
"""

import unittest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clusterkit.config import AdvancedSettings, DatabaseSpec, load_config


class FakeConfig:
    """Stands in for pulumi.Config with plain values"""

    def __init__(self, values):
        self.values = values

    def get(self, key):
        return self.values.get(key)

    def get_object(self, key):
        return self.values.get(key)

    def get_bool(self, key):
        return self.values.get(key)

    def require(self, key):
        if key not in self.values:
            raise ValueError(f"missing required configuration key {key}")
        return self.values[key]


def load(**values):
    settings = {"cluster_id": "z1234", "region": "eu-west-3"}
    settings.update(values)
    return load_config(FakeConfig(settings))


class TestLoadConfig(unittest.TestCase):

    def test_eks_defaults(self):
        cfg = load()
        self.assertEqual(cfg.kind, "eks")
        self.assertEqual(cfg.cluster_name, "clusterkit-z1234")
        self.assertEqual(cfg.kubernetes_version, "1.29")
        self.assertEqual(cfg.zones, ["a", "b", "c"])
        self.assertFalse(cfg.network.with_nat_gateways)
        self.assertFalse(cfg.enable_karpenter)
        self.assertEqual([group.name for group in cfg.node_groups], ["default"])
        self.assertEqual(cfg.dns.provider, "route53")

    def test_cluster_id_is_required(self):
        with self.assertRaises(ValueError):
            load_config(FakeConfig({"region": "eu-west-3"}))

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            load(kind="aks")

    def test_unknown_network_mode(self):
        with self.assertRaises(ValueError):
            load(network_mode="WithVpn")

    def test_invalid_subnet_block(self):
        with self.assertRaises(ValueError) as ctx:
            load(eks_subnet_blocks={"a": ["10.0.0.0/33"]})
        self.assertIn("eks_subnet_blocks.a", str(ctx.exception))

    def test_node_group_desired_defaults_to_min(self):
        cfg = load(node_groups=[{"name": "apps", "instance_type": "t3.large", "min_nodes": 2, "max_nodes": 5}])
        self.assertEqual(cfg.node_groups[0].desired_nodes, 2)
        self.assertEqual(cfg.node_groups[0].capacity_type, "ON_DEMAND")

    def test_node_group_bounds(self):
        with self.assertRaises(ValueError):
            load(node_groups=[{"name": "apps", "instance_type": "t3.large", "min_nodes": 3, "max_nodes": 5,
                               "desired_nodes": 6}])

    def test_karpenter_replaces_default_node_group(self):
        cfg = load(karpenter={"spot_enabled": True})
        self.assertTrue(cfg.enable_karpenter)
        self.assertTrue(cfg.karpenter.bootstrap_on_fargate)
        self.assertEqual(cfg.node_groups, [])

    def test_karpenter_without_fargate_needs_node_groups(self):
        with self.assertRaises(ValueError) as ctx:
            load(karpenter={"bootstrap_on_fargate": False})
        self.assertIn("node group", str(ctx.exception))

        cfg = load(karpenter={"bootstrap_on_fargate": False},
                   node_groups=[{"name": "system", "instance_type": "t3.large", "min_nodes": 2, "max_nodes": 3}])
        self.assertTrue(cfg.enable_karpenter)
        self.assertEqual([group.name for group in cfg.node_groups], ["system"])

    def test_unknown_database_engine(self):
        with self.assertRaises(ValueError):
            load(databases=[{"name": "db", "engine": "oracle", "version": "19", "instance_class": "db.t3.small"}])

    def test_ec2_defaults(self):
        cfg = load(kind="ec2")
        self.assertEqual(cfg.kubernetes_version, "v1.29.1+k3s1")
        self.assertEqual(cfg.node_groups, [])
        self.assertFalse(cfg.enable_karpenter)

    def test_gke_network(self):
        cfg = load(
            kind="gke",
            gcp_project="my-project",
            user_provided_network={"vpc_id": "vpc-123", "eks_subnet_ids": {}},
            gke_user_network={"vpc_name": "shared", "subnetwork_name": "nodes"},
        )
        self.assertEqual(cfg.zones, [])
        self.assertEqual(cfg.dns.provider, "cloud-dns")
        self.assertEqual(cfg.gke.project_id, "my-project")
        self.assertIsNone(cfg.network.user_provided_network)
        self.assertEqual(cfg.gke.user_network.subnetwork_name, "nodes")
        self.assertFalse(cfg.enable_karpenter)

    def test_tags_and_labels(self):
        cfg = load(tags={"Team": "Platform"}, advanced={"resource_expiration_in_seconds": 3600})
        self.assertEqual(cfg.common_tags["ttl"], "3600")
        self.assertEqual(cfg.common_tags["Team"], "Platform")
        self.assertEqual(cfg.common_labels["team"], "platform")
        self.assertNotIn("organizationid", cfg.common_labels)


class TestSettings(unittest.TestCase):

    def test_database_allowed_cidrs(self):
        advanced = AdvancedSettings(
            database_allowed_cidrs={"postgresql": ["1.2.3.4/32"]},
            database_deny_any_access={"mysql": True},
        )
        self.assertEqual(advanced.allowed_cidrs_for("postgresql"), ["1.2.3.4/32"])
        self.assertEqual(advanced.allowed_cidrs_for("mysql"), [])
        self.assertEqual(advanced.allowed_cidrs_for("redis"), ["0.0.0.0/0"])

    def test_password_key(self):
        spec = DatabaseSpec(name="orders", engine="postgresql", version="15", instance_class="db.t3.small")
        self.assertEqual(spec.password_key, "orders_password")
        spec.password_secret = "orders_pg_password"
        self.assertEqual(spec.password_key, "orders_pg_password")


if __name__ == "__main__":
    unittest.main()
