"""
Unit tests for the pure helpers
"""

import unittest
import sys
import os

import yaml

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clusterkit import helpers


class TestSubnetBlocks(unittest.TestCase):

    def test_without_nat_every_block_is_public(self):
        private, public = helpers.split_subnet_blocks("a", ["10.0.0.0/20", "10.0.16.0/20"], "WithoutNatGateways")
        self.assertEqual(private, [])
        self.assertEqual(public, ["10.0.0.0/20", "10.0.16.0/20"])

    def test_with_nat_first_half_is_private(self):
        private, public = helpers.split_subnet_blocks(
            "a", ["10.0.0.0/20", "10.0.16.0/20", "10.0.32.0/20", "10.0.48.0/20"], helpers.WITH_NAT_GATEWAYS
        )
        self.assertEqual(private, ["10.0.0.0/20", "10.0.16.0/20"])
        self.assertEqual(public, ["10.0.32.0/20", "10.0.48.0/20"])

    def test_with_nat_odd_count_is_rejected(self):
        with self.assertRaises(ValueError) as ctx:
            helpers.split_subnet_blocks("b", ["10.0.0.0/20"], helpers.WITH_NAT_GATEWAYS)
        self.assertIn("zone b", str(ctx.exception))


class TestPublicAccessCidrs(unittest.TestCase):

    def test_open_by_default(self):
        self.assertEqual(helpers.public_access_cidrs(False, ["1.2.3.4/32"]), (["0.0.0.0/0"], False))

    def test_static_ip_mode_without_allow_list_stays_open(self):
        self.assertEqual(helpers.public_access_cidrs(True, []), (["0.0.0.0/0"], False))

    def test_static_ip_mode_restricts_and_enables_private_endpoint(self):
        cidrs, private = helpers.public_access_cidrs(True, ["1.2.3.4/32"], ["5.6.7.8/32"])
        self.assertEqual(cidrs, ["1.2.3.4/32", "5.6.7.8/32"])
        self.assertTrue(private)


class TestNames(unittest.TestCase):

    def test_sanitize_name(self):
        self.assertEqual(helpers.sanitize_name("My_Cluster.Name"), "my-cluster-name")

    def test_sanitize_name_strips_hyphens_after_truncation(self):
        self.assertEqual(helpers.sanitize_name("abc-def", max_len=4), "abc")

    def test_bucket_names(self):
        self.assertEqual(helpers.kubeconfig_bucket_name("Z1234"), "clusterkit-kubeconfigs-z1234")
        self.assertEqual(helpers.logs_bucket_name("z1234"), "clusterkit-logs-z1234")
        self.assertLessEqual(len(helpers.flow_logs_bucket_name("x" * 80)), 63)

    def test_gcp_service_account_id(self):
        first = helpers.gcp_service_account_id("production-europe-west1-cluster-a", "loki")
        second = helpers.gcp_service_account_id("production-europe-west1-cluster-b", "loki")

        self.assertNotEqual(first, second)
        for account_id in (first, second):
            self.assertRegex(account_id, r"^[a-z][-a-z0-9]{4,28}[a-z0-9]$")
            self.assertIn("-loki-", account_id)
        self.assertTrue(helpers.gcp_service_account_id("42-cluster", "loki").startswith("sa-42-cluster-"))

    def test_zone_name(self):
        self.assertEqual(helpers.zone_name("eu-west-3", "a"), "eu-west-3a")
        self.assertEqual(helpers.zone_name("eu-west-3", "eu-west-3b"), "eu-west-3b")

    def test_acme_server_url(self):
        self.assertEqual(helpers.acme_server_url(True), helpers.LETSENCRYPT_STAGING_URL)
        self.assertEqual(helpers.acme_server_url(False), helpers.LETSENCRYPT_PRODUCTION_URL)


class TestKubeconfig(unittest.TestCase):

    def test_eks_kubeconfig_uses_aws_token(self):
        document = yaml.safe_load(helpers.eks_kubeconfig("prod", "https://abc.eks.amazonaws.com", "Q0E=", "eu-west-3"))
        self.assertEqual(document["current-context"], "prod")
        self.assertEqual(document["clusters"][0]["cluster"]["server"], "https://abc.eks.amazonaws.com")
        exec_config = document["users"][0]["user"]["exec"]
        self.assertEqual(exec_config["command"], "aws")
        self.assertEqual(exec_config["args"], ["eks", "get-token", "--cluster-name", "prod", "--region", "eu-west-3"])

    def test_gke_kubeconfig_adds_scheme(self):
        document = yaml.safe_load(helpers.gke_kubeconfig("prod", "34.1.2.3", "Q0E="))
        self.assertEqual(document["clusters"][0]["cluster"]["server"], "https://34.1.2.3")
        self.assertEqual(document["users"][0]["user"]["exec"]["command"], "gke-gcloud-auth-plugin")


class TestConnectionDetails(unittest.TestCase):

    def test_shell_identifier(self):
        self.assertEqual(helpers.shell_identifier("my-db"), "MY_DB")
        self.assertEqual(helpers.shell_identifier("1db"), "_1DB")

    def test_exports_cluster_then_databases(self):
        lines = helpers.connection_details({
            "cluster_name": "prod",
            "cluster_endpoint": "",
            "region": "eu-west-3",
            "databases": {"my-pg": {"host": "pg.internal", "port": 5432}},
        })
        self.assertEqual(lines, [
            "export CLUSTER_NAME=prod",
            "export CLOUD_REGION=eu-west-3",
            "export MY_PG_HOST=pg.internal",
            "export MY_PG_PORT=5432",
        ])

    def test_kubeconfig_path_exported_first(self):
        lines = helpers.connection_details({"kubeconfig_path": "/tmp/prod.yaml", "cluster_name": "prod"})
        self.assertEqual(lines[0], "export KUBECONFIG=/tmp/prod.yaml")

    def test_values_are_shell_quoted(self):
        lines = helpers.connection_details({"kubeconfig_path": "/home/o'neil/.kube/prod.yaml",
                                            "cluster_name": "my cluster"})
        self.assertEqual(lines, [
            "export KUBECONFIG='/home/o'\"'\"'neil/.kube/prod.yaml'",
            "export CLUSTER_NAME='my cluster'",
        ])


class TestRoutesAndMerge(unittest.TestCase):

    def test_route_target_field(self):
        self.assertEqual(helpers.route_target_field("nat-0abc"), "nat_gateway_id")
        self.assertEqual(helpers.route_target_field("pcx-0abc"), "vpc_peering_connection_id")
        with self.assertRaises(ValueError):
            helpers.route_target_field("lgw-0abc")

    def test_deep_merge_keeps_base(self):
        base = {"a": {"b": 1, "c": 2}, "d": [1]}
        merged = helpers.deep_merge(base, {"a": {"c": 3}, "d": [2]})
        self.assertEqual(merged, {"a": {"b": 1, "c": 3}, "d": [2]})
        self.assertEqual(base["a"]["c"], 2)


if __name__ == "__main__":
    unittest.main()
