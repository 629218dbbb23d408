"""
Unit tests for the Helm charts: add-ons, DNS and observability
"""

import unittest
from unittest.mock import Mock, patch
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clusterkit.addons import CHARTS, deploy_chart, install_addons, karpenter_node_pools
from clusterkit.config import ClusterConfig, DnsSettings, Features, KarpenterSettings
from clusterkit.dns import cluster_issuer_spec, setup_dns
from clusterkit.observability import prometheus_storage, setup_observability
from clusterkit.templating import build_context


def make_config(**overrides):
    settings = {
        "kind": "eks",
        "cluster_id": "z1234",
        "cluster_name": "test-cluster",
        "region": "eu-west-3",
        "kubernetes_version": "1.29",
    }
    settings.update(overrides)
    return ClusterConfig(**settings)


def make_cluster_info():
    return {
        "cluster_name": "test-cluster",
        "cluster_arn": "arn:aws:eks:eu-west-3:123456789012:cluster/test-cluster",
        "cluster_endpoint": "https://abc.eks.amazonaws.com",
        "vpc_id": "vpc-12345",
        "node_role_name": "test-cluster-ng-role",
        "node_role_arn": "arn:aws:iam::123456789012:role/test-cluster-ng-role",
        "logs_bucket_name": "clusterkit-logs-z1234",
        "logs_bucket_arn": "arn:aws:s3:::clusterkit-logs-z1234",
        "_compute": [Mock()],
    }


def release_names(mock_k8s):
    return [call.kwargs["name"] for call in mock_k8s.helm.v3.Release.call_args_list]


class TestKarpenterNodePools(unittest.TestCase):

    def test_on_demand_only_without_spot(self):
        pools = karpenter_node_pools(KarpenterSettings(), "test-cluster", "node-role")
        requirements = pools["node_pools"]["default"]["template"]["spec"]["requirements"]
        capacity = [r for r in requirements if r["key"] == "karpenter.sh/capacity-type"][0]
        self.assertEqual(capacity["values"], ["on-demand"])

    def test_spot_and_architecture(self):
        settings = KarpenterSettings(spot_enabled=True, default_architecture="ARM64",
                                     excluded_instance_types=["t3.nano"])
        pools = karpenter_node_pools(settings, "test-cluster", "node-role")
        requirements = {r["key"]: r for r in pools["node_pools"]["stable"]["template"]["spec"]["requirements"]}
        self.assertEqual(requirements["karpenter.sh/capacity-type"]["values"], ["spot", "on-demand"])
        self.assertEqual(requirements["kubernetes.io/arch"]["values"], ["arm64"])
        self.assertEqual(requirements["node.kubernetes.io/instance-type"]["operator"], "NotIn")

    def test_stable_pool_has_budgets_default_pool_has_limits(self):
        pools = karpenter_node_pools(KarpenterSettings(), "test-cluster", "node-role")["node_pools"]
        self.assertEqual(pools["stable"]["disruption"]["budgets"], [{"nodes": "10%"}])
        self.assertNotIn("limits", pools["stable"])
        self.assertEqual(pools["default"]["limits"], {"cpu": "1000", "memory": "1000Gi"})

    def test_drain_time(self):
        pools = karpenter_node_pools(KarpenterSettings(max_node_drain_time_in_secs=300), "c", "r")["node_pools"]
        self.assertEqual(pools["default"]["template"]["spec"]["terminationGracePeriod"], "300s")
        pools = karpenter_node_pools(KarpenterSettings(), "c", "r")["node_pools"]
        self.assertNotIn("terminationGracePeriod", pools["default"]["template"]["spec"])

    def test_node_class(self):
        node_class = karpenter_node_pools(KarpenterSettings(disk_size_in_gib=80), "test-cluster", "node-role",
                                          imds_tokens="optional")["node_class"]
        self.assertEqual(node_class["role"], "node-role")
        self.assertEqual(node_class["amiSelectorTerms"], [{"alias": "al2023@latest"}])
        self.assertEqual(node_class["subnetSelectorTerms"], [{"tags": {"karpenter.sh/discovery": "test-cluster"}}])
        self.assertEqual(node_class["metadataOptions"]["httpTokens"], "optional")
        self.assertEqual(node_class["blockDeviceMappings"][0]["ebs"]["volumeSize"], "80Gi")


class TestDeployChart(unittest.TestCase):

    def test_release_is_atomic(self):
        context = build_context(make_config())
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'):
            deploy_chart("metrics-server", Mock(), context, "kube-system")

            args, kwargs = mock_k8s.helm.v3.Release.call_args
            self.assertEqual(args[0], "test-cluster-metrics-server")
            self.assertTrue(kwargs["atomic"])
            self.assertTrue(kwargs["cleanup_on_fail"])
            self.assertEqual(kwargs["version"], CHARTS["metrics-server"]["version"])
            self.assertEqual(kwargs["namespace"], "kube-system")
            mock_k8s.helm.v3.RepositoryOptsArgs.assert_called_once_with(repo=CHARTS["metrics-server"]["repo"])

    def test_oci_chart_and_value_overrides(self):
        context = build_context(make_config(karpenter=KarpenterSettings()))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'):
            deploy_chart("karpenter", Mock(), context, "kube-system",
                         values={"settings": {"clusterEndpoint": "https://abc"}})

            kwargs = mock_k8s.helm.v3.Release.call_args.kwargs
            self.assertEqual(kwargs["chart"], "oci://public.ecr.aws/karpenter/karpenter")
            self.assertIsNone(kwargs["repository_opts"])
            self.assertEqual(kwargs["values"]["settings"],
                             {"clusterName": "test-cluster", "clusterEndpoint": "https://abc"})

    def test_unknown_chart(self):
        with patch('clusterkit.addons.functions.k8s'):
            with self.assertRaises(ValueError):
                deploy_chart("traefik", Mock(), build_context(make_config()), "kube-system")


class TestInstallAddons(unittest.TestCase):

    def test_eks_with_node_groups(self):
        cfg = make_config()
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.iam.functions.aws') as mock_aws:
            result = install_addons(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertEqual(set(result["releases"]), {
                "cluster-autoscaler", "aws-node-termination-handler", "aws-load-balancer-controller",
                "metrics-server", "vpa", "ingress-nginx",
            })
            self.assertNotIn("karpenter", release_names(mock_k8s))
            mock_k8s.apiextensions.CustomResource.assert_not_called()
            service_accounts = [call.kwargs["service_account"]
                                for call in mock_aws.eks.PodIdentityAssociation.call_args_list]
            self.assertEqual(service_accounts, ["cluster-autoscaler", "aws-load-balancer-controller"])

    def test_eks_with_karpenter(self):
        cfg = make_config(karpenter=KarpenterSettings())
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.addons.policies.pulumi'), \
                patch('clusterkit.iam.functions.aws'):
            result = install_addons(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertIn("karpenter", result["releases"])
            self.assertIn("karpenter-crd", result["releases"])
            self.assertNotIn("cluster-autoscaler", result["releases"])
            kinds = [call.kwargs["kind"] for call in mock_k8s.apiextensions.CustomResource.call_args_list]
            self.assertEqual(kinds, ["EC2NodeClass", "NodePool", "NodePool"])
            karpenter = [call.kwargs for call in mock_k8s.helm.v3.Release.call_args_list
                         if call.kwargs["name"] == "karpenter"][0]
            self.assertTrue(karpenter["skip_crds"])
            # node pools gate the charts installed afterwards
            self.assertEqual(len(result["_ready"]), 3)

    def test_gke_relies_on_autopilot(self):
        cfg = make_config(kind="gke", dns=DnsSettings(provider="cloud-dns"))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'):
            result = install_addons(cfg, Mock(), build_context(cfg), {"_compute": [Mock()]})

            self.assertEqual(set(result["releases"]), {"ingress-nginx"})
            self.assertEqual(release_names(mock_k8s), ["ingress-nginx"])

    def test_k3s(self):
        cfg = make_config(kind="ec2", kubernetes_version="v1.29.1+k3s1")
        with patch('clusterkit.addons.functions.k8s'), \
                patch('clusterkit.addons.functions.pulumi'):
            result = install_addons(cfg, Mock(), build_context(cfg), {"_compute": [Mock()]})

            self.assertEqual(set(result["releases"]), {"metrics-server", "vpa", "ingress-nginx"})


class TestDns(unittest.TestCase):

    def test_cluster_issuer_spec(self):
        spec = cluster_issuer_spec("https://acme.example/directory", "ops@example.com")
        self.assertEqual(spec["acme"]["server"], "https://acme.example/directory")
        self.assertEqual(spec["acme"]["email"], "ops@example.com")
        self.assertEqual(spec["acme"]["solvers"][0]["http01"]["ingress"]["ingressClassName"], "nginx-clusterkit")
        self.assertNotIn("email", cluster_issuer_spec("https://acme.example/directory", "")["acme"])

    def test_route53_on_eks(self):
        cfg = make_config(dns=DnsSettings(provider="route53", domain="example.com", tls_email_report="ops@example.com"))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.dns.functions.k8s') as mock_dns_k8s, \
                patch('clusterkit.dns.functions.pulumi'), \
                patch('clusterkit.iam.functions.aws') as mock_aws:
            result = setup_dns(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertEqual(release_names(mock_k8s), ["external-dns", "cert-manager"])
            self.assertEqual(mock_aws.eks.PodIdentityAssociation.call_args.kwargs["service_account"], "external-dns")
            issuer = mock_dns_k8s.apiextensions.CustomResource.call_args.kwargs
            self.assertEqual(issuer["kind"], "ClusterIssuer")
            self.assertEqual(issuer["spec"]["acme"]["server"], "https://acme-v02.api.letsencrypt.org/directory")
            self.assertEqual(result["cluster_issuer"], "letsencrypt-clusterkit")

    def test_no_domain_skips_external_dns(self):
        cfg = make_config(test_cluster=True)
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.dns.functions.k8s') as mock_dns_k8s, \
                patch('clusterkit.dns.functions.pulumi'):
            setup_dns(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertEqual(release_names(mock_k8s), ["cert-manager"])
            issuer = mock_dns_k8s.apiextensions.CustomResource.call_args.kwargs
            self.assertIn("staging", issuer["spec"]["acme"]["server"])

    def test_cloudflare_token_from_secrets(self):
        cfg = make_config(dns=DnsSettings(provider="cloudflare", domain="example.com",
                                          cloudflare_email="ops@example.com"))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.dns.functions.k8s'), \
                patch('clusterkit.dns.functions.pulumi') as mock_pulumi:
            mock_pulumi.Config.return_value.require_secret.return_value = "token"
            setup_dns(cfg, Mock(), build_context(cfg), make_cluster_info())

            mock_pulumi.Config.return_value.require_secret.assert_called_once_with("cloudflare_api_token")
            values = mock_k8s.helm.v3.Release.call_args_list[0].kwargs["values"]
            self.assertEqual(values["cloudflare"], {"email": "ops@example.com", "proxied": False, "apiToken": "token"})

    def test_unsupported_provider(self):
        cfg = make_config(dns=DnsSettings(provider="powerdns", domain="example.com"))
        with patch('clusterkit.addons.functions.k8s'), \
                patch('clusterkit.dns.functions.k8s'), \
                patch('clusterkit.dns.functions.pulumi'):
            with self.assertRaises(ValueError):
                setup_dns(cfg, Mock(), build_context(cfg), make_cluster_info())


class TestObservability(unittest.TestCase):

    def test_prometheus_storage(self):
        self.assertEqual(prometheus_storage(True)["prometheus_retention"], "1d")
        self.assertEqual(prometheus_storage(False)["prometheus_storage_size"], "50Gi")

    def test_metrics_and_logs_on_eks(self):
        cfg = make_config(features=Features(metrics_history_enabled=True, log_history_enabled=True))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.addons.policies.pulumi'), \
                patch('clusterkit.observability.functions.pulumi'), \
                patch('clusterkit.iam.functions.aws') as mock_aws:
            result = setup_observability(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertEqual(release_names(mock_k8s), [
                "prometheus-operator-crds", "kube-prometheus-stack", "prometheus-adapter", "loki", "promtail",
            ])
            self.assertEqual(set(result["releases"]), set(release_names(mock_k8s)))
            association = mock_aws.eks.PodIdentityAssociation.call_args.kwargs
            self.assertEqual((association["namespace"], association["service_account"]), ("logging", "loki"))

    def test_grafana_credentials(self):
        cfg = make_config(features=Features(metrics_history_enabled=True, log_history_enabled=False))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.observability.functions.pulumi') as mock_pulumi:
            mock_pulumi.Config.return_value.get_secret.return_value = "s3cret"
            setup_observability(cfg, Mock(), build_context(cfg), make_cluster_info())

            mock_pulumi.Config.return_value.get_secret.assert_called_once_with("grafana_admin_password")
            releases = {call.kwargs["name"]: call.kwargs for call in mock_k8s.helm.v3.Release.call_args_list}
            grafana = releases["kube-prometheus-stack"]["values"]["grafana"]
            self.assertTrue(grafana["enabled"])
            self.assertEqual(grafana["adminUser"], "admin")
            self.assertEqual(grafana["adminPassword"], "s3cret")

    def test_grafana_generates_its_password_when_unset(self):
        cfg = make_config(features=Features(metrics_history_enabled=True, log_history_enabled=False))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.observability.functions.pulumi') as mock_pulumi:
            mock_pulumi.Config.return_value.get_secret.return_value = None
            setup_observability(cfg, Mock(), build_context(cfg), make_cluster_info())

            releases = {call.kwargs["name"]: call.kwargs for call in mock_k8s.helm.v3.Release.call_args_list}
            self.assertNotIn("adminPassword", releases["kube-prometheus-stack"]["values"]["grafana"])

    def test_datadog_api_key_from_secrets(self):
        cfg = make_config(features=Features(log_history_enabled=False, datadog_enabled=True))
        with patch('clusterkit.addons.functions.k8s') as mock_k8s, \
                patch('clusterkit.addons.functions.pulumi'), \
                patch('clusterkit.observability.functions.pulumi') as mock_pulumi:
            mock_pulumi.Config.return_value.require_secret.return_value = "api-key"
            setup_observability(cfg, Mock(), build_context(cfg), make_cluster_info())

            self.assertEqual(release_names(mock_k8s), ["datadog"])
            values = mock_k8s.helm.v3.Release.call_args.kwargs["values"]
            self.assertEqual(values["datadog"]["apiKey"], "api-key")
            self.assertEqual(values["datadog"]["site"], "datadoghq.com")

    def test_log_history_needs_a_bucket(self):
        cfg = make_config()
        cluster_info = {**make_cluster_info(), "logs_bucket_name": None}
        with patch('clusterkit.addons.functions.k8s'), \
                patch('clusterkit.observability.functions.pulumi'):
            with self.assertRaises(ValueError):
                setup_observability(cfg, Mock(), build_context(cfg), cluster_info)


if __name__ == "__main__":
    unittest.main()
