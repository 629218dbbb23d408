"""
Unit tests for chart values and user data rendering
"""

import unittest
import sys
import os

from jinja2 import UndefinedError

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clusterkit.config import ClusterConfig, DnsSettings, KarpenterSettings, NetworkSettings
from clusterkit.templating import build_context, render_user_data, render_values


def make_config(**overrides):
    settings = {
        "kind": "eks",
        "cluster_id": "z1234",
        "cluster_name": "clusterkit-z1234",
        "region": "eu-west-3",
        "kubernetes_version": "1.29",
    }
    settings.update(overrides)
    return ClusterConfig(**settings)


class TestBuildContext(unittest.TestCase):

    def test_eks_context(self):
        context = build_context(make_config(dns=DnsSettings(provider="route53", domain="example.com")))
        self.assertEqual(context["cloud_provider"], "aws")
        self.assertEqual(context["kubernetes_short_version"], "1.29")
        self.assertEqual(context["cluster_domain"], "z1234.example.com")
        self.assertEqual(context["external_dns_provider"], "aws")
        self.assertFalse(context["is_old_k3s_version"])
        self.assertIsNone(context["ec2_port"])
        self.assertNotIn("k3s_version", context)

    def test_ec2_legacy_k3s_context(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.28.8+k3s1"))
        self.assertTrue(context["is_old_k3s_version"])
        self.assertEqual(context["ec2_port"], 9876)
        self.assertEqual(context["k3s_version"], "v1.28.8+k3s1")

    def test_gke_context(self):
        context = build_context(make_config(kind="gke", dns=DnsSettings(provider="cloud-dns")))
        self.assertEqual(context["cloud_provider"], "gcp")
        self.assertEqual(context["external_dns_provider"], "google")
        self.assertEqual(context["managed_dns_domains"], [])

    def test_karpenter_flags(self):
        context = build_context(make_config(karpenter=KarpenterSettings(bootstrap_on_fargate=True)))
        self.assertTrue(context["enable_karpenter"])
        self.assertTrue(context["bootstrap_on_fargate"])

    def test_loki_retention_in_hours(self):
        self.assertEqual(build_context(make_config())["loki_retention_hours"], 12 * 7 * 24)

    def test_network_flags(self):
        context = build_context(make_config(network=NetworkSettings(network_mode="WithNatGateways")))
        self.assertEqual(context["vpc_qovery_network_mode"], "WithNatGateways")
        self.assertFalse(context["user_provided_network"])
        self.assertEqual(context["grafana_admin_user"], "admin")


class TestRenderValues(unittest.TestCase):

    def test_metrics_server_on_k3s_skips_kubelet_tls(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.29.1+k3s1"))
        values = render_values("metrics-server", context, namespace="kube-system")
        self.assertIn("--kubelet-insecure-tls", values["args"])

    def test_metrics_server_on_eks(self):
        values = render_values("metrics-server", build_context(make_config()), namespace="kube-system")
        self.assertNotIn("--kubelet-insecure-tls", values["args"])

    def test_comment_only_template_gives_empty_values(self):
        self.assertEqual(render_values("karpenter-crd", build_context(make_config())), {})

    def test_missing_chart_variable_fails(self):
        with self.assertRaises(UndefinedError):
            render_values("prometheus-adapter", build_context(make_config()))

    def test_prometheus_variables(self):
        values = render_values("kube-prometheus-stack", build_context(make_config()),
                               prometheus_retention="15d", prometheus_storage_size="50Gi")
        spec = values["prometheus"]["prometheusSpec"]
        self.assertEqual(spec["retention"], "15d")
        self.assertEqual(spec["storageSpec"]["volumeClaimTemplate"]["spec"]["resources"]["requests"]["storage"],
                         "50Gi")
        self.assertTrue(values["grafana"]["enabled"])
        self.assertEqual(values["grafana"]["adminUser"], "admin")

    def test_external_dns_route53(self):
        context = build_context(make_config(dns=DnsSettings(provider="route53", domain="example.com")))
        values = render_values("external-dns", context)
        self.assertEqual(values["provider"], "aws")
        self.assertEqual(values["domainFilters"], ["example.com"])
        self.assertEqual(values["aws"]["region"], "eu-west-3")

    def test_ingress_nginx_annotations(self):
        context = build_context(make_config(dns=DnsSettings(provider="route53", domain="example.com")))
        annotations = render_values("ingress-nginx", context)["controller"]["service"]["annotations"]
        self.assertEqual(annotations["external-dns.alpha.kubernetes.io/hostname"], "*.z1234.example.com")
        self.assertEqual(annotations["service.beta.kubernetes.io/aws-load-balancer-type"], "external")

    def test_ingress_nginx_on_k3s_has_no_annotations(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.29.1+k3s1"))
        service = render_values("ingress-nginx", context)["controller"]["service"]
        self.assertNotIn("annotations", service)

    def test_promtail_pushes_to_loki_namespace(self):
        values = render_values("promtail", build_context(make_config()), namespace="logging")
        self.assertEqual(values["config"]["clients"][0]["url"], "http://loki.logging.svc:3100/loki/api/v1/push")

    def test_loki_storage_follows_cloud(self):
        self.assertEqual(render_values("loki", build_context(make_config()))["loki"]["storage"]["type"], "s3")
        gke_values = render_values("loki", build_context(make_config(kind="gke", dns=DnsSettings(provider="cloud-dns"))))
        self.assertEqual(gke_values["loki"]["storage"]["type"], "gcs")


class TestRenderUserData(unittest.TestCase):

    def test_legacy_k3s_advertises_port(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.28.8+k3s1"))
        script = render_user_data(context, public_hostname="ec2-1-2-3-4.compute.amazonaws.com")
        self.assertTrue(script.startswith("#!/bin/bash"))
        self.assertIn('API_PORT="9876"', script)
        self.assertIn('PUBLIC_HOSTNAME="ec2-1-2-3-4.compute.amazonaws.com"', script)
        self.assertIn("--advertise-port", script)
        self.assertIn('KUBECONFIG_KEY="z1234.yaml"', script)

    def test_current_k3s(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.29.1+k3s1"))
        script = render_user_data(context, public_hostname="host")
        self.assertIn('API_PORT="443"', script)
        self.assertNotIn("--advertise-port", script)
        self.assertIn("--disable metrics-server", script)

    def test_public_hostname_is_required(self):
        context = build_context(make_config(kind="ec2", kubernetes_version="v1.29.1+k3s1"))
        with self.assertRaises(UndefinedError):
            render_user_data(context)


if __name__ == "__main__":
    unittest.main()
