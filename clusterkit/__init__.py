"""
clusterkit - Kubernetes clusters on AWS (EKS, k3s on EC2) and GCP (GKE)
with their network, databases, buckets, DNS and observability charts
"""

__version__ = "0.1.0"
