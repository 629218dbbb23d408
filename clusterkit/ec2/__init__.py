"""
EC2 Module
Single node k3s cluster
"""

from .functions import create_k3s_instance

__all__ = ["create_k3s_instance"]
