"""
Observability Module
Metrics, logs and Datadog charts
"""

from .functions import (
    prometheus_storage,
    setup_observability,
)

__all__ = [
    "prometheus_storage",
    "setup_observability",
]
