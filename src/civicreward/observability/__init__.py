"""
Observability components for the civic reward core.

Prometheus metrics; logging goes through the standard ``logging`` module.
"""

from .metrics import RewardMetrics, start_metrics_server

__all__ = [
    "RewardMetrics",
    "start_metrics_server",
]
