"""
Metrics components.
"""

from ws_bridge.components.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]
