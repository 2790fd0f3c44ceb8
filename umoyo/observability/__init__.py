"""
Umoyo Observability Module

Prometheus-style query metrics.
"""

from umoyo.observability.metrics import QueryMetrics

__all__ = ["QueryMetrics"]
