"""
Monitoring for the canary controller.

Components:
- MetricsRegistry: the controller's own Prometheus metrics
- MetricProvider / PrometheusProvider: metric backends queried during analysis
"""

from monitoring.prometheus_metrics import (
    MetricsRegistry,
    MetricType,
    MetricDefinition,
    start_metrics_server,
)

from monitoring.providers import (
    MetricProvider,
    PrometheusProvider,
    parse_vector,
)

__all__ = [
    "MetricsRegistry",
    "MetricType",
    "MetricDefinition",
    "start_metrics_server",
    "MetricProvider",
    "PrometheusProvider",
    "parse_vector",
]
