"""
Prometheus Metrics Module for the Canary Controller.

Exposes the controller's own state for scraping: current canary weight,
rollout status, analysis check outcomes and reconciliation latency.

Usage:
    registry = MetricsRegistry()

    with registry.timer("canary_reconcile_seconds"):
        await manager.reconcile(namespace, name)

    registry.set_gauge("canary_weight", 20, name="podinfo", namespace="test")
"""

import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    start_http_server,
)

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of Prometheus metrics."""
    COUNTER = "counter"
    HISTOGRAM = "histogram"
    GAUGE = "gauge"


@dataclass
class MetricDefinition:
    """Definition for a Prometheus metric."""
    name: str
    description: str
    metric_type: MetricType
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None  # For histograms


# =============================================================================
# METRIC DEFINITIONS
# =============================================================================

CONTROLLER_METRICS = [
    MetricDefinition(
        name="canary_weight",
        description="Percentage of traffic routed to the canary",
        metric_type=MetricType.GAUGE,
        labels=["name", "namespace"]
    ),
    MetricDefinition(
        name="canary_status",
        description="Rollout status: 0 running, 1 succeeded, 2 failed",
        metric_type=MetricType.GAUGE,
        labels=["name", "namespace"]
    ),
    MetricDefinition(
        name="canary_analysis_checks_total",
        description="Metric analysis checks by outcome",
        metric_type=MetricType.COUNTER,
        labels=["name", "namespace", "metric", "result"]
    ),
    MetricDefinition(
        name="canary_reconcile_seconds",
        description="Duration of one reconciliation pass",
        metric_type=MetricType.HISTOGRAM,
        labels=[],
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
    ),
    MetricDefinition(
        name="canary_reconcile_errors_total",
        description="Reconciliation passes that ended with an error",
        metric_type=MetricType.COUNTER,
        labels=["reason"]
    ),
]


# =============================================================================
# METRICS REGISTRY
# =============================================================================

class MetricsRegistry:
    """
    Registry for the controller's Prometheus metrics.

    Each instance owns its CollectorRegistry so several controllers (or
    tests) in one process do not collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        for metric_def in CONTROLLER_METRICS:
            self._create_metric(metric_def)

    def _create_metric(self, definition: MetricDefinition):
        """Create a Prometheus metric from definition."""
        metric_class = {
            MetricType.COUNTER: Counter,
            MetricType.HISTOGRAM: Histogram,
            MetricType.GAUGE: Gauge,
        }[definition.metric_type]

        kwargs = {
            'name': definition.name,
            'documentation': definition.description,
            'labelnames': definition.labels,
            'registry': self._registry,
        }

        if definition.buckets and definition.metric_type == MetricType.HISTOGRAM:
            kwargs['buckets'] = definition.buckets

        self._metrics[definition.name] = metric_class(**kwargs)

    def get(self, name: str) -> Any:
        """Get a metric by name."""
        if name not in self._metrics:
            raise KeyError(f"Metric '{name}' not found")
        return self._metrics[name]

    @contextmanager
    def timer(self, histogram_name: str, **labels):
        """Context manager for timing operations."""
        histogram = self.get(histogram_name)
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            if labels:
                histogram = histogram.labels(**labels)
            histogram.observe(duration)

    def count(self, counter_name: str, value: int = 1, **labels):
        """Increment a counter."""
        self.get(counter_name).labels(**labels).inc(value)

    def set_gauge(self, gauge_name: str, value: float, **labels):
        """Set a gauge value."""
        self.get(gauge_name).labels(**labels).set(value)

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Current value of a sample, or None when it was never recorded."""
        return self._registry.get_sample_value(metric_name, labels)


def start_metrics_server(port: int = 8080, registry: Optional[MetricsRegistry] = None):
    """
    Start a standalone HTTP server for Prometheus metrics.

    Args:
        port: Port to listen on
        registry: MetricsRegistry instance (creates one if None)
    """
    if registry is None:
        registry = MetricsRegistry()

    start_http_server(port, registry=registry._registry)
    logger.info(f"Metrics server started on port {port}")
    return registry
