"""
Metric providers for canary analysis.

A provider turns ``(metric name, window)`` for one workload into a single
float. The Prometheus provider ships queries for the Istio request success
rate and P99 request duration; other names need a query template.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from string import Template
from typing import Any, Dict, Optional

import aiohttp

from canary.errors import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)


# Templates are string.Template so PromQL braces need no escaping.
DEFAULT_QUERIES: Dict[str, str] = {
    # Percentage of non-5xx responses.
    "istio_requests_total": (
        'sum(rate(istio_requests_total{reporter="destination",'
        'destination_workload_namespace=~"$namespace",'
        'destination_workload=~"$workload",'
        'response_code!~"5.*"}[$window])) '
        '/ '
        'sum(rate(istio_requests_total{reporter="destination",'
        'destination_workload_namespace=~"$namespace",'
        'destination_workload=~"$workload"}[$window])) '
        '* 100'
    ),
    # P99 latency in milliseconds.
    "istio_request_duration_seconds_bucket": (
        'histogram_quantile(0.99, sum(rate(istio_request_duration_seconds_bucket{'
        'reporter="destination",'
        'destination_workload=~"$workload",'
        'destination_workload_namespace=~"$namespace"}[$window])) by (le)) '
        '* 1000'
    ),
}


class MetricProvider(ABC):
    """Pluggable metric backend."""

    @abstractmethod
    async def query(self, metric_name: str, window: str, *, namespace: str, workload: str) -> float:
        """Return the metric's current value or raise ProviderError."""


class PrometheusProvider(MetricProvider):
    """Instant queries against the Prometheus HTTP API."""

    def __init__(
        self,
        url: str,
        query_templates: Optional[Dict[str, str]] = None,
        timeout: float = 5.0,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.query_templates = dict(DEFAULT_QUERIES)
        self.query_templates.update(query_templates or {})

    def build_query(self, metric_name: str, window: str, namespace: str, workload: str) -> str:
        if metric_name not in self.query_templates:
            raise ProviderError(f"No query defined for metric {metric_name!r}")
        return Template(self.query_templates[metric_name]).substitute(
            namespace=namespace, workload=workload, window=window
        )

    async def query(self, metric_name: str, window: str, *, namespace: str, workload: str) -> float:
        promql = self.build_query(metric_name, window, namespace, workload)
        payload = await self._fetch(promql)
        return parse_vector(payload, metric_name)

    async def _fetch(self, promql: str) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.url}/api/v1/query", params={"query": promql}) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise ProviderError(
                            f"Prometheus returned HTTP {response.status}: {body[:200]}"
                        )
                    return await response.json()
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(f"Prometheus query timed out after {self.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise ProviderError(f"Prometheus request failed: {exc}") from exc


def parse_vector(payload: Dict[str, Any], metric_name: str = "") -> float:
    """Extract the first sample of an instant-vector response."""
    if payload.get("status") != "success":
        raise ProviderError(f"{metric_name}: query failed: {payload.get('error', 'unknown error')}")
    result = payload.get("data", {}).get("result", [])
    if not result:
        raise ProviderError(f"{metric_name}: no values found")
    try:
        value = float(result[0]["value"][1])
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ProviderError(f"{metric_name}: malformed sample {result[0]!r}") from exc
    if math.isnan(value):
        raise ProviderError(f"{metric_name}: no values found (NaN)")
    return value
