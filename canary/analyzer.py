"""
Metric Analyzer - One analysis pass over a canary's metrics.

Metrics are queried concurrently, each bounded by a timeout. A provider
that errors or times out fails its metric (fail-closed) without aborting
the pass, so the other metrics are still evaluated and reported.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from canary.models import Canary, CanaryMetric

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one metric check."""
    name: str
    threshold: float
    comparison: str
    value: Optional[float] = None
    passed: bool = False
    error: Optional[str] = None

    def describe(self) -> str:
        if self.error:
            return f"{self.name}: {self.error}"
        op = ">=" if self.comparison == "min" else "<="
        state = "ok" if self.passed else "failed"
        return f"{self.name} {self.value:.2f} (want {op} {self.threshold:g}) {state}"


@dataclass
class AnalysisResult:
    """Outcome of an analysis pass: passed only if every metric passed."""
    passed: bool
    results: List[CheckResult] = field(default_factory=list)

    @property
    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if not r.passed]

    def summary(self) -> str:
        return "; ".join(r.describe() for r in self.results)


class MetricAnalyzer:
    """Runs metric checks for a canary against a MetricProvider."""

    def __init__(self, provider, timeout: float = 5.0):
        self.provider = provider
        self.timeout = timeout

    async def check(self, canary: Canary) -> AnalysisResult:
        metrics = canary.spec.analysis.metrics
        if not metrics:
            return AnalysisResult(passed=False)
        results = await asyncio.gather(*(self._check_metric(canary, m) for m in metrics))
        return AnalysisResult(passed=all(r.passed for r in results), results=list(results))

    async def _check_metric(self, canary: Canary, metric: CanaryMetric) -> CheckResult:
        result = CheckResult(
            name=metric.name,
            threshold=metric.threshold,
            comparison=metric.comparison.value,
        )
        try:
            value = await asyncio.wait_for(
                self.provider.query(
                    metric.name,
                    metric.interval,
                    namespace=canary.namespace,
                    workload=canary.target_name,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            result.error = f"query timed out after {self.timeout}s"
        except Exception as e:
            result.error = str(e) or type(e).__name__
        else:
            try:
                result.value = float(value)
            except (TypeError, ValueError):
                result.error = f"provider returned non-numeric value {value!r}"
            else:
                result.passed = metric.passes(result.value)

        if result.error:
            logger.warning(f"{canary.key} metric {metric.name} check failed: {result.error}")
        return result
