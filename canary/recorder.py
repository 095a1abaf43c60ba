"""
Status Recorder - Conditions, events and metrics for a canary.

Conditions are written onto the in-flight status (committed by the rollout
with the rest of the tick); events are queued and only emitted once the
status write succeeded. Event delivery is best effort.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from canary.analyzer import AnalysisResult
from canary.models import Canary, CanaryCondition, CanaryPhase, CanaryStatus, utc_now
from cluster.accessor import ResourceAccessor
from cluster.backend import EVENT
from cluster.exceptions import ClusterError
from monitoring.prometheus_metrics import MetricsRegistry

logger = logging.getLogger(__name__)

PROMOTED = "Promoted"

# Promoted condition status per phase.
_CONDITION_STATUS = {
    CanaryPhase.SUCCEEDED: "True",
    CanaryPhase.FAILED: "False",
}

_STATUS_GAUGE = {
    CanaryPhase.SUCCEEDED: 1,
    CanaryPhase.FAILED: 2,
}


@dataclass
class PendingEvent:
    event_type: str  # Normal or Warning
    reason: str
    message: str


class StatusRecorder:
    """Records phase transitions and failures on a canary."""

    def __init__(
        self,
        accessor: Optional[ResourceAccessor] = None,
        metrics: Optional[MetricsRegistry] = None,
        component: str = "canary-controller",
    ):
        self.accessor = accessor
        self.metrics = metrics
        self.component = component

    def set_phase(
        self,
        canary: Canary,
        status: CanaryStatus,
        phase: CanaryPhase,
        message: str,
        events: List[PendingEvent],
        warning: bool = False,
    ) -> None:
        """Move ``status`` to ``phase`` and queue an event for the transition."""
        if status.phase != phase:
            logger.info(
                f"{canary.key} {status.phase.value} -> {phase.value}: {message}",
                extra={"canary": canary.key, "phase": phase.value},
            )
            status.phase = phase
            status.last_transition_time = utc_now()
        self.set_condition(status, phase.value, message)
        events.append(PendingEvent("Warning" if warning else "Normal", phase.value, message))

    def set_condition(self, status: CanaryStatus, reason: str, message: str) -> None:
        """Update the Promoted condition; timestamps move only when something changed."""
        condition_status = _CONDITION_STATUS.get(status.phase, "Unknown")
        current = status.get_condition(PROMOTED)
        now = utc_now()
        if current is None:
            status.conditions.append(CanaryCondition(
                type=PROMOTED,
                status=condition_status,
                reason=reason,
                message=message,
                last_update_time=now,
                last_transition_time=now,
            ))
            return
        if (current.status, current.reason, current.message) == (condition_status, reason, message):
            return
        if current.status != condition_status:
            current.last_transition_time = now
        current.status = condition_status
        current.reason = reason
        current.message = message
        current.last_update_time = now

    async def flush(self, canary: Canary, events: List[PendingEvent]) -> None:
        """Emit queued events as core/v1 Events."""
        for event in events:
            if event.event_type == "Warning":
                logger.warning(f"{canary.key} {event.reason}: {event.message}", extra={"canary": canary.key})
            if self.accessor is None:
                continue
            try:
                await self.accessor.create(self._event_manifest(canary, event))
            except ClusterError as e:
                logger.error(f"Failed to record event for {canary.key}: {e}", extra={"canary": canary.key})

    def _event_manifest(self, canary: Canary, event: PendingEvent) -> dict:
        now = utc_now()
        return {
            "apiVersion": EVENT.api_version,
            "kind": EVENT.kind,
            "metadata": {"generateName": f"{canary.name}.", "namespace": canary.namespace},
            "involvedObject": {
                "apiVersion": canary.api_version,
                "kind": "Canary",
                "name": canary.name,
                "namespace": canary.namespace,
                "uid": canary.uid,
            },
            "reason": event.reason,
            "message": event.message,
            "type": event.event_type,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }

    def record_status(self, canary: Canary, status: CanaryStatus) -> None:
        if self.metrics is None:
            return
        labels = {"name": canary.name, "namespace": canary.namespace}
        self.metrics.set_gauge("canary_weight", status.canary_weight, **labels)
        self.metrics.set_gauge("canary_status", _STATUS_GAUGE.get(status.phase, 0), **labels)

    def record_analysis(self, canary: Canary, analysis: AnalysisResult) -> None:
        if self.metrics is None:
            return
        for result in analysis.results:
            self.metrics.count(
                "canary_analysis_checks_total",
                name=canary.name,
                namespace=canary.namespace,
                metric=result.name,
                result="pass" if result.passed else "fail",
            )

    def record_error(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.count("canary_reconcile_errors_total", reason=reason)
