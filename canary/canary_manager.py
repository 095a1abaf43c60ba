"""
Canary Manager - Progressive rollout state machine.

``reconcile`` is invoked once per canary per tick. It re-reads the canary,
derives everything from the persisted status, performs at most one step of
the rollout and commits the resulting status in a single write:

    Initialized -> Progressing -> Promoting -> Finalizing -> Succeeded
                        |
                        +-> Failed (rollback)

Succeeded and Failed re-arm to Initialized when the target's pod template
changes. A change during Progressing, Promoting or Finalizing restarts the
rollout, so an unvalidated revision is never promoted.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from canary.analyzer import MetricAnalyzer
from canary.config import ControllerConfig
from canary.deployer import PrimarySynchronizer
from canary.errors import CanaryError
from canary.models import Canary, CanaryPhase, CanaryStatus
from canary.recorder import PendingEvent, StatusRecorder
from canary.traffic_router import TrafficRouter
from cluster.accessor import ResourceAccessor
from cluster.backend import CANARY
from cluster.exceptions import ClusterError, ConflictError
from monitoring.prometheus_metrics import MetricsRegistry

logger = logging.getLogger(__name__)


@dataclass
class RolloutTick:
    """Working state of one reconciliation pass."""
    canary: Canary
    status: CanaryStatus
    events: List[PendingEvent] = field(default_factory=list)


class StatusChangedError(ConflictError):
    """Another writer committed a status for this canary during the tick."""


class CanaryManager:
    """
    Drives canaries through their rollout.

    Every tick runs the synchronizer first, then the phase's traffic and
    analysis work. Errors from any component end the tick with a status
    condition; the next trigger starts from the persisted status again.
    """

    def __init__(
        self,
        accessor: ResourceAccessor,
        synchronizer: PrimarySynchronizer,
        router: TrafficRouter,
        analyzer: MetricAnalyzer,
        recorder: StatusRecorder,
        config: Optional[ControllerConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.accessor = accessor
        self.synchronizer = synchronizer
        self.router = router
        self.analyzer = analyzer
        self.recorder = recorder
        self.config = config or ControllerConfig()
        self.metrics = metrics

    @classmethod
    def from_config(
        cls,
        accessor: ResourceAccessor,
        provider,
        config: ControllerConfig,
        metrics: Optional[MetricsRegistry] = None,
    ) -> "CanaryManager":
        """Wire all components from a ControllerConfig."""
        return cls(
            accessor=accessor,
            synchronizer=PrimarySynchronizer(
                accessor, selector_label=config.selector_label, readiness=config.readiness
            ),
            router=TrafficRouter(accessor, config.mesh()),
            analyzer=MetricAnalyzer(provider, timeout=config.metric_timeout),
            recorder=StatusRecorder(accessor, metrics),
            config=config,
            metrics=metrics,
        )

    async def reconcile(self, namespace: str, name: str) -> Optional[CanaryStatus]:
        """
        Run one rollout tick for a canary.

        Returns:
            The committed status, or None when the canary no longer exists
        """
        if self.metrics is not None:
            with self.metrics.timer("canary_reconcile_seconds"):
                return await self._reconcile(namespace, name)
        return await self._reconcile(namespace, name)

    async def _reconcile(self, namespace: str, name: str) -> Optional[CanaryStatus]:
        obj = await self.accessor.get_or_none(CANARY, namespace, name)
        if obj is None:
            logger.debug(f"Canary {namespace}/{name} is gone, nothing to do")
            return None

        canary = Canary.from_dict(obj, primary_suffix=self.config.primary_suffix)
        tick = RolloutTick(canary=canary, status=copy.deepcopy(canary.status))
        try:
            canary.validate()
            await self._advance(tick)
        except (CanaryError, ClusterError) as exc:
            # Partial progress of this tick is dropped; only the error is recorded.
            tick = RolloutTick(canary=canary, status=copy.deepcopy(canary.status))
            self._record_error(tick, exc)

        try:
            await self._commit(tick)
        except ClusterError as exc:
            logger.warning(f"Status of {canary.key} not committed: {exc}", extra={"canary": canary.key})
            self.recorder.record_error(exc.reason)
            return canary.status

        await self.recorder.flush(canary, tick.events)
        self.recorder.record_status(canary, tick.status)
        return tick.status

    async def _advance(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status

        revision = await self.synchronizer.target_fingerprint(canary)
        if (
            status.phase != CanaryPhase.INITIALIZED
            and status.last_applied_spec
            and revision != status.last_applied_spec
        ):
            self._restart(tick)

        await self.synchronizer.sync(canary, propagate=status.phase == CanaryPhase.PROMOTING)

        if status.phase == CanaryPhase.INITIALIZED:
            await self._initialize(tick, revision)
        elif status.phase == CanaryPhase.PROGRESSING:
            await self._progress(tick)
        elif status.phase == CanaryPhase.PROMOTING:
            await self._promote(tick)
        elif status.phase == CanaryPhase.FINALIZING:
            await self._finalize(tick)

    def _restart(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status
        if status.phase.terminal:
            message = f"New revision detected! Starting canary analysis for {canary.key}"
        else:
            message = (
                f"Target changed while {status.phase.value} at weight {status.canary_weight}, "
                f"restarting analysis for {canary.key}"
            )
        status.canary_weight = 0
        status.iterations = 0
        status.failed_checks = 0
        self.recorder.set_phase(canary, status, CanaryPhase.INITIALIZED, message, tick.events)

    async def _initialize(self, tick: RolloutTick, revision: str) -> None:
        canary, status = tick.canary, tick.status
        status.last_applied_spec = revision
        status.iterations = 0
        status.failed_checks = 0

        await self.router.ensure_routes(canary)
        await self.router.set_weight(canary, 0)
        status.canary_weight = 0

        if self.config.retire_canary:
            await self.synchronizer.restore_target(canary)

        if not await self.synchronizer.is_primary_ready(canary):
            self.recorder.set_condition(
                status, CanaryPhase.INITIALIZED.value,
                f"Waiting for {canary.primary_name} rollout to finish",
            )
            return

        self.recorder.set_phase(
            canary, status, CanaryPhase.PROGRESSING,
            f"Initialization done! Starting canary analysis for {canary.key}",
            tick.events,
        )

    async def _progress(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status
        analysis = canary.spec.analysis

        if not await self.synchronizer.is_primary_ready(canary):
            self.recorder.set_condition(
                status, CanaryPhase.PROGRESSING.value,
                f"Halt advancement, {canary.primary_name} is not ready",
            )
            return
        if not await self.synchronizer.is_target_ready(canary):
            self.recorder.set_condition(
                status, CanaryPhase.PROGRESSING.value,
                f"Halt advancement, waiting for {canary.target_name} rollout to finish",
            )
            return

        result = await self.analyzer.check(canary)
        self.recorder.record_analysis(canary, result)

        if not result.passed:
            status.failed_checks += 1
            message = (
                f"Halt {canary.key} advancement ({status.failed_checks}/{analysis.threshold}): "
                f"{result.summary()}"
            )
            tick.events.append(PendingEvent("Warning", "Halted", message))
            if status.failed_checks >= analysis.threshold:
                await self._rollback(tick)
            else:
                self.recorder.set_condition(status, CanaryPhase.PROGRESSING.value, message)
            return

        status.failed_checks = 0
        status.iterations += 1

        if status.canary_weight >= analysis.max_weight:
            self.recorder.set_phase(
                canary, status, CanaryPhase.PROMOTING,
                f"Canary analysis passed at weight {status.canary_weight}, "
                f"copying {canary.target_name} template to {canary.primary_name}",
                tick.events,
            )
            return

        weight = self.router.next_weight(canary, status.canary_weight)
        await self.router.set_weight(canary, weight)
        status.canary_weight = weight
        message = f"Advance {canary.key} canary weight {weight}"
        tick.events.append(PendingEvent("Normal", "Advanced", message))
        self.recorder.set_condition(status, CanaryPhase.PROGRESSING.value, message)

    async def _rollback(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status
        await self.router.set_weight(canary, 0)
        status.canary_weight = 0
        if self.config.retire_canary:
            await self.synchronizer.scale_target(canary, 0)
        self.recorder.set_phase(
            canary, status, CanaryPhase.FAILED,
            f"Canary failed! Rolled back {canary.key} after {status.failed_checks} failed checks",
            tick.events,
            warning=True,
        )

    async def _promote(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status

        if not await self.synchronizer.is_primary_ready(canary):
            self.recorder.set_condition(
                status, CanaryPhase.PROMOTING.value,
                f"Waiting for {canary.primary_name} to roll out the promoted template",
            )
            return

        step = self.config.promotion_step_weight or status.canary_weight
        weight = max(0, status.canary_weight - step)
        await self.router.set_weight(canary, weight)
        status.canary_weight = weight

        if weight > 0:
            self.recorder.set_condition(
                status, CanaryPhase.PROMOTING.value,
                f"Shifting traffic back to {canary.primary_name}, canary weight {weight}",
            )
            return

        self.recorder.set_phase(
            canary, status, CanaryPhase.FINALIZING,
            f"{canary.primary_name} is serving all traffic",
            tick.events,
        )

    async def _finalize(self, tick: RolloutTick) -> None:
        canary, status = tick.canary, tick.status
        await self.router.set_weight(canary, 0)
        status.canary_weight = 0
        status.failed_checks = 0
        status.iterations = 0
        if self.config.retire_canary:
            await self.synchronizer.scale_target(canary, 0)
        self.recorder.set_phase(
            canary, status, CanaryPhase.SUCCEEDED,
            f"Promotion completed! {canary.key} promoted to {canary.primary_name}",
            tick.events,
        )

    def _record_error(self, tick: RolloutTick, exc: Exception) -> None:
        reason = getattr(exc, "reason", type(exc).__name__)
        logger.warning(
            f"Reconcile {tick.canary.key} failed ({reason}): {exc}",
            extra={"canary": tick.canary.key, "phase": tick.status.phase.value},
        )
        self.recorder.set_condition(tick.status, reason, str(exc))
        tick.events.append(PendingEvent("Warning", reason, str(exc)))
        self.recorder.record_error(reason)

    async def _commit(self, tick: RolloutTick) -> None:
        """Write the tick's status; a status changed by another writer is never overwritten."""
        canary = tick.canary
        if tick.status == canary.status:
            return
        observed = canary.status
        desired = tick.status.to_dict()

        def mutate(obj):
            if CanaryStatus.from_dict(obj.get("status")) != observed:
                raise StatusChangedError(
                    f"Status of {canary.key} changed concurrently",
                    kind=CANARY.kind, namespace=canary.namespace, name=canary.name,
                )
            obj["status"] = desired

        await self.accessor.update_status(CANARY, canary.namespace, canary.name, mutate)
