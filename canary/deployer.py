"""
Primary Synchronizer - Keeps ``<target>-primary`` in step with the target.

The primary copies the target's pod template but owns its scale: replica
counts on an existing primary (set by its autoscaler or by hand) are never
overwritten. Every step reads before it writes and is safe to repeat; a
failure part way leaves earlier steps applied for the next pass to build on.
"""

import logging
from typing import Any, Dict, Optional

from canary.errors import InvalidSpecError, TargetNotFoundError
from canary.models import Canary, fingerprint
from cluster.accessor import ResourceAccessor
from cluster.backend import HORIZONTAL_POD_AUTOSCALER
from cluster.exceptions import AlreadyExistsError, NotFoundError
from cluster.workloads import (
    HorizontalAutoscaler,
    ReadinessCriteria,
    ScalableWorkload,
    workload_class,
)

logger = logging.getLogger(__name__)


class PrimarySynchronizer:
    """Creates and updates the primary workload and autoscaler of a canary."""

    def __init__(
        self,
        accessor: ResourceAccessor,
        selector_label: str = "app",
        readiness: Optional[ReadinessCriteria] = None,
    ):
        self.accessor = accessor
        self.selector_label = selector_label
        self.readiness = readiness or ReadinessCriteria()

    def _workload_class(self, canary: Canary):
        try:
            return workload_class(canary.spec.target_ref.kind)
        except KeyError as exc:
            raise InvalidSpecError(f"{canary.key}: {exc.args[0]}") from exc

    async def get_target(self, canary: Canary) -> ScalableWorkload:
        cls = self._workload_class(canary)
        obj = await self.accessor.get_or_none(cls.kind, canary.namespace, canary.target_name)
        if obj is None:
            raise TargetNotFoundError(
                f"{canary.spec.target_ref.kind} {canary.namespace}/{canary.target_name} not found",
                kind=canary.spec.target_ref.kind,
                namespace=canary.namespace,
                name=canary.target_name,
            )
        return cls(obj)

    async def get_primary(self, canary: Canary) -> Optional[ScalableWorkload]:
        cls = self._workload_class(canary)
        obj = await self.accessor.get_or_none(cls.kind, canary.namespace, canary.primary_name)
        return cls(obj) if obj is not None else None

    async def target_fingerprint(self, canary: Canary) -> str:
        target = await self.get_target(canary)
        return fingerprint(target.get_pod_template())

    async def sync(self, canary: Canary, propagate: bool = True) -> None:
        """
        Converge the primary workload (and autoscaler) for a canary.

        Args:
            canary: The canary resource
            propagate: Copy the target's pod template onto an existing
                primary. A missing primary is always created from the target.
        """
        target = await self.get_target(canary)
        await self._sync_workload(canary, target, propagate)
        if canary.spec.autoscaler_ref is not None:
            await self._sync_autoscaler(canary, target, propagate)

    async def _sync_workload(self, canary: Canary, target: ScalableWorkload, propagate: bool) -> None:
        cls = type(target)
        primary_name = canary.primary_name

        existing = await self.accessor.get_or_none(cls.kind, canary.namespace, primary_name)
        if existing is None:
            try:
                await self.accessor.create(self._new_primary(canary, target))
                logger.info(f"Created {cls.kind.kind} {canary.namespace}/{primary_name}")
                return
            except AlreadyExistsError:
                logger.debug(f"{primary_name} created concurrently, updating instead")

        if not propagate:
            return

        template = self._primary_template(canary, target)

        def mutate(obj: Dict[str, Any]) -> None:
            cls(obj).set_pod_template(template)

        before = existing["metadata"].get("resourceVersion") if existing else None
        updated = await self.accessor.update(cls.kind, canary.namespace, primary_name, mutate)
        if updated["metadata"].get("resourceVersion") != before:
            logger.info(f"Updated {cls.kind.kind} {canary.namespace}/{primary_name} pod template")

    def _primary_labels(self, canary: Canary, labels: Dict[str, str]) -> Dict[str, str]:
        rewritten = dict(labels)
        rewritten[self.selector_label] = canary.primary_name
        return rewritten

    def _primary_template(self, canary: Canary, target: ScalableWorkload) -> Dict[str, Any]:
        template = target.get_pod_template()
        metadata = template.setdefault("metadata", {})
        metadata["labels"] = self._primary_labels(canary, metadata.get("labels", {}))
        return template

    def _new_primary(self, canary: Canary, target: ScalableWorkload) -> Dict[str, Any]:
        source_metadata = target.obj.get("metadata", {})
        metadata: Dict[str, Any] = {
            "name": canary.primary_name,
            "namespace": canary.namespace,
            "labels": self._primary_labels(canary, source_metadata.get("labels", {})),
        }
        if canary.uid:
            metadata["ownerReferences"] = [canary.owner_reference()]

        source_spec = target.obj.get("spec", {})
        spec = {
            k: v for k, v in source_spec.items()
            if k not in ("replicas", "selector", "template", "paused")
        }
        manifest = {
            "apiVersion": target.kind.api_version,
            "kind": target.kind.kind,
            "metadata": metadata,
            "spec": spec,
        }
        primary = type(target)(manifest)
        replicas = target.get_replicas()
        primary.set_replicas(replicas if replicas else 1)
        primary.set_selector_labels(self._primary_labels(canary, target.selector_labels()))
        primary.set_pod_template(self._primary_template(canary, target))
        return manifest

    async def _sync_autoscaler(self, canary: Canary, target: ScalableWorkload, propagate: bool) -> None:
        ref = canary.spec.autoscaler_ref
        name = canary.primary_autoscaler_name
        source = await self.accessor.get_or_none(HORIZONTAL_POD_AUTOSCALER, canary.namespace, ref.name)
        if source is None:
            raise NotFoundError(
                f"HorizontalPodAutoscaler {canary.namespace}/{ref.name} not found",
                kind=HORIZONTAL_POD_AUTOSCALER.kind,
                namespace=canary.namespace,
                name=ref.name,
            )
        policy = HorizontalAutoscaler(source).get_policy()
        target_ref = (canary.primary_name, target.kind.kind, target.kind.api_version)

        existing = await self.accessor.get_or_none(HORIZONTAL_POD_AUTOSCALER, canary.namespace, name)
        if existing is None:
            metadata: Dict[str, Any] = {"name": name, "namespace": canary.namespace}
            if canary.uid:
                metadata["ownerReferences"] = [canary.owner_reference()]
            manifest = {
                "apiVersion": HORIZONTAL_POD_AUTOSCALER.api_version,
                "kind": HORIZONTAL_POD_AUTOSCALER.kind,
                "metadata": metadata,
                "spec": {},
            }
            hpa = HorizontalAutoscaler(manifest)
            hpa.set_policy(policy)
            hpa.set_scale_target_ref(*target_ref)
            try:
                await self.accessor.create(manifest)
                logger.info(f"Created HorizontalPodAutoscaler {canary.namespace}/{name}")
                return
            except AlreadyExistsError:
                logger.debug(f"{name} created concurrently, updating instead")

        def mutate(obj: Dict[str, Any]) -> None:
            hpa = HorizontalAutoscaler(obj)
            if propagate:
                hpa.set_policy(policy)
            hpa.set_scale_target_ref(*target_ref)

        await self.accessor.update(HORIZONTAL_POD_AUTOSCALER, canary.namespace, name, mutate)

    async def is_primary_ready(self, canary: Canary, criteria: Optional[ReadinessCriteria] = None) -> bool:
        primary = await self.get_primary(canary)
        if primary is None:
            return False
        return primary.is_ready(criteria or self.readiness)

    async def is_target_ready(self, canary: Canary) -> bool:
        target = await self.get_target(canary)
        if target.get_replicas() == 0:
            return False
        return target.is_ready(self.readiness)

    async def scale_target(self, canary: Canary, replicas: int) -> None:
        """Scale the canary workload; used to retire canary pods between rollouts."""
        cls = self._workload_class(canary)

        def mutate(obj: Dict[str, Any]) -> None:
            cls(obj).set_replicas(replicas)

        try:
            await self.accessor.update(cls.kind, canary.namespace, canary.target_name, mutate)
        except NotFoundError as exc:
            raise TargetNotFoundError(str(exc), kind=exc.kind, namespace=exc.namespace, name=exc.name) from exc

    async def restore_target(self, canary: Canary) -> bool:
        """Scale a retired (zero replica) target back up to the primary's size."""
        target = await self.get_target(canary)
        if target.get_replicas() != 0:
            return False
        primary = await self.get_primary(canary)
        replicas = (primary.get_replicas() if primary else None) or 1
        await self.scale_target(canary, replicas)
        logger.info(f"Scaled {canary.namespace}/{canary.target_name} up to {replicas} for a new rollout")
        return True
