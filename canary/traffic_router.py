"""
Traffic Router - Split traffic between primary and canary.

Weights live on the mesh traffic object (Istio VirtualService or SMI
TrafficSplit). Both sides are written in one object update so primary and
canary always sum to 100.
"""

import logging
from typing import Any, Dict

from canary.errors import InvalidWeightError, RoutingError
from canary.models import Canary
from cluster.accessor import ResourceAccessor
from servicemesh.mesh_config import (
    RouteNotFoundError,
    ServiceMeshConfig,
    apply_weights,
    generate_routing,
    read_weights,
    reset_routes,
    traffic_kind,
)

logger = logging.getLogger(__name__)


class TrafficRouter:
    """
    Reads and writes the canary weight of a canary's traffic object.
    """

    def __init__(self, accessor: ResourceAccessor, mesh: ServiceMeshConfig):
        self.accessor = accessor
        self.mesh = mesh
        self.kind = traffic_kind(mesh)

    async def ensure_routes(self, canary: Canary) -> None:
        """Create the traffic object at weight 0, or repair missing routes."""
        existing = await self.accessor.get_or_none(self.kind, canary.namespace, canary.target_name)
        if existing is None:
            manifest = generate_routing(
                self.mesh,
                canary.target_name,
                canary.namespace,
                canary.spec.service.port,
                hosts=canary.spec.service.hosts,
                gateways=canary.spec.service.gateways,
                canary_weight=0,
                owner=canary.owner_reference() if canary.uid else None,
            )
            await self.accessor.create(manifest)
            logger.info(f"Created {self.kind.kind} {canary.namespace}/{canary.target_name}")
            return

        try:
            read_weights(self.mesh, existing, canary.target_name)
        except RouteNotFoundError:
            await self.accessor.update(
                self.kind, canary.namespace, canary.target_name,
                lambda obj: reset_routes(self.mesh, obj, canary.target_name, canary.spec.service.port),
            )
            logger.warning(f"Repaired routes of {self.kind.kind} {canary.namespace}/{canary.target_name}")

    async def get_weights(self, canary: Canary) -> Dict[str, Any]:
        """Get current weights for a canary."""
        obj = await self.accessor.get(self.kind, canary.namespace, canary.target_name)
        try:
            primary, canary_weight = read_weights(self.mesh, obj, canary.target_name)
        except RouteNotFoundError as exc:
            raise RoutingError(str(exc)) from exc
        return {"primary_weight": primary, "canary_weight": canary_weight}

    async def current_weight(self, canary: Canary) -> int:
        weights = await self.get_weights(canary)
        return weights["canary_weight"]

    async def set_weight(self, canary: Canary, percent: int) -> None:
        """Route ``percent`` to the canary and ``100 - percent`` to the primary."""
        max_weight = canary.spec.analysis.max_weight
        if not 0 <= percent <= max_weight:
            raise InvalidWeightError(
                f"{canary.key}: weight {percent} outside [0, {max_weight}]"
            )

        def mutate(obj: Dict[str, Any]) -> None:
            try:
                apply_weights(self.mesh, obj, canary.target_name, percent)
            except RouteNotFoundError:
                reset_routes(self.mesh, obj, canary.target_name, canary.spec.service.port)
                apply_weights(self.mesh, obj, canary.target_name, percent)

        await self.accessor.update(self.kind, canary.namespace, canary.target_name, mutate)
        logger.debug(f"{canary.key} weights: primary={100 - percent} canary={percent}")

    def next_weight(self, canary: Canary, current: int) -> int:
        """Next step of the rollout, capped at maxWeight."""
        analysis = canary.spec.analysis
        return min(current + analysis.step_weight, analysis.max_weight)
