"""Service mesh traffic splitting with Istio/Linkerd."""

from servicemesh.mesh_config import (
    ServiceMeshConfig,
    MeshProvider,
    TrafficPolicy,
    RouteNotFoundError,
    apply_weights,
    generate_routing,
    read_weights,
    reset_routes,
    traffic_kind,
)

__all__ = [
    "ServiceMeshConfig",
    "MeshProvider",
    "TrafficPolicy",
    "RouteNotFoundError",
    "apply_weights",
    "generate_routing",
    "read_weights",
    "reset_routes",
    "traffic_kind",
]
