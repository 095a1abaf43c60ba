"""Service mesh traffic objects for Istio and Linkerd (SMI)."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cluster.backend import TRAFFIC_SPLIT, VIRTUAL_SERVICE, ResourceKind


class MeshProvider(Enum):
    """Supported service mesh providers."""
    ISTIO = "istio"
    LINKERD = "linkerd"


@dataclass
class TrafficPolicy:
    """Traffic management policy applied to generated routes."""

    retries: int = 3
    timeout_ms: int = 5000


@dataclass
class ServiceMeshConfig:
    """Service mesh configuration."""

    provider: MeshProvider = MeshProvider.ISTIO
    primary_suffix: str = "-primary"
    canary_suffix: str = "-canary"
    traffic_policy: TrafficPolicy = field(default_factory=TrafficPolicy)

    def primary_host(self, target: str) -> str:
        return f"{target}{self.primary_suffix}"

    def canary_host(self, target: str) -> str:
        return f"{target}{self.canary_suffix}"


class RouteNotFoundError(LookupError):
    """The traffic object has no primary/canary destinations."""


def traffic_kind(config: ServiceMeshConfig) -> ResourceKind:
    """Cluster kind of the traffic object for the configured provider."""
    if config.provider == MeshProvider.ISTIO:
        return VIRTUAL_SERVICE
    elif config.provider == MeshProvider.LINKERD:
        return TRAFFIC_SPLIT
    raise ValueError(f"Unsupported provider: {config.provider}")


def generate_routing(
    config: ServiceMeshConfig,
    target: str,
    namespace: str,
    port: int,
    hosts: list[str] | None = None,
    gateways: list[str] | None = None,
    canary_weight: int = 0,
    owner: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate the traffic object splitting ``target`` between primary and canary."""
    if config.provider == MeshProvider.ISTIO:
        manifest = _generate_virtual_service(config, target, port, hosts or [], gateways or [])
    elif config.provider == MeshProvider.LINKERD:
        manifest = _generate_traffic_split(config, target)
    else:
        raise ValueError(f"Unsupported provider: {config.provider}")

    manifest["metadata"] = {"name": target, "namespace": namespace}
    if owner:
        manifest["metadata"]["ownerReferences"] = [owner]
    apply_weights(config, manifest, target, canary_weight)
    return manifest


def _generate_virtual_service(
    config: ServiceMeshConfig,
    target: str,
    port: int,
    hosts: list[str],
    gateways: list[str],
) -> dict[str, Any]:
    """Generate an Istio VirtualService manifest."""
    spec: dict[str, Any] = {
        "hosts": [target] + [h for h in hosts if h != target],
        "http": [{
            "route": _istio_routes(config, target, port, 0),
            "timeout": f"{config.traffic_policy.timeout_ms}ms",
            "retries": {
                "attempts": config.traffic_policy.retries,
                "retryOn": "5xx,reset,connect-failure",
            },
        }],
    }
    if gateways:
        spec["gateways"] = list(gateways) + ["mesh"]
    return {
        "apiVersion": VIRTUAL_SERVICE.api_version,
        "kind": VIRTUAL_SERVICE.kind,
        "spec": spec,
    }


def _istio_routes(config: ServiceMeshConfig, target: str, port: int, canary_weight: int) -> list:
    return [
        {
            "destination": {"host": config.primary_host(target), "port": {"number": port}},
            "weight": 100 - canary_weight,
        },
        {
            "destination": {"host": config.canary_host(target), "port": {"number": port}},
            "weight": canary_weight,
        },
    ]


def _generate_traffic_split(config: ServiceMeshConfig, target: str) -> dict[str, Any]:
    """Generate an SMI TrafficSplit manifest (Linkerd)."""
    return {
        "apiVersion": TRAFFIC_SPLIT.api_version,
        "kind": TRAFFIC_SPLIT.kind,
        "spec": {
            "service": target,
            "backends": [
                {"service": config.primary_host(target), "weight": 100},
                {"service": config.canary_host(target), "weight": 0},
            ],
        },
    }


def _weighted_entries(config: ServiceMeshConfig, manifest: dict[str, Any], target: str):
    """Return the (primary, canary) entries carrying a ``weight`` key."""
    primary_host = config.primary_host(target)
    canary_host = config.canary_host(target)
    spec = manifest.get("spec", {})

    if config.provider == MeshProvider.ISTIO:
        for http in spec.get("http", []):
            routes = http.get("route", [])
            by_host = {r.get("destination", {}).get("host"): r for r in routes}
            if primary_host in by_host and canary_host in by_host:
                return by_host[primary_host], by_host[canary_host]
    elif config.provider == MeshProvider.LINKERD:
        by_service = {b.get("service"): b for b in spec.get("backends", [])}
        if primary_host in by_service and canary_host in by_service:
            return by_service[primary_host], by_service[canary_host]

    raise RouteNotFoundError(
        f"{manifest.get('kind')} {target} has no routes for {primary_host} and {canary_host}"
    )


def read_weights(config: ServiceMeshConfig, manifest: dict[str, Any], target: str) -> tuple[int, int]:
    """Return ``(primary_weight, canary_weight)`` from a traffic object."""
    primary, canary = _weighted_entries(config, manifest, target)
    return int(primary.get("weight", 0)), int(canary.get("weight", 0))


def apply_weights(
    config: ServiceMeshConfig,
    manifest: dict[str, Any],
    target: str,
    canary_weight: int,
) -> dict[str, Any]:
    """Set both sides of the split in place; primary always gets the complement."""
    if not 0 <= canary_weight <= 100:
        raise ValueError(f"canary weight must be in [0, 100], got {canary_weight}")
    primary, canary = _weighted_entries(config, manifest, target)
    primary["weight"] = 100 - canary_weight
    canary["weight"] = canary_weight
    return manifest


def reset_routes(
    config: ServiceMeshConfig,
    manifest: dict[str, Any],
    target: str,
    port: int,
) -> dict[str, Any]:
    """Rewrite the primary/canary destinations of an existing object (weight 0)."""
    spec = manifest.setdefault("spec", {})
    if config.provider == MeshProvider.ISTIO:
        http = spec.setdefault("http", [{}])
        if not http:
            http.append({})
        http[0]["route"] = _istio_routes(config, target, port, 0)
    elif config.provider == MeshProvider.LINKERD:
        spec["service"] = target
        spec["backends"] = _generate_traffic_split(config, target)["spec"]["backends"]
    return manifest
