"""Cluster object access for the canary controller."""

from cluster.accessor import ResourceAccessor
from cluster.backend import (
    CANARY,
    DEPLOYMENT,
    EVENT,
    HORIZONTAL_POD_AUTOSCALER,
    TRAFFIC_SPLIT,
    VIRTUAL_SERVICE,
    ClusterBackend,
    KubernetesBackend,
    ResourceKind,
)
from cluster.exceptions import (
    AlreadyExistsError,
    ApiError,
    ApiTimeoutError,
    ApiUnavailableError,
    ClusterError,
    ConflictError,
    NotFoundError,
)
from cluster.memory import InMemoryBackend
from cluster.workloads import (
    DeploymentWorkload,
    HorizontalAutoscaler,
    ReadinessCriteria,
    ScalableWorkload,
)

__all__ = [
    "ResourceAccessor",
    "ClusterBackend",
    "KubernetesBackend",
    "InMemoryBackend",
    "ResourceKind",
    "CANARY",
    "DEPLOYMENT",
    "EVENT",
    "HORIZONTAL_POD_AUTOSCALER",
    "TRAFFIC_SPLIT",
    "VIRTUAL_SERVICE",
    "ClusterError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "ApiTimeoutError",
    "ApiError",
    "ApiUnavailableError",
    "ScalableWorkload",
    "DeploymentWorkload",
    "HorizontalAutoscaler",
    "ReadinessCriteria",
]
