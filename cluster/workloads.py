"""
Workload capabilities over raw manifests.

A "scalable workload" exposes its pod template, replica count and
selector; one variant per concrete kind is selected from the
``targetRef.kind`` of a canary. The horizontal autoscaler wrapper exposes
the scaling policy and the scale target reference.
"""

import copy
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from cluster.backend import DEPLOYMENT, HORIZONTAL_POD_AUTOSCALER, ResourceKind


@dataclass
class ReadinessCriteria:
    """When a workload counts as fully rolled out and serving."""
    min_ready_ratio: float = 1.0  # available / desired replicas
    require_updated: bool = True  # every replica runs the current template

    def __post_init__(self):
        if not 0.0 < self.min_ready_ratio <= 1.0:
            raise ValueError(f"min_ready_ratio must be in (0, 1], got {self.min_ready_ratio}")


class ScalableWorkload(ABC):
    """Capability interface for workload kinds the controller can canary."""

    kind: ResourceKind

    def __init__(self, obj: Dict[str, Any]):
        self.obj = obj

    @property
    def name(self) -> str:
        return self.obj["metadata"]["name"]

    @property
    def namespace(self) -> str:
        return self.obj["metadata"].get("namespace", "")

    @abstractmethod
    def get_pod_template(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def set_pod_template(self, template: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_replicas(self) -> Optional[int]:
        pass

    @abstractmethod
    def set_replicas(self, replicas: int) -> None:
        pass

    @abstractmethod
    def selector_labels(self) -> Dict[str, str]:
        pass

    @abstractmethod
    def set_selector_labels(self, labels: Dict[str, str]) -> None:
        pass

    @abstractmethod
    def is_ready(self, criteria: Optional[ReadinessCriteria] = None) -> bool:
        pass


class DeploymentWorkload(ScalableWorkload):
    """apps/v1 Deployment."""

    kind = DEPLOYMENT

    def get_pod_template(self) -> Dict[str, Any]:
        return copy.deepcopy(self.obj.get("spec", {}).get("template", {}))

    def set_pod_template(self, template: Dict[str, Any]) -> None:
        self.obj.setdefault("spec", {})["template"] = copy.deepcopy(template)

    def get_replicas(self) -> Optional[int]:
        return self.obj.get("spec", {}).get("replicas")

    def set_replicas(self, replicas: int) -> None:
        self.obj.setdefault("spec", {})["replicas"] = replicas

    def selector_labels(self) -> Dict[str, str]:
        return dict(self.obj.get("spec", {}).get("selector", {}).get("matchLabels", {}))

    def set_selector_labels(self, labels: Dict[str, str]) -> None:
        self.obj.setdefault("spec", {})["selector"] = {"matchLabels": dict(labels)}

    def is_ready(self, criteria: Optional[ReadinessCriteria] = None) -> bool:
        criteria = criteria or ReadinessCriteria()
        status = self.obj.get("status", {})
        generation = self.obj.get("metadata", {}).get("generation", 0)
        if status.get("observedGeneration", 0) < generation:
            return False

        desired = self.get_replicas()
        if desired is None:
            desired = 1
        needed = math.ceil(desired * criteria.min_ready_ratio)
        if criteria.require_updated and status.get("updatedReplicas", 0) < needed:
            return False
        return status.get("availableReplicas", 0) >= needed


WORKLOAD_KINDS: Dict[str, Type[ScalableWorkload]] = {
    "Deployment": DeploymentWorkload,
}


def workload_class(kind: str) -> Type[ScalableWorkload]:
    """Return the workload variant for a kind name; KeyError if unsupported."""
    if kind not in WORKLOAD_KINDS:
        raise KeyError(f"Unsupported workload kind: {kind}")
    return WORKLOAD_KINDS[kind]


class HorizontalAutoscaler:
    """autoscaling/v2 HorizontalPodAutoscaler."""

    kind = HORIZONTAL_POD_AUTOSCALER
    POLICY_FIELDS = ("minReplicas", "maxReplicas", "metrics", "behavior")

    def __init__(self, obj: Dict[str, Any]):
        self.obj = obj

    @property
    def name(self) -> str:
        return self.obj["metadata"]["name"]

    def set_scale_target_ref(self, name: str, kind: str, api_version: str) -> None:
        self.obj.setdefault("spec", {})["scaleTargetRef"] = {
            "apiVersion": api_version,
            "kind": kind,
            "name": name,
        }

    def get_policy(self) -> Dict[str, Any]:
        spec = self.obj.get("spec", {})
        return {k: copy.deepcopy(spec[k]) for k in self.POLICY_FIELDS if k in spec}

    def set_policy(self, policy: Dict[str, Any]) -> None:
        spec = self.obj.setdefault("spec", {})
        for key in self.POLICY_FIELDS:
            if key in policy:
                spec[key] = copy.deepcopy(policy[key])
            else:
                spec.pop(key, None)
