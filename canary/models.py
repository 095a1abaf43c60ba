"""
Canary resource model.

Dataclasses mirroring the ``flagger.app/v1alpha1`` Canary manifest, with
camelCase ``from_dict`` / ``to_dict`` mapping and spec validation.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from canary.errors import InvalidSpecError
from cluster.workloads import WORKLOAD_KINDS

PRIMARY_SUFFIX = "-primary"

_DURATION = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")
_MAX_METRIC_HINTS = ("duration", "latency", "error")


def utc_now() -> str:
    """Current UTC time as RFC 3339 (``2024-01-15T08:30:00Z``)."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_duration(value: str) -> int:
    """Parse a Go-style duration (``30s``, ``1m``, ``1h30m``) into seconds."""
    match = _DURATION.match(value) if isinstance(value, str) else None
    if not value or not match:
        raise ValueError(f"Invalid duration: {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return hours * 3600 + minutes * 60 + seconds


def fingerprint(template: Dict[str, Any]) -> str:
    """Content hash of a pod template, stable across key ordering."""
    payload = json.dumps(template, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _mapping(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidSpecError(f"{key} must be an object, got {value!r}")
    return value


def _sequence(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidSpecError(f"{key} must be a list, got {value!r}")
    return value


def _string(data: Dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise InvalidSpecError(f"{key} must be a string, got {value!r}")
    return value


def _number(data: Dict[str, Any], key: str, convert=int):
    """Read a numeric field; numeric strings are accepted, anything else is InvalidSpec."""
    value = data.get(key)
    if value is None or value == "":
        return convert(0)
    if isinstance(value, bool):
        raise InvalidSpecError(f"{key} must be a number, got {value!r}")
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise InvalidSpecError(f"{key} must be a number, got {value!r}") from None


class CanaryPhase(str, Enum):
    """Rollout phase persisted in ``status.phase``."""
    INITIALIZED = "Initialized"
    PROGRESSING = "Progressing"
    PROMOTING = "Promoting"
    FINALIZING = "Finalizing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (CanaryPhase.SUCCEEDED, CanaryPhase.FAILED)


class MetricCheckType(str, Enum):
    """How an observed metric value is compared to its threshold."""
    MIN = "min"  # value >= threshold, e.g. request success rate
    MAX = "max"  # value <= threshold, e.g. latency, error counts


@dataclass
class ObjectReference:
    kind: str
    name: str
    api_version: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ObjectReference"]:
        if not data:
            return None
        return cls(
            kind=_string(data, "kind"),
            name=_string(data, "name"),
            api_version=_string(data, "apiVersion"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"apiVersion": self.api_version, "kind": self.kind, "name": self.name}


@dataclass
class CanaryService:
    port: int = 0
    hosts: List[str] = field(default_factory=list)
    gateways: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanaryService":
        data = data or {}
        return cls(
            port=_number(data, "port"),
            hosts=list(_sequence(data, "hosts")),
            gateways=list(_sequence(data, "gateways")),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"port": self.port}
        if self.hosts:
            result["hosts"] = list(self.hosts)
        if self.gateways:
            result["gateways"] = list(self.gateways)
        return result


@dataclass
class CanaryMetric:
    name: str
    threshold: float
    interval: str = "1m"
    type: Optional[str] = None  # a MetricCheckType value, checked by Canary.validate

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanaryMetric":
        if not isinstance(data, dict):
            raise InvalidSpecError(f"metrics entries must be objects, got {data!r}")
        return cls(
            name=_string(data, "name"),
            threshold=_number(data, "threshold", float),
            interval=_string(data, "interval", "1m"),
            type=_string(data, "type") or None,
        )

    @property
    def comparison(self) -> MetricCheckType:
        """Explicit type wins; otherwise latency/error-style names are upper bounds."""
        if self.type:
            return MetricCheckType(self.type)
        lowered = self.name.lower()
        if any(hint in lowered for hint in _MAX_METRIC_HINTS):
            return MetricCheckType.MAX
        return MetricCheckType.MIN

    def passes(self, value: float) -> bool:
        if self.comparison == MetricCheckType.MAX:
            return value <= self.threshold
        return value >= self.threshold

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "threshold": self.threshold,
            "interval": self.interval,
        }
        if self.type:
            result["type"] = self.type
        return result


@dataclass
class CanaryAnalysis:
    threshold: int = 0
    step_weight: int = 0
    max_weight: int = 0
    metrics: List[CanaryMetric] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanaryAnalysis":
        data = data or {}
        return cls(
            threshold=_number(data, "threshold"),
            step_weight=_number(data, "stepWeight"),
            max_weight=_number(data, "maxWeight"),
            metrics=[CanaryMetric.from_dict(m) for m in _sequence(data, "metrics")],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold": self.threshold,
            "stepWeight": self.step_weight,
            "maxWeight": self.max_weight,
            "metrics": [m.to_dict() for m in self.metrics],
        }


@dataclass
class CanarySpec:
    target_ref: ObjectReference
    service: CanaryService
    analysis: CanaryAnalysis
    autoscaler_ref: Optional[ObjectReference] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanarySpec":
        data = data or {}
        return cls(
            target_ref=ObjectReference.from_dict(_mapping(data, "targetRef")) or ObjectReference("", ""),
            service=CanaryService.from_dict(_mapping(data, "service")),
            analysis=CanaryAnalysis.from_dict(_mapping(data, "canaryAnalysis")),
            autoscaler_ref=ObjectReference.from_dict(_mapping(data, "autoscalerRef")),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "targetRef": self.target_ref.to_dict(),
            "service": self.service.to_dict(),
            "canaryAnalysis": self.analysis.to_dict(),
        }
        if self.autoscaler_ref:
            result["autoscalerRef"] = self.autoscaler_ref.to_dict()
        return result


@dataclass
class CanaryCondition:
    type: str
    status: str  # "True", "False" or "Unknown"
    reason: str
    message: str = ""
    last_update_time: Optional[str] = None
    last_transition_time: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanaryCondition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status", "Unknown"),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_update_time=data.get("lastUpdateTime"),
            last_transition_time=data.get("lastTransitionTime"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastUpdateTime": self.last_update_time,
            "lastTransitionTime": self.last_transition_time,
        }


@dataclass
class CanaryStatus:
    phase: CanaryPhase = CanaryPhase.INITIALIZED
    canary_weight: int = 0
    failed_checks: int = 0
    iterations: int = 0
    last_applied_spec: str = ""
    last_transition_time: Optional[str] = None
    conditions: List[CanaryCondition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanaryStatus":
        data = data or {}
        try:
            phase = CanaryPhase(data.get("phase") or CanaryPhase.INITIALIZED.value)
        except ValueError:
            phase = CanaryPhase.INITIALIZED
        return cls(
            phase=phase,
            canary_weight=int(data.get("canaryWeight") or 0),
            failed_checks=int(data.get("failedChecks") or 0),
            iterations=int(data.get("iterations") or 0),
            last_applied_spec=data.get("lastAppliedSpec") or "",
            last_transition_time=data.get("lastTransitionTime"),
            conditions=[CanaryCondition.from_dict(c) for c in data.get("conditions") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "canaryWeight": self.canary_weight,
            "failedChecks": self.failed_checks,
            "iterations": self.iterations,
            "lastAppliedSpec": self.last_applied_spec,
            "lastTransitionTime": self.last_transition_time,
            "conditions": [c.to_dict() for c in self.conditions],
        }

    def get_condition(self, condition_type: str) -> Optional[CanaryCondition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


@dataclass
class Canary:
    """A Canary custom resource."""
    namespace: str
    name: str
    spec: CanarySpec
    status: CanaryStatus = field(default_factory=CanaryStatus)
    uid: str = ""
    resource_version: str = ""
    api_version: str = "flagger.app/v1alpha1"
    spec_error: Optional[str] = None  # why spec could not be parsed, reported by validate
    primary_suffix: str = PRIMARY_SUFFIX

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def target_name(self) -> str:
        return self.spec.target_ref.name

    @property
    def primary_name(self) -> str:
        return f"{self.spec.target_ref.name}{self.primary_suffix}"

    @property
    def primary_autoscaler_name(self) -> Optional[str]:
        if not self.spec.autoscaler_ref:
            return None
        return f"{self.spec.autoscaler_ref.name}{self.primary_suffix}"

    @classmethod
    def from_dict(cls, obj: Dict[str, Any], primary_suffix: str = PRIMARY_SUFFIX) -> "Canary":
        metadata = obj.get("metadata", {})
        spec_error = None
        try:
            spec = CanarySpec.from_dict(_mapping(obj, "spec"))
        except InvalidSpecError as exc:
            spec = CanarySpec.from_dict(None)
            spec_error = str(exc)
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            spec=spec,
            status=CanaryStatus.from_dict(obj.get("status")),
            uid=metadata.get("uid", ""),
            resource_version=metadata.get("resourceVersion", ""),
            api_version=obj.get("apiVersion", "flagger.app/v1alpha1"),
            spec_error=spec_error,
            primary_suffix=primary_suffix,
        )

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"namespace": self.namespace, "name": self.name}
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": self.api_version,
            "kind": "Canary",
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    def owner_reference(self) -> Dict[str, Any]:
        """Owner reference making derived objects garbage-collected with the canary."""
        return {
            "apiVersion": self.api_version,
            "kind": "Canary",
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def validate(self) -> None:
        """Raise InvalidSpecError describing every violated invariant."""
        if self.spec_error:
            raise InvalidSpecError(f"{self.key}: {self.spec_error}")
        problems = []
        spec = self.spec
        analysis = spec.analysis

        if not spec.target_ref.name:
            problems.append("targetRef.name is required")
        if spec.target_ref.kind not in WORKLOAD_KINDS:
            problems.append(f"targetRef.kind {spec.target_ref.kind!r} is not supported")
        if spec.autoscaler_ref is not None:
            if not spec.autoscaler_ref.name:
                problems.append("autoscalerRef.name is required")
            if spec.autoscaler_ref.kind != "HorizontalPodAutoscaler":
                problems.append(f"autoscalerRef.kind {spec.autoscaler_ref.kind!r} is not supported")
        if not 0 < spec.service.port <= 65535:
            problems.append("service.port must be between 1 and 65535")
        if analysis.threshold < 1:
            problems.append("canaryAnalysis.threshold must be >= 1")
        if analysis.step_weight <= 0:
            problems.append("canaryAnalysis.stepWeight must be > 0")
        if not 0 < analysis.max_weight <= 100:
            problems.append("canaryAnalysis.maxWeight must be in (0, 100]")
        if not analysis.metrics:
            problems.append("canaryAnalysis.metrics must not be empty")
        for metric in analysis.metrics:
            if not metric.name:
                problems.append("every metric needs a name")
            if metric.type and metric.type not in {t.value for t in MetricCheckType}:
                problems.append(f"metric {metric.name!r}: unknown type {metric.type!r}")
            try:
                parse_duration(metric.interval)
            except ValueError:
                problems.append(f"metric {metric.name!r}: invalid interval {metric.interval!r}")

        if problems:
            raise InvalidSpecError(f"{self.key}: " + "; ".join(problems))
