"""
Controller configuration.

Defaults < YAML file < environment variables < explicit overrides (CLI).
"""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml

from cluster.workloads import ReadinessCriteria
from servicemesh.mesh_config import MeshProvider, ServiceMeshConfig

# field name -> environment variable
ENV_VARS = {
    "namespace": "CANARY_NAMESPACE",
    "mesh_provider": "CANARY_MESH_PROVIDER",
    "selector_label": "CANARY_SELECTOR_LABEL",
    "metrics_server": "CANARY_METRICS_SERVER",
    "resync_interval": "CANARY_RESYNC_INTERVAL",
    "workers": "CANARY_WORKERS",
    "listen_port": "CANARY_LISTEN_PORT",
    "log_level": "CANARY_LOG_LEVEL",
    "log_json": "CANARY_LOG_JSON",
}


@dataclass
class ControllerConfig:
    """Canary controller settings."""
    namespace: str = ""  # empty watches all namespaces
    mesh_provider: str = "istio"
    primary_suffix: str = "-primary"
    canary_suffix: str = "-canary"
    selector_label: str = "app"
    metrics_server: str = "http://prometheus:9090"
    query_templates: Dict[str, str] = field(default_factory=dict)
    resync_interval: float = 10.0
    workers: int = 2
    api_timeout: float = 10.0
    metric_timeout: float = 5.0
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    promotion_step_weight: Optional[int] = None  # None shifts all traffic back at once
    retire_canary: bool = True
    readiness: ReadinessCriteria = field(default_factory=ReadinessCriteria)
    listen_port: int = 8080
    log_level: str = "info"
    log_json: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        try:
            MeshProvider(self.mesh_provider)
        except ValueError:
            raise ValueError(f"Unsupported mesh provider: {self.mesh_provider}")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        for name in ("resync_interval", "api_timeout", "metric_timeout", "backoff_base", "backoff_max"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.promotion_step_weight is not None and not 0 < self.promotion_step_weight <= 100:
            raise ValueError("promotion_step_weight must be in (0, 100]")
        if not self.selector_label:
            raise ValueError("selector_label must not be empty")
        if not self.primary_suffix or self.primary_suffix == self.canary_suffix:
            raise ValueError("primary_suffix must be non-empty and differ from canary_suffix")

    def mesh(self) -> ServiceMeshConfig:
        return ServiceMeshConfig(
            provider=MeshProvider(self.mesh_provider),
            primary_suffix=self.primary_suffix,
            canary_suffix=self.canary_suffix,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ControllerConfig":
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = key.replace("-", "_")
            if name not in known:
                raise ValueError(f"Unknown configuration key: {key}")
            values[name] = value
        if isinstance(values.get("readiness"), dict):
            values["readiness"] = ReadinessCriteria(**values["readiness"])
        return cls(**values)

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
        **overrides: Any,
    ) -> "ControllerConfig":
        """Build the effective configuration from file, environment and overrides."""
        data: Dict[str, Any] = {}
        if path:
            with open(path) as f:
                data.update(yaml.safe_load(f) or {})

        environ = os.environ if environ is None else environ
        for name, var in ENV_VARS.items():
            if var in environ:
                data[name] = _coerce(name, environ[var])

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)


def _coerce(name: str, raw: str) -> Any:
    """Convert an environment string to the field's type."""
    default = ControllerConfig.__dataclass_fields__[name].default
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
