# Canary Deployments Module
"""
Progressive rollout of workloads behind a service mesh.
"""

from .analyzer import AnalysisResult, CheckResult, MetricAnalyzer
from .canary_manager import CanaryManager
from .config import ControllerConfig
from .deployer import PrimarySynchronizer
from .errors import (
    CanaryError,
    InvalidSpecError,
    InvalidWeightError,
    ProviderError,
    ProviderTimeoutError,
    RoutingError,
    TargetNotFoundError,
)
from .models import Canary, CanaryPhase, CanaryStatus
from .recorder import StatusRecorder
from .scheduler import ReconcileQueue, run_controller
from .traffic_router import TrafficRouter

__all__ = [
    "AnalysisResult",
    "CheckResult",
    "MetricAnalyzer",
    "CanaryManager",
    "ControllerConfig",
    "PrimarySynchronizer",
    "CanaryError",
    "InvalidSpecError",
    "InvalidWeightError",
    "ProviderError",
    "ProviderTimeoutError",
    "RoutingError",
    "TargetNotFoundError",
    "Canary",
    "CanaryPhase",
    "CanaryStatus",
    "StatusRecorder",
    "ReconcileQueue",
    "run_controller",
    "TrafficRouter",
]
