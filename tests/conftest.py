"""Shared fixtures: an in-memory cluster holding the podinfo workload and its canary."""

import copy

import pytest

from canary.canary_manager import CanaryManager
from canary.config import ControllerConfig
from canary.models import Canary
from cluster.accessor import ResourceAccessor
from cluster.backend import CANARY, DEPLOYMENT
from cluster.memory import InMemoryBackend
from monitoring.prometheus_metrics import MetricsRegistry

NAMESPACE = "default"


def new_deployment(name="podinfo", image="quay.io/stefanprodan/podinfo:1.2.0", replicas=2):
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": NAMESPACE, "labels": {"app": name}},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {
                    "containers": [{
                        "name": "podinfod",
                        "image": image,
                        "command": ["./podinfo", "--port=9898"],
                        "ports": [{"name": "http", "containerPort": 9898, "protocol": "TCP"}],
                    }],
                },
            },
        },
    }


def new_autoscaler(name="podinfo"):
    return {
        "apiVersion": "autoscaling/v2",
        "kind": "HorizontalPodAutoscaler",
        "metadata": {"name": name, "namespace": NAMESPACE},
        "spec": {
            "scaleTargetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": name},
            "minReplicas": 2,
            "maxReplicas": 4,
            "metrics": [{
                "type": "Resource",
                "resource": {"name": "cpu", "target": {"type": "Utilization", "averageUtilization": 99}},
            }],
        },
    }


def new_canary(name="podinfo", threshold=10, step_weight=10, max_weight=50):
    return {
        "apiVersion": "flagger.app/v1alpha1",
        "kind": "Canary",
        "metadata": {"name": name, "namespace": NAMESPACE, "uid": "c0ffee00-0000-4000-8000-000000000001"},
        "spec": {
            "targetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": name},
            "autoscalerRef": {
                "apiVersion": "autoscaling/v2",
                "kind": "HorizontalPodAutoscaler",
                "name": name,
            },
            "service": {"port": 9898},
            "canaryAnalysis": {
                "threshold": threshold,
                "stepWeight": step_weight,
                "maxWeight": max_weight,
                "metrics": [
                    {"name": "istio_requests_total", "threshold": 99, "interval": "1m"},
                    {"name": "istio_request_duration_seconds_bucket", "threshold": 500, "interval": "1m"},
                ],
            },
        },
    }


class FakeProvider:
    """MetricProvider double returning canned values per metric name."""

    def __init__(self, values=None):
        self.values = dict(values or {
            "istio_requests_total": 100.0,
            "istio_request_duration_seconds_bucket": 120.0,
        })
        self.errors = {}
        self.calls = []

    def fail(self, metric_name, error):
        self.errors[metric_name] = error

    async def query(self, metric_name, window, *, namespace, workload):
        self.calls.append((metric_name, window, namespace, workload))
        if metric_name in self.errors:
            raise self.errors[metric_name]
        return self.values[metric_name]


def settle(backend: InMemoryBackend) -> None:
    """Mark every Deployment as fully rolled out, as the deployment controller would."""
    for obj in backend.list(DEPLOYMENT):
        metadata = obj["metadata"]
        replicas = obj["spec"].get("replicas", 1)
        backend.patch_status(
            DEPLOYMENT, metadata["namespace"], metadata["name"],
            observedGeneration=metadata["generation"],
            replicas=replicas,
            updatedReplicas=replicas,
            availableReplicas=replicas,
        )


def set_image(backend: InMemoryBackend, image: str, name: str = "podinfo") -> None:
    obj = backend.get(DEPLOYMENT, NAMESPACE, name)
    obj["spec"]["template"]["spec"]["containers"][0]["image"] = image
    backend.update(obj)


def read_canary(backend: InMemoryBackend, name: str = "podinfo") -> Canary:
    return Canary.from_dict(backend.get(CANARY, NAMESPACE, name))


@pytest.fixture
def backend():
    return InMemoryBackend([
        new_deployment(),
        new_autoscaler(),
        new_canary(threshold=2),
    ])


@pytest.fixture
def accessor(backend):
    return ResourceAccessor(backend, timeout=2.0)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def config():
    return ControllerConfig(metric_timeout=1.0, api_timeout=2.0)


@pytest.fixture
def manager(accessor, provider, config, metrics):
    return CanaryManager.from_config(accessor, provider, config, metrics=metrics)


@pytest.fixture
def tick(manager, backend):
    """Run one reconcile pass, then let workloads finish rolling out."""
    async def _tick(name="podinfo"):
        status = await manager.reconcile(NAMESPACE, name)
        settle(backend)
        return copy.deepcopy(status)
    return _tick
