"""
Cluster Backend - Synchronous object CRUD against the Kubernetes API.

Objects are exchanged as plain manifest dicts so the controller logic does
not depend on generated model classes. The dynamic client resolves any
kind (including custom resources such as ``Canary`` and ``VirtualService``)
from API discovery.
"""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic import exceptions as api_errors
from urllib3.exceptions import HTTPError

from cluster.exceptions import (
    AlreadyExistsError,
    ApiError,
    ApiUnavailableError,
    ConflictError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceKind:
    """API group/version and kind of a cluster object."""
    api_version: str
    kind: str

    def __str__(self) -> str:
        return f"{self.kind}.{self.api_version}"


DEPLOYMENT = ResourceKind("apps/v1", "Deployment")
HORIZONTAL_POD_AUTOSCALER = ResourceKind("autoscaling/v2", "HorizontalPodAutoscaler")
CANARY = ResourceKind("flagger.app/v1alpha1", "Canary")
VIRTUAL_SERVICE = ResourceKind("networking.istio.io/v1beta1", "VirtualService")
TRAFFIC_SPLIT = ResourceKind("split.smi-spec.io/v1alpha2", "TrafficSplit")
EVENT = ResourceKind("v1", "Event")


def kind_of(obj: Dict[str, Any]) -> ResourceKind:
    """Return the ResourceKind of a manifest dict."""
    return ResourceKind(obj.get("apiVersion", ""), obj.get("kind", ""))


class ClusterBackend(ABC):
    """Blocking object store interface used by the ResourceAccessor."""

    @abstractmethod
    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        """Return the object or raise NotFoundError."""

    @abstractmethod
    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Create the object or raise AlreadyExistsError."""

    @abstractmethod
    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the object or raise ConflictError / NotFoundError."""

    @abstractmethod
    def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the status subresource or raise ConflictError / NotFoundError."""

    @abstractmethod
    def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """List objects of a kind, across namespaces when namespace is None."""


def load_api_client():
    """
    Build a kubernetes ApiClient.

    In-cluster service account config is tried first, then the local
    kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")
    return client.ApiClient()


class KubernetesBackend(ClusterBackend):
    """ClusterBackend over the kubernetes DynamicClient."""

    def __init__(self, api_client=None, request_timeout: float = 10.0, dynamic_client=None):
        self._client = dynamic_client or DynamicClient(api_client or load_api_client())
        self.request_timeout = request_timeout
        self._resources: Dict[ResourceKind, Any] = {}

    def _resource(self, kind: ResourceKind):
        if kind not in self._resources:
            self._resources[kind] = self._client.resources.get(
                api_version=kind.api_version, kind=kind.kind
            )
        return self._resources[kind]

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        with _translate_errors(kind, namespace, name):
            obj = self._resource(kind).get(
                name=name, namespace=namespace, _request_timeout=self.request_timeout
            )
        return obj.to_dict()

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind, namespace, name = _identity(obj)
        with _translate_errors(kind, namespace, name, creating=True):
            created = self._resource(kind).create(
                body=obj, namespace=namespace, _request_timeout=self.request_timeout
            )
        return created.to_dict()

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind, namespace, name = _identity(obj)
        with _translate_errors(kind, namespace, name):
            updated = self._resource(kind).replace(
                body=obj, namespace=namespace, _request_timeout=self.request_timeout
            )
        return updated.to_dict()

    def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind, namespace, name = _identity(obj)
        with _translate_errors(kind, namespace, name):
            resource = self._resource(kind)
        if "status" not in resource.subresources:
            return self.update(obj)
        with _translate_errors(kind, namespace, name):
            updated = resource.subresources["status"].replace(
                body=obj, namespace=namespace, _request_timeout=self.request_timeout
            )
        return updated.to_dict()

    def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        with _translate_errors(kind, namespace or "", ""):
            result = self._resource(kind).get(
                namespace=namespace or None, _request_timeout=self.request_timeout
            )
        items = result.to_dict().get("items", [])
        for item in items:
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
        return items


def _identity(obj: Dict[str, Any]):
    metadata = obj.get("metadata", {})
    return kind_of(obj), metadata.get("namespace", ""), metadata.get("name", "")


@contextmanager
def _translate_errors(kind: ResourceKind, namespace: str, name: str, creating: bool = False):
    """Map dynamic client API errors onto the cluster exception taxonomy."""
    ident = dict(kind=kind.kind, namespace=namespace, name=name)
    where = f"{kind.kind} {namespace}/{name}"
    try:
        yield
    except api_errors.NotFoundError as exc:
        raise NotFoundError(f"{where} not found", **ident) from exc
    except api_errors.ConflictError as exc:
        if creating:
            raise AlreadyExistsError(f"{where} already exists", **ident) from exc
        raise ConflictError(f"{where} was modified concurrently", **ident) from exc
    except api_errors.DynamicApiError as exc:
        raise ApiError(
            f"{where}: {exc.summary()}", reason=_status_reason(exc), status=exc.status or 0, **ident
        ) from exc
    except api_errors.ResourceNotFoundError as exc:
        raise ApiError(f"{kind} is not served by the cluster", reason="ResourceNotFound", **ident) from exc
    except HTTPError as exc:
        raise ApiUnavailableError(f"{where}: API server unreachable: {exc}", **ident) from exc


def _status_reason(exc) -> str:
    """CamelCase reason of a failed call, from the Status body or the HTTP reason phrase."""
    try:
        reason = json.loads(exc.body or "{}").get("reason")
    except (TypeError, ValueError, AttributeError):
        reason = None
    words = (reason or exc.reason or "").split()
    return "".join(w[:1].upper() + w[1:] for w in words) or f"Http{exc.status}"
