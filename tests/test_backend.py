import pytest
from kubernetes.client.rest import ApiException
from kubernetes.dynamic import exceptions as api_errors
from urllib3.exceptions import ProtocolError

from cluster.backend import CANARY, DEPLOYMENT, KubernetesBackend
from cluster.exceptions import (
    AlreadyExistsError,
    ApiError,
    ApiUnavailableError,
    ClusterError,
    ConflictError,
    NotFoundError,
)
from conftest import NAMESPACE, new_deployment


class StubResource:
    """Dynamic client resource whose every call fails with ``error``."""

    def __init__(self, error):
        self.error = error
        self.subresources = {"status": self}

    def get(self, **kwargs):
        raise self.error

    def create(self, **kwargs):
        raise self.error

    def replace(self, **kwargs):
        raise self.error


class StubDynamicClient:
    def __init__(self, error=None, served=True):
        self.error = error
        self.served = served
        self.resources = self

    def get(self, api_version, kind):
        if not self.served:
            raise api_errors.ResourceNotFoundError(f"No matches found for {kind}")
        return StubResource(self.error)


def failing(status, reason, body=None):
    error = ApiException(status=status, reason=reason)
    error.body = body
    return api_errors.api_exception(error)


def test_not_found_and_conflict_keep_their_categories():
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(failing(404, "Not Found")))
    with pytest.raises(NotFoundError):
        backend.get(DEPLOYMENT, NAMESPACE, "podinfo")

    backend = KubernetesBackend(dynamic_client=StubDynamicClient(failing(409, "Conflict")))
    with pytest.raises(ConflictError):
        backend.update(new_deployment())
    with pytest.raises(AlreadyExistsError):
        backend.create(new_deployment())


def test_forbidden_becomes_cluster_error():
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(failing(403, "Forbidden")))

    with pytest.raises(ApiError) as exc_info:
        backend.update(new_deployment())

    assert isinstance(exc_info.value, ClusterError)
    assert exc_info.value.reason == "Forbidden"
    assert exc_info.value.status == 403
    assert exc_info.value.name == "podinfo"


def test_status_body_reason_is_preferred():
    body = '{"kind": "Status", "reason": "Invalid", "message": "spec.replicas: Invalid value"}'
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(failing(422, "Unprocessable Entity", body)))

    with pytest.raises(ApiError) as exc_info:
        backend.update(new_deployment())

    assert exc_info.value.reason == "Invalid"


def test_server_error_reason_is_camel_case():
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(failing(500, "Internal Server Error")))

    with pytest.raises(ApiError) as exc_info:
        backend.list(DEPLOYMENT, NAMESPACE)

    assert exc_info.value.reason == "InternalServerError"


def test_unreachable_api_server():
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(ProtocolError("Connection aborted.")))

    with pytest.raises(ApiUnavailableError) as exc_info:
        backend.get(DEPLOYMENT, NAMESPACE, "podinfo")

    assert exc_info.value.reason == "ApiUnavailable"


def test_kind_not_served():
    backend = KubernetesBackend(dynamic_client=StubDynamicClient(served=False))
    canary = {"apiVersion": CANARY.api_version, "kind": CANARY.kind,
              "metadata": {"namespace": NAMESPACE, "name": "podinfo"}}

    with pytest.raises(ApiError) as exc_info:
        backend.update_status(canary)

    assert exc_info.value.reason == "ResourceNotFound"
