import pytest

from canary.deployer import PrimarySynchronizer
from canary.errors import InvalidSpecError, TargetNotFoundError
from canary.models import Canary
from cluster.backend import DEPLOYMENT, HORIZONTAL_POD_AUTOSCALER
from cluster.exceptions import NotFoundError
from cluster.workloads import ReadinessCriteria
from conftest import NAMESPACE, new_canary, set_image, settle


@pytest.fixture
def canary():
    return Canary.from_dict(new_canary())


@pytest.fixture
def synchronizer(accessor):
    return PrimarySynchronizer(accessor)


def image_of(obj):
    return obj["spec"]["template"]["spec"]["containers"][0]["image"]


@pytest.mark.asyncio
async def test_sync_creates_primary_from_target(synchronizer, canary, backend):
    await synchronizer.sync(canary)

    primary = backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    assert primary["spec"]["replicas"] == 2
    assert primary["spec"]["selector"]["matchLabels"] == {"app": "podinfo-primary"}
    assert primary["spec"]["template"]["metadata"]["labels"] == {"app": "podinfo-primary"}
    assert image_of(primary) == "quay.io/stefanprodan/podinfo:1.2.0"
    assert primary["metadata"]["ownerReferences"][0]["uid"] == canary.uid


@pytest.mark.asyncio
async def test_primary_hpa_targets_primary(synchronizer, canary, backend):
    await synchronizer.sync(canary)

    hpa = backend.get(HORIZONTAL_POD_AUTOSCALER, NAMESPACE, "podinfo-primary")
    assert hpa["spec"]["scaleTargetRef"] == {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "name": "podinfo-primary",
    }
    assert hpa["spec"]["minReplicas"] == 2
    assert hpa["spec"]["maxReplicas"] == 4


@pytest.mark.asyncio
async def test_sync_is_idempotent(synchronizer, canary, backend):
    await synchronizer.sync(canary)
    writes = len(backend.mutations())

    await synchronizer.sync(canary)

    assert len(backend.mutations()) == writes


@pytest.mark.asyncio
async def test_sync_copies_template_but_not_replicas(synchronizer, canary, backend):
    await synchronizer.sync(canary)
    primary = backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    primary["spec"]["replicas"] = 4
    backend.update(primary)

    set_image(backend, "quay.io/stefanprodan/podinfo:1.2.1")
    await synchronizer.sync(canary)

    primary = backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    assert image_of(primary) == "quay.io/stefanprodan/podinfo:1.2.1"
    assert primary["spec"]["replicas"] == 4


@pytest.mark.asyncio
async def test_sync_without_propagation_keeps_primary_template(synchronizer, canary, backend):
    await synchronizer.sync(canary)
    set_image(backend, "quay.io/stefanprodan/podinfo:1.2.1")

    await synchronizer.sync(canary, propagate=False)

    primary = backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    assert image_of(primary) == "quay.io/stefanprodan/podinfo:1.2.0"


@pytest.mark.asyncio
async def test_sync_repairs_hpa_target(synchronizer, canary, backend):
    await synchronizer.sync(canary)
    hpa = backend.get(HORIZONTAL_POD_AUTOSCALER, NAMESPACE, "podinfo-primary")
    hpa["spec"]["scaleTargetRef"]["name"] = "podinfo"
    backend.update(hpa)

    await synchronizer.sync(canary, propagate=False)

    hpa = backend.get(HORIZONTAL_POD_AUTOSCALER, NAMESPACE, "podinfo-primary")
    assert hpa["spec"]["scaleTargetRef"]["name"] == "podinfo-primary"


@pytest.mark.asyncio
async def test_missing_target(synchronizer, backend):
    canary = Canary.from_dict(new_canary(name="ghost"))

    with pytest.raises(TargetNotFoundError) as exc_info:
        await synchronizer.sync(canary)
    assert isinstance(exc_info.value, NotFoundError)


@pytest.mark.asyncio
async def test_missing_autoscaler(synchronizer, canary, backend):
    canary.spec.autoscaler_ref.name = "absent"

    with pytest.raises(NotFoundError):
        await synchronizer.sync(canary)


@pytest.mark.asyncio
async def test_unsupported_kind(synchronizer, canary):
    canary.spec.target_ref.kind = "StatefulSet"

    with pytest.raises(InvalidSpecError):
        await synchronizer.sync(canary)


@pytest.mark.asyncio
async def test_primary_readiness(synchronizer, canary, backend):
    assert not await synchronizer.is_primary_ready(canary)

    await synchronizer.sync(canary)
    assert not await synchronizer.is_primary_ready(canary)

    settle(backend)
    assert await synchronizer.is_primary_ready(canary)


@pytest.mark.asyncio
async def test_partial_readiness_ratio(accessor, canary, backend):
    synchronizer = PrimarySynchronizer(accessor, readiness=ReadinessCriteria(min_ready_ratio=0.5))
    await synchronizer.sync(canary)
    primary = backend.get(DEPLOYMENT, NAMESPACE, "podinfo-primary")
    backend.patch_status(
        DEPLOYMENT, NAMESPACE, "podinfo-primary",
        observedGeneration=primary["metadata"]["generation"],
        updatedReplicas=1,
        availableReplicas=1,
    )

    assert await synchronizer.is_primary_ready(canary)
    assert not await synchronizer.is_primary_ready(canary, ReadinessCriteria())


@pytest.mark.asyncio
async def test_retire_and_restore_target(synchronizer, canary, backend):
    await synchronizer.sync(canary)

    await synchronizer.scale_target(canary, 0)
    settle(backend)
    assert not await synchronizer.is_target_ready(canary)

    assert await synchronizer.restore_target(canary)
    assert backend.get(DEPLOYMENT, NAMESPACE, "podinfo")["spec"]["replicas"] == 2
    assert not await synchronizer.restore_target(canary)
