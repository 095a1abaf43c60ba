import pytest

from canary.errors import InvalidWeightError, RoutingError
from canary.models import Canary
from canary.traffic_router import TrafficRouter
from cluster.backend import TRAFFIC_SPLIT, VIRTUAL_SERVICE
from conftest import NAMESPACE, new_canary
from servicemesh.mesh_config import MeshProvider, ServiceMeshConfig


@pytest.fixture
def canary():
    return Canary.from_dict(new_canary())


@pytest.fixture
def router(accessor):
    return TrafficRouter(accessor, ServiceMeshConfig())


@pytest.mark.asyncio
async def test_ensure_routes_creates_virtual_service(router, canary, backend):
    await router.ensure_routes(canary)

    vs = backend.get(VIRTUAL_SERVICE, NAMESPACE, "podinfo")
    hosts = [r["destination"]["host"] for r in vs["spec"]["http"][0]["route"]]
    assert hosts == ["podinfo-primary", "podinfo-canary"]
    assert await router.get_weights(canary) == {"primary_weight": 100, "canary_weight": 0}


@pytest.mark.asyncio
async def test_set_weight_keeps_sum_at_100(router, canary):
    await router.ensure_routes(canary)

    await router.set_weight(canary, 30)

    weights = await router.get_weights(canary)
    assert weights == {"primary_weight": 70, "canary_weight": 30}
    assert await router.current_weight(canary) == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("weight", [-1, 51, 100])
async def test_weight_outside_range_rejected(router, canary, backend, weight):
    await router.ensure_routes(canary)

    with pytest.raises(InvalidWeightError):
        await router.set_weight(canary, weight)
    assert await router.current_weight(canary) == 0


@pytest.mark.asyncio
async def test_ensure_routes_repairs_edited_object(router, canary, backend):
    await router.ensure_routes(canary)
    vs = backend.get(VIRTUAL_SERVICE, NAMESPACE, "podinfo")
    vs["spec"]["http"][0]["route"] = [{"destination": {"host": "elsewhere"}, "weight": 100}]
    backend.update(vs)

    with pytest.raises(RoutingError):
        await router.get_weights(canary)

    await router.ensure_routes(canary)
    assert await router.current_weight(canary) == 0


@pytest.mark.asyncio
async def test_ensure_routes_is_idempotent(router, canary, backend):
    await router.ensure_routes(canary)
    writes = len(backend.mutations())

    await router.ensure_routes(canary)
    await router.set_weight(canary, 0)

    assert len(backend.mutations()) == writes


@pytest.mark.asyncio
async def test_linkerd_traffic_split(accessor, canary, backend):
    router = TrafficRouter(accessor, ServiceMeshConfig(provider=MeshProvider.LINKERD))
    await router.ensure_routes(canary)
    await router.set_weight(canary, 20)

    split = backend.get(TRAFFIC_SPLIT, NAMESPACE, "podinfo")
    assert split["spec"]["backends"] == [
        {"service": "podinfo-primary", "weight": 80},
        {"service": "podinfo-canary", "weight": 20},
    ]


def test_next_weight_caps_at_max(router, canary):
    assert router.next_weight(canary, 0) == 10
    assert router.next_weight(canary, 45) == 50
    assert router.next_weight(canary, 50) == 50
