import asyncio

import pytest

from canary.config import ControllerConfig
from canary.scheduler import ReconcileQueue, resync, run_controller
from conftest import NAMESPACE, new_canary


class Recorder:
    """Reconcile double tracking concurrency per key."""

    def __init__(self, delay=0.0, failures=0):
        self.delay = delay
        self.failures = failures
        self.calls = []
        self.active = set()
        self.overlaps = 0

    async def __call__(self, namespace, name):
        key = (namespace, name)
        if key in self.active:
            self.overlaps += 1
        self.active.add(key)
        self.calls.append(key)
        try:
            await asyncio.sleep(self.delay)
            if self.failures:
                self.failures -= 1
                raise RuntimeError("boom")
        finally:
            self.active.discard(key)


@pytest.mark.asyncio
async def test_duplicate_keys_collapse():
    reconcile = Recorder()
    queue = ReconcileQueue(reconcile, workers=2)
    queue.enqueue("test", "podinfo")
    queue.enqueue("test", "podinfo")
    queue.enqueue("test", "other")

    queue.start()
    await queue.drain()
    await queue.stop()

    assert sorted(reconcile.calls) == [("test", "other"), ("test", "podinfo")]


@pytest.mark.asyncio
async def test_key_never_runs_concurrently_and_reruns_when_dirty():
    reconcile = Recorder(delay=0.05)
    queue = ReconcileQueue(reconcile, workers=4)
    queue.start()

    queue.enqueue("test", "podinfo")
    await asyncio.sleep(0.01)
    queue.enqueue("test", "podinfo")
    queue.enqueue("test", "podinfo")
    await queue.drain()
    await queue.stop()

    assert reconcile.overlaps == 0
    assert reconcile.calls == [("test", "podinfo")] * 2


@pytest.mark.asyncio
async def test_failures_retry_with_backoff():
    reconcile = Recorder(failures=2)
    queue = ReconcileQueue(reconcile, workers=1, backoff_base=0.01, backoff_max=0.02)
    queue.start()

    queue.enqueue("test", "podinfo")
    await queue.drain()
    assert queue.failures("test", "podinfo") == 1

    await asyncio.sleep(0.1)
    await queue.drain()
    await queue.stop()

    assert len(reconcile.calls) == 3
    assert queue.failures("test", "podinfo") == 0


def test_backoff_is_capped():
    queue = ReconcileQueue(Recorder(), backoff_base=1.0, backoff_max=5.0)
    assert [queue.backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_resync_enqueues_every_canary(accessor, backend):
    backend.create(new_canary(name="other"))
    reconcile = Recorder()
    queue = ReconcileQueue(reconcile)

    assert await resync(queue, accessor, NAMESPACE) == 2
    queue.start()
    await queue.drain()
    await queue.stop()

    assert sorted(reconcile.calls) == [(NAMESPACE, "other"), (NAMESPACE, "podinfo")]


@pytest.mark.asyncio
async def test_run_controller_once(accessor):
    reconcile = Recorder()
    await run_controller(reconcile, accessor, ControllerConfig(), once=True)
    assert reconcile.calls == [(NAMESPACE, "podinfo")]


@pytest.mark.asyncio
async def test_run_controller_stops_on_event(accessor):
    reconcile = Recorder()
    stop = asyncio.Event()
    config = ControllerConfig(resync_interval=0.01)

    task = asyncio.create_task(run_controller(reconcile, accessor, config, stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert len(reconcile.calls) >= 2
