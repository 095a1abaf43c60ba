"""
Reconcile scheduling.

A ReconcileQueue runs ``reconcile(namespace, name)`` on a fixed pool of
workers. A key is never processed by two workers at once: a key enqueued
while in flight is marked dirty and re-run after the current pass.
Failing keys are retried with exponential backoff.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

from cluster.accessor import ResourceAccessor
from cluster.backend import CANARY
from cluster.exceptions import ClusterError

logger = logging.getLogger(__name__)

Key = Tuple[str, str]
Reconcile = Callable[[str, str], Awaitable[object]]


class ReconcileQueue:
    """De-duplicating work queue keyed by ``(namespace, name)``."""

    def __init__(
        self,
        reconcile: Reconcile,
        workers: int = 2,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
    ):
        self.reconcile = reconcile
        self.workers = workers
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[Key] = set()
        self._in_flight: Set[Key] = set()
        self._dirty: Set[Key] = set()
        self._failures: Dict[Key, int] = {}
        self._retries: Dict[Key, asyncio.TimerHandle] = {}
        self._tasks: list[asyncio.Task] = []

    def enqueue(self, namespace: str, name: str) -> None:
        """Schedule a pass for the key; no-op if one is already pending."""
        key = (namespace, name)
        if key in self._in_flight:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, namespace: str, name: str, delay: float) -> None:
        key = (namespace, name)
        if key in self._retries:
            return
        loop = asyncio.get_running_loop()

        def fire():
            self._retries.pop(key, None)
            self.enqueue(namespace, name)

        self._retries[key] = loop.call_later(delay, fire)

    def backoff(self, failures: int) -> float:
        """Delay before retry number ``failures`` (1-based)."""
        return min(self.backoff_base * 2 ** (failures - 1), self.backoff_max)

    def failures(self, namespace: str, name: str) -> int:
        return self._failures.get((namespace, name), 0)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._in_flight.add(key)
            try:
                await self.reconcile(*key)
                self._failures.pop(key, None)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failures = self._failures.get(key, 0) + 1
                self._failures[key] = failures
                delay = self.backoff(failures)
                logger.error(f"Worker {index}: reconcile {key[0]}/{key[1]} failed ({e}), retry in {delay:.1f}s")
                self.enqueue_after(*key, delay)
            finally:
                self._in_flight.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(*key)
                self._queue.task_done()

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Started {self.workers} reconcile workers")

    async def drain(self) -> None:
        """Wait until every queued and in-flight key has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        for handle in self._retries.values():
            handle.cancel()
        self._retries.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def resync(queue: ReconcileQueue, accessor: ResourceAccessor, namespace: Optional[str]) -> int:
    """Enqueue every Canary in ``namespace`` (all namespaces when empty)."""
    canaries = await accessor.list(CANARY, namespace or None)
    for obj in canaries:
        metadata = obj.get("metadata", {})
        queue.enqueue(metadata.get("namespace", ""), metadata.get("name", ""))
    return len(canaries)


async def run_controller(
    reconcile: Reconcile,
    accessor: ResourceAccessor,
    config,
    stop_event: Optional[asyncio.Event] = None,
    once: bool = False,
) -> None:
    """
    Resync loop: periodically enqueue all canaries until ``stop_event`` is set.

    With ``once`` a single resync is processed to completion and the loop exits.
    """
    stop_event = stop_event or asyncio.Event()
    queue = ReconcileQueue(
        reconcile,
        workers=config.workers,
        backoff_base=config.backoff_base,
        backoff_max=config.backoff_max,
    )
    queue.start()
    try:
        while not stop_event.is_set():
            try:
                count = await resync(queue, accessor, config.namespace)
                logger.debug(f"Resync enqueued {count} canaries")
            except ClusterError as e:
                logger.error(f"Resync failed: {e}")
            if once:
                await queue.drain()
                return
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=config.resync_interval)
            except asyncio.TimeoutError:
                pass
    finally:
        await queue.stop()
        logger.info("Controller stopped")
