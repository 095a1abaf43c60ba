"""
Resource Accessor - Async, timeout-bounded CRUD with optimistic concurrency.

Backend calls are blocking, so each one runs in a worker thread and is
bounded by ``timeout``. Read-modify-write helpers retry exactly once on
ConflictError by re-reading the object and re-applying the mutation.
"""

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from cluster.backend import ClusterBackend, ResourceKind
from cluster.exceptions import ApiTimeoutError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

Mutation = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class ResourceAccessor:
    """
    Typed-by-kind object access for the controller.

    ``update`` and ``update_status`` take a mutation callable that receives
    a private copy of the live object and either edits it in place or
    returns the desired object. When the result equals the live object no
    write is issued.
    """

    CONFLICT_RETRIES = 1

    def __init__(self, backend: ClusterBackend, timeout: float = 10.0):
        self.backend = backend
        self.timeout = timeout

    async def _call(self, func: Callable, *args: Any) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ApiTimeoutError(
                f"{func.__name__} did not complete within {self.timeout}s"
            ) from exc

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        return await self._call(self.backend.get, kind, namespace, name)

    async def get_or_none(self, kind: ResourceKind, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Read an object whose absence is a legitimate branch, not a failure."""
        try:
            return await self.get(kind, namespace, name)
        except NotFoundError:
            return None

    async def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(self.backend.create, obj)

    async def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._call(self.backend.list, kind, namespace)

    async def update(
        self, kind: ResourceKind, namespace: str, name: str, mutate: Mutation
    ) -> Dict[str, Any]:
        return await self._read_modify_write(kind, namespace, name, mutate, self.backend.update)

    async def update_status(
        self, kind: ResourceKind, namespace: str, name: str, mutate: Mutation
    ) -> Dict[str, Any]:
        return await self._read_modify_write(
            kind, namespace, name, mutate, self.backend.update_status
        )

    async def _read_modify_write(
        self,
        kind: ResourceKind,
        namespace: str,
        name: str,
        mutate: Mutation,
        write: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        attempt = 0
        while True:
            current = await self.get(kind, namespace, name)
            working = copy.deepcopy(current)
            desired = mutate(working)
            if desired is None:
                desired = working
            if desired == current:
                return current
            try:
                return await self._call(write, desired)
            except ConflictError:
                if attempt >= self.CONFLICT_RETRIES:
                    raise
                attempt += 1
                logger.debug(f"Conflict writing {kind.kind} {namespace}/{name}, retrying")
