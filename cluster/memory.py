"""
In-memory cluster backend.

Behaves like the API server for the operations the controller uses:
every write bumps ``metadata.resourceVersion``, writes carrying a stale
version fail with ConflictError, spec changes bump ``metadata.generation``
and ``update`` never touches ``status`` (status goes through
``update_status``). Every successful write is appended to ``actions``.
"""

import copy
import itertools
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from cluster.backend import ClusterBackend, ResourceKind, kind_of
from cluster.exceptions import AlreadyExistsError, ConflictError, NotFoundError

Key = Tuple[str, str, str, str]


@dataclass(frozen=True)
class Action:
    """A recorded mutating call."""
    verb: str
    kind: str
    namespace: str
    name: str


class InMemoryBackend(ClusterBackend):
    """Thread-safe versioned object store."""

    def __init__(self, objects: Optional[List[Dict[str, Any]]] = None):
        self._objects: Dict[Key, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)
        self._pending_conflicts: Dict[Key, int] = {}
        self.actions: List[Action] = []
        for obj in objects or []:
            self.create(obj)
        self.actions.clear()

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        with self._lock:
            key = (kind.api_version, kind.kind, namespace, name)
            if key not in self._objects:
                raise NotFoundError(
                    f"{kind.kind} {namespace}/{name} not found",
                    kind=kind.kind, namespace=namespace, name=name,
                )
            return copy.deepcopy(self._objects[key])

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            key = self._key(obj)
            if key in self._objects:
                raise AlreadyExistsError(
                    f"{key[1]} {key[2]}/{key[3]} already exists",
                    kind=key[1], namespace=key[2], name=key[3],
                )
            stored = copy.deepcopy(obj)
            metadata = stored.setdefault("metadata", {})
            metadata["uid"] = metadata.get("uid") or str(uuid.uuid4())
            metadata["generation"] = 1
            metadata["resourceVersion"] = str(next(self._versions))
            metadata.setdefault(
                "creationTimestamp",
                datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            )
            self._objects[key] = stored
            self._record("create", key)
            return copy.deepcopy(stored)

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            key = self._key(obj)
            current = self._check_writable(key, obj)
            stored = copy.deepcopy(obj)
            stored["metadata"]["uid"] = current["metadata"]["uid"]
            if "status" in current:
                stored["status"] = copy.deepcopy(current["status"])
            else:
                stored.pop("status", None)
            generation = current["metadata"].get("generation", 1)
            if stored.get("spec") != current.get("spec"):
                generation += 1
            stored["metadata"]["generation"] = generation
            stored["metadata"]["resourceVersion"] = str(next(self._versions))
            self._objects[key] = stored
            self._record("update", key)
            return copy.deepcopy(stored)

    def update_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            key = self._key(obj)
            current = self._check_writable(key, obj)
            stored = copy.deepcopy(current)
            stored["status"] = copy.deepcopy(obj.get("status", {}))
            stored["metadata"]["resourceVersion"] = str(next(self._versions))
            self._objects[key] = stored
            self._record("update_status", key)
            return copy.deepcopy(stored)

    def list(self, kind: ResourceKind, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(obj)
                for key, obj in sorted(self._objects.items())
                if key[0] == kind.api_version and key[1] == kind.kind
                and (not namespace or key[2] == namespace)
            ]

    # Test and dry-run helpers

    def inject_conflicts(self, kind: ResourceKind, namespace: str, name: str, count: int = 1) -> None:
        """Fail the next ``count`` writes to an object with ConflictError."""
        with self._lock:
            self._pending_conflicts[(kind.api_version, kind.kind, namespace, name)] = count

    def patch_status(self, kind: ResourceKind, namespace: str, name: str, **fields: Any) -> None:
        """Set status fields directly, as the owning cluster controller would."""
        with self._lock:
            obj = self._objects[(kind.api_version, kind.kind, namespace, name)]
            obj.setdefault("status", {}).update(fields)
            obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def mutations(self, verb: Optional[str] = None) -> List[Action]:
        return [a for a in self.actions if verb is None or a.verb == verb]

    def _key(self, obj: Dict[str, Any]) -> Key:
        kind = kind_of(obj)
        metadata = obj.get("metadata", {})
        if not metadata.get("name"):
            metadata["name"] = metadata.get("generateName", "obj-") + uuid.uuid4().hex[:5]
        return (kind.api_version, kind.kind, metadata.get("namespace", ""), metadata["name"])

    def _check_writable(self, key: Key, obj: Dict[str, Any]) -> Dict[str, Any]:
        if key not in self._objects:
            raise NotFoundError(
                f"{key[1]} {key[2]}/{key[3]} not found",
                kind=key[1], namespace=key[2], name=key[3],
            )
        current = self._objects[key]
        pending = self._pending_conflicts.get(key, 0)
        if pending:
            self._pending_conflicts[key] = pending - 1
            # Simulate a concurrent writer so the caller's copy goes stale.
            current["metadata"]["resourceVersion"] = str(next(self._versions))
        sent = obj.get("metadata", {}).get("resourceVersion")
        if sent and sent != current["metadata"]["resourceVersion"]:
            raise ConflictError(
                f"{key[1]} {key[2]}/{key[3]} was modified concurrently",
                kind=key[1], namespace=key[2], name=key[3],
            )
        return current

    def _record(self, verb: str, key: Key) -> None:
        self.actions.append(Action(verb=verb, kind=key[1], namespace=key[2], name=key[3]))
