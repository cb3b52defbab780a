"""Declarative object store.

The reconciler reads and writes Kubernetes-style objects through the
``ObjectStore`` protocol. Objects are keyed by (kind, namespace, name).

``InMemoryObjectStore`` implements the protocol for local runs and tests.
It follows API-server semantics:
- deleting an object that still carries finalizers only sets
  ``deletionTimestamp``; the object disappears once an update removes its
  last finalizer
- every write assigns a new ``resourceVersion``; an update carrying a
  version other than the stored one raises ``ConflictError``. An update
  without a version is unconditional.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, TypeVar

from .models import KubeObject

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)


class StoreError(Exception):
    """Base class for object store failures."""

    pass


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose key is taken."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} already exists")


class ConflictError(StoreError):
    """Raised when an update was computed from an outdated copy of the object."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} was modified concurrently")


class DeadlineExceededError(StoreError):
    """Raised instead of writing once the caller's deadline has passed."""

    pass


class ObjectStore(Protocol):
    """Typed access to stored objects."""

    def get(self, kind: type[T], namespace: str, name: str) -> T: ...

    def list(self, kind: type[T], namespace: str | None = None) -> list[T]: ...

    def create(self, obj: T) -> T: ...

    def update(self, obj: T) -> T: ...

    def delete(self, kind: type[KubeObject], namespace: str, name: str) -> None: ...


class EventType(str, Enum):
    """Kinds of change reported to store watchers."""

    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"


@dataclass(frozen=True)
class StoreEvent:
    """A change to a stored object.

    ``old`` is None for ADDED, ``new`` is None for DELETED.
    """

    type: EventType
    old: KubeObject | None
    new: KubeObject | None

    @property
    def obj(self) -> KubeObject:
        obj = self.new if self.new is not None else self.old
        assert obj is not None, "StoreEvent without an object"
        return obj


Watcher = Callable[[StoreEvent], None]


class InMemoryObjectStore:
    """Thread-safe in-memory ObjectStore.

    Every read and write copies the object so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], KubeObject] = {}
        self._lock = threading.Lock()
        self._watchers: list[Watcher] = []
        self._versions = itertools.count(1)

    def watch(self, watcher: Watcher) -> None:
        """Register a callback invoked after every change."""
        with self._lock:
            self._watchers.append(watcher)

    def get(self, kind: type[T], namespace: str, name: str) -> T:
        key = (kind.KIND.value, namespace, name)
        with self._lock:
            obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(kind.KIND.value, namespace, name)
        return obj.model_copy(deep=True)  # type: ignore[return-value]

    def list(self, kind: type[T], namespace: str | None = None) -> list[T]:
        with self._lock:
            found = [
                obj
                for (obj_kind, obj_namespace, _), obj in sorted(self._objects.items())
                if obj_kind == kind.KIND.value and (namespace is None or obj_namespace == namespace)
            ]
        return [obj.model_copy(deep=True) for obj in found]  # type: ignore[misc]

    def create(self, obj: T) -> T:
        key = self._key(obj)
        stored = obj.model_copy(deep=True)
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(*key)
            stored.metadata.resource_version = self._next_version()
            self._objects[key] = stored
        self._notify(StoreEvent(EventType.ADDED, None, stored))
        return stored.model_copy(deep=True)

    def update(self, obj: T) -> T:
        key = self._key(obj)
        stored = obj.model_copy(deep=True)
        with self._lock:
            old = self._objects.get(key)
            if old is None:
                raise NotFoundError(*key)
            version = stored.metadata.resource_version
            if version and version != old.metadata.resource_version:
                raise ConflictError(*key)
            # deletionTimestamp is owned by the store, not by writers
            stored.metadata.deletion_timestamp = old.metadata.deletion_timestamp
            stored.metadata.resource_version = old.metadata.resource_version
            if stored.being_deleted and not stored.metadata.finalizers:
                del self._objects[key]
                event = StoreEvent(EventType.DELETED, old, None)
            else:
                # An unchanged write keeps its version
                if stored != old:
                    stored.metadata.resource_version = self._next_version()
                self._objects[key] = stored
                event = StoreEvent(EventType.MODIFIED, old, stored)
        self._notify(event)
        return stored.model_copy(deep=True)

    def delete(self, kind: type[KubeObject], namespace: str, name: str) -> None:
        key = (kind.KIND.value, namespace, name)
        with self._lock:
            old = self._objects.get(key)
            if old is None:
                raise NotFoundError(*key)
            if old.metadata.finalizers:
                if old.being_deleted:
                    return
                marked = old.model_copy(deep=True)
                marked.metadata.deletion_timestamp = datetime.now(UTC)
                marked.metadata.resource_version = self._next_version()
                self._objects[key] = marked
                event = StoreEvent(EventType.MODIFIED, old, marked)
            else:
                del self._objects[key]
                event = StoreEvent(EventType.DELETED, old, None)
        self._notify(event)

    def _next_version(self) -> str:
        # Callers hold the lock
        return str(next(self._versions))

    @staticmethod
    def _key(obj: KubeObject) -> tuple[str, str, str]:
        return (obj.KIND.value, obj.metadata.namespace, obj.metadata.name)

    def _notify(self, event: StoreEvent) -> None:
        with self._lock:
            watchers = list(self._watchers)
        for watcher in watchers:
            watcher(event)
