"""Event dispatch and the reconcile worker pool.

Store events are mapped to the PagerDutyIntegrations they affect and put on
a de-duplicating work queue. A key is never reconciled by two workers at
once: a key that changes while it is being processed is marked dirty and
re-queued when the running pass finishes. Failed passes are retried with
per-key exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .config import OperatorConfig
from .finalizers import cluster_deployment_finalizer, has_finalizer
from .models import (
    ClusterDeployment,
    ConfigMap,
    KubeObject,
    PagerDutyIntegration,
    Secret,
    SyncSet,
)
from .reconciler import Reconciler, ReconcileResult
from .selector import SelectorError, integration_selector
from .store import EventType, NotFoundError, ObjectStore, StoreError, StoreEvent


@dataclass(frozen=True, order=True)
class PolicyKey:
    """Namespace and name of a PagerDutyIntegration."""

    namespace: str
    name: str

    @classmethod
    def of(cls, integration: PagerDutyIntegration) -> PolicyKey:
        return cls(integration.namespace, integration.name)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class EventMapper:
    """Maps a store event to the integrations that must be reconciled.

    - PagerDutyIntegration: itself
    - ClusterDeployment: integrations selecting its old or new labels, and
      integrations whose finalizer it carries
    - Secret, SyncSet, ConfigMap owned by a ClusterDeployment: resolved
      through the owner reference, then as a ClusterDeployment
    - ConfigMap in the operator namespace: integrations selecting its labels
    - Secret referenced as an API key: the integrations referencing it
    """

    def __init__(
        self,
        store: ObjectStore,
        operator_namespace: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._operator_namespace = operator_namespace
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def map(self, event: StoreEvent) -> set[PolicyKey]:
        if event.type == EventType.MODIFIED and event.old == event.new:
            return set()

        obj = event.obj
        if isinstance(obj, PagerDutyIntegration):
            return {PolicyKey.of(obj)}

        integrations = self._store.list(PagerDutyIntegration)

        if isinstance(obj, ClusterDeployment):
            label_sets = [o.labels for o in (event.old, event.new) if o is not None]
            return self._for_cluster_deployment(integrations, obj, label_sets)

        keys: set[PolicyKey] = set()
        if isinstance(obj, Secret):
            keys |= self._referencing_api_key(integrations, obj)
        if isinstance(obj, ConfigMap) and obj.namespace == self._operator_namespace:
            keys |= self._selecting(integrations, [obj.labels])
        if isinstance(obj, Secret | SyncSet | ConfigMap):
            owner = self._owning_cluster_deployment(obj)
            if owner is not None:
                keys |= self._for_cluster_deployment(integrations, owner, [owner.labels])
        return keys

    def _for_cluster_deployment(
        self,
        integrations: list[PagerDutyIntegration],
        cluster_deployment: ClusterDeployment,
        label_sets: list[dict[str, str]],
    ) -> set[PolicyKey]:
        keys = self._selecting(integrations, label_sets)
        for integration in integrations:
            if has_finalizer(cluster_deployment, cluster_deployment_finalizer(integration.name)):
                keys.add(PolicyKey.of(integration))
        return keys

    def _selecting(
        self, integrations: list[PagerDutyIntegration], label_sets: list[dict[str, str]]
    ) -> set[PolicyKey]:
        keys: set[PolicyKey] = set()
        for integration in integrations:
            try:
                selector = integration_selector(integration)
            except SelectorError as e:
                self._logger.debug(
                    "Skipping integration with invalid selector",
                    extra={"integration": integration.name, "error": str(e)},
                )
                continue
            if any(selector.matches(labels) for labels in label_sets):
                keys.add(PolicyKey.of(integration))
        return keys

    @staticmethod
    def _referencing_api_key(
        integrations: list[PagerDutyIntegration], secret: Secret
    ) -> set[PolicyKey]:
        keys: set[PolicyKey] = set()
        for integration in integrations:
            ref = integration.spec.pagerduty_api_key_secret_ref
            if (ref.namespace, ref.name) == (secret.namespace, secret.name):
                keys.add(PolicyKey.of(integration))
        return keys

    def _owning_cluster_deployment(self, obj: KubeObject) -> ClusterDeployment | None:
        for owner in obj.metadata.owner_references:
            if owner.kind != ClusterDeployment.KIND.value:
                continue
            try:
                return self._store.get(ClusterDeployment, obj.namespace, owner.name)
            except NotFoundError:
                return None
        return None


class Backoff:
    """Per-key exponential backoff: base, 2*base, 4*base, ... capped at max."""

    def __init__(self, base_seconds: float, max_seconds: float) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._failures: dict[PolicyKey, int] = {}

    def next_delay(self, key: PolicyKey) -> float:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self._base * (2**failures), self._max)

    def forget(self, key: PolicyKey) -> None:
        self._failures.pop(key, None)

    def failures(self, key: PolicyKey) -> int:
        return self._failures.get(key, 0)


class WorkQueue:
    """De-duplicating queue with at most one in-flight item per key.

    Must be used from the event loop thread.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[PolicyKey | None] = asyncio.Queue()
        self._dirty: set[PolicyKey] = set()
        self._processing: set[PolicyKey] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def add(self, key: PolicyKey) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    def add_after(self, key: PolicyKey, delay_seconds: float) -> None:
        if self._shutting_down:
            return
        if delay_seconds <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            if handle is not None:
                self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay_seconds, fire)
        self._timers.add(handle)

    async def get(self) -> PolicyKey | None:
        """Next key to process, or None once the queue is shut down."""
        key = await self._queue.get()
        if key is None:
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: PolicyKey) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self, waiters: int) -> None:
        """Stop accepting keys and release ``waiters`` blocked getters."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for _ in range(waiters):
            self._queue.put_nowait(None)

    @property
    def pending(self) -> int:
        return len(self._dirty)

    @property
    def delayed(self) -> int:
        return len(self._timers)

    def is_processing(self, key: PolicyKey) -> bool:
        return key in self._processing


class Dispatcher:
    """Runs reconcile workers fed by store events."""

    def __init__(
        self,
        reconciler: Reconciler,
        store: ObjectStore,
        config: OperatorConfig,
        mapper: EventMapper | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._config = config
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._mapper = mapper or EventMapper(store, config.operator_namespace, self._logger)
        self._backoff = Backoff(config.retry_backoff_base_seconds, config.retry_backoff_max_seconds)
        self._queue: WorkQueue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def queue(self) -> WorkQueue:
        assert self._queue is not None, "Dispatcher is not running"
        return self._queue

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    def handle_event(self, event: StoreEvent) -> None:
        """Store watcher. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            keys = self._mapper.map(event)
        except StoreError as e:
            self._logger.warning(
                "Failed to map store event",
                extra={"kind": event.obj.KIND.value, "name": event.obj.name, "error": str(e)},
            )
            return

        for key in keys:
            loop.call_soon_threadsafe(self._enqueue, key)

    def enqueue(self, key: PolicyKey) -> None:
        """Queue a key. Must be called from the event loop thread."""
        self._enqueue(key)

    def _enqueue(self, key: PolicyKey) -> None:
        if self._queue is not None:
            self._queue.add(key)

    async def run(self) -> None:
        """Queue every integration, then process keys until shutdown."""
        self._loop = asyncio.get_running_loop()
        self._queue = WorkQueue()

        workers = self._config.reconcile_workers
        self._logger.info("Starting dispatcher", extra={"workers": workers})

        for integration in await self._loop.run_in_executor(
            None, self._store.list, PagerDutyIntegration
        ):
            self._queue.add(PolicyKey.of(integration))

        tasks = [
            asyncio.create_task(self._worker(index), name=f"reconcile-worker-{index}")
            for index in range(workers)
        ]

        await self._shutdown_event.wait()
        self._queue.shutdown(workers)
        await asyncio.gather(*tasks)
        self._logger.info("Dispatcher shutdown complete")

    def shutdown(self) -> None:
        """Signal the workers to stop after their current pass."""
        self._logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def _worker(self, index: int) -> None:
        queue = self.queue
        while True:
            key = await queue.get()
            if key is None:
                return

            try:
                result = await self._reconciler.reconcile(key.namespace, key.name)
            except Exception as e:
                self._logger.exception(
                    "Unexpected error in reconcile worker",
                    extra={"worker": index, "integration": str(key)},
                )
                result = ReconcileResult(namespace=key.namespace, name=key.name, error=e)

            try:
                self._schedule(queue, key, result)
            finally:
                queue.done(key)

    def _schedule(self, queue: WorkQueue, key: PolicyKey, result: ReconcileResult) -> None:
        """Decide when a key is reconciled again."""
        if result.error is not None:
            delay = self._backoff.next_delay(key)
            self._logger.info(
                "Retrying reconcile with backoff",
                extra={
                    "integration": str(key),
                    "delay_seconds": delay,
                    "failures": self._backoff.failures(key),
                },
            )
            queue.add_after(key, delay)
            return

        self._backoff.forget(key)
        if result.requeue_after is not None:
            queue.add_after(key, result.requeue_after)
