"""Finalizer names and helpers.

A ClusterDeployment carries ``pd.managed.openshift.io/<integration>`` for
as long as the integration may own external state for it. Helpers mutate
the object in place and report whether anything changed, so callers only
write objects that need writing.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from .config import CLUSTER_DEPLOYMENT_FINALIZER_PREFIX
from .models import KubeObject
from .store import ConflictError, DeadlineExceededError, ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)

# Writes of a finalizer change before a conflict is reported
PATCH_ATTEMPTS = 5


def cluster_deployment_finalizer(integration_name: str) -> str:
    """Finalizer a PagerDutyIntegration places on matching ClusterDeployments."""
    return CLUSTER_DEPLOYMENT_FINALIZER_PREFIX + integration_name


def has_finalizer(obj: KubeObject, finalizer: str) -> bool:
    return finalizer in obj.metadata.finalizers


def add_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Append the finalizer. Returns True if it was missing."""
    if finalizer in obj.metadata.finalizers:
        return False
    obj.metadata.finalizers.append(finalizer)
    return True


def remove_finalizer(obj: KubeObject, finalizer: str) -> bool:
    """Drop every occurrence of the finalizer. Returns True if one was present."""
    remaining = [f for f in obj.metadata.finalizers if f != finalizer]
    if len(remaining) == len(obj.metadata.finalizers):
        return False
    obj.metadata.finalizers = remaining
    return True


def patch_finalizers(
    store: ObjectStore,
    obj: T,
    mutate: Callable[[KubeObject], bool],
    attempts: int = PATCH_ATTEMPTS,
    deadline: float | None = None,
) -> T:
    """Apply a finalizer mutation to obj and write it back.

    Only the mutation is carried over: on a conflict the object is read
    again and the mutation re-applied to the fresh copy, so concurrent
    writers (other integrations, Hive) never lose their changes.

    No write is attempted past ``deadline`` (a ``time.monotonic()`` value),
    so a call its caller gave up on cannot land later.

    Returns the stored object, or obj unchanged if the mutation was a no-op.

    Raises:
        NotFoundError: If the object disappeared.
        ConflictError: If every attempt conflicted.
        DeadlineExceededError: If the deadline passed before the write.
    """
    current = obj
    for attempt in range(1, attempts + 1):
        if not mutate(current):
            return current
        if deadline is not None and time.monotonic() >= deadline:
            raise DeadlineExceededError(
                f"{obj.KIND.value} {obj.namespace}/{obj.name}: finalizer write past its deadline"
            )
        try:
            return store.update(current)
        except ConflictError:
            if attempt == attempts:
                raise
            logger.debug(
                "Conflict writing finalizers, retrying",
                extra={"kind": obj.KIND.value, "name": obj.name, "attempt": attempt},
            )
            current = store.get(type(obj), obj.namespace, obj.name)
    return current
