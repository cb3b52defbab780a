"""Tests for finalizer helpers."""

import time

import pytest
from pagerduty_mock import make_cluster_deployment

from pagerduty_operator.finalizers import (
    add_finalizer,
    cluster_deployment_finalizer,
    has_finalizer,
    patch_finalizers,
    remove_finalizer,
)
from pagerduty_operator.models import ClusterDeployment
from pagerduty_operator.store import ConflictError, DeadlineExceededError, InMemoryObjectStore


def test_cluster_deployment_finalizer() -> None:
    assert cluster_deployment_finalizer("osd") == "pd.managed.openshift.io/osd"


def test_add_is_idempotent() -> None:
    cd = make_cluster_deployment()

    assert add_finalizer(cd, "a")
    assert not add_finalizer(cd, "a")
    assert cd.metadata.finalizers == ["a"]
    assert has_finalizer(cd, "a")


def test_remove_keeps_others() -> None:
    cd = make_cluster_deployment(finalizers=["a", "b", "a"])

    assert remove_finalizer(cd, "a")
    assert cd.metadata.finalizers == ["b"]
    assert not remove_finalizer(cd, "a")


class TestPatchFinalizers:
    """Tests for writing finalizer changes against concurrent writers."""

    @pytest.fixture
    def object_store(self) -> InMemoryObjectStore:
        object_store = InMemoryObjectStore()
        object_store.create(make_cluster_deployment())
        return object_store

    def get(self, object_store: InMemoryObjectStore) -> ClusterDeployment:
        return object_store.get(ClusterDeployment, "uhc-cluster1", "cluster1")

    def test_stale_copy_keeps_concurrent_changes(self, object_store: InMemoryObjectStore) -> None:
        """Only the mutation is applied on top of what another writer stored."""
        stale = self.get(object_store)
        other = self.get(object_store)
        other.metadata.finalizers.append("pd.managed.openshift.io/cad")
        other.metadata.labels["hive.openshift.io/version"] = "4.16"
        object_store.update(other)

        stored = patch_finalizers(
            object_store, stale, lambda cd: add_finalizer(cd, "pd.managed.openshift.io/osd")
        )

        assert stored.metadata.finalizers == [
            "pd.managed.openshift.io/cad",
            "pd.managed.openshift.io/osd",
        ]
        assert self.get(object_store).labels["hive.openshift.io/version"] == "4.16"

    def test_noop_mutation_does_not_write(self, object_store: InMemoryObjectStore) -> None:
        cd = self.get(object_store)

        result = patch_finalizers(object_store, cd, lambda obj: remove_finalizer(obj, "missing"))

        assert result is cd
        assert self.get(object_store).metadata.resource_version == cd.metadata.resource_version

    def test_gives_up_after_attempts(self, object_store: InMemoryObjectStore) -> None:
        class ConflictingStore:
            def __init__(self) -> None:
                self.updates = 0

            def update(self, obj):
                self.updates += 1
                raise ConflictError("ClusterDeployment", obj.namespace, obj.name)

            def get(self, kind, namespace, name):
                return object_store.get(kind, namespace, name)

        conflicting = ConflictingStore()

        with pytest.raises(ConflictError):
            patch_finalizers(
                conflicting,
                self.get(object_store),
                lambda cd: add_finalizer(cd, "pd.managed.openshift.io/osd"),
                attempts=3,
            )
        assert conflicting.updates == 3

    def test_no_write_past_deadline(self, object_store: InMemoryObjectStore) -> None:
        """A patch whose caller already timed out leaves the object alone."""
        with pytest.raises(DeadlineExceededError):
            patch_finalizers(
                object_store,
                self.get(object_store),
                lambda cd: add_finalizer(cd, "pd.managed.openshift.io/osd"),
                deadline=time.monotonic() - 1,
            )

        assert self.get(object_store).metadata.finalizers == []
