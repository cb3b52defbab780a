"""Tests for persisted service records."""

import pytest
from pagerduty_mock import make_cluster_deployment

from pagerduty_operator.models import ConfigMap
from pagerduty_operator.state_store import (
    ALERT_GROUPING_TIMEOUT_KEY,
    ORCHESTRATION_ENABLED_KEY,
    ORCHESTRATION_RULE_APPLIED_KEY,
    SERVICE_ID_KEY,
    ServiceRecord,
    ServiceRecordStore,
)
from pagerduty_operator.store import InMemoryObjectStore, NotFoundError


class TestServiceRecord:
    """Tests for encoding records as ConfigMap data."""

    def test_defaults_from_empty_data(self) -> None:
        record = ServiceRecord.from_data({})

        assert record == ServiceRecord()
        assert not record.service_created

    def test_round_trip(self) -> None:
        record = ServiceRecord(
            service_id="PSVC1",
            integration_id="PINT1",
            escalation_policy_id="PEP1",
            hibernating=True,
            orchestration_enabled=True,
            orchestration_rule_applied=True,
            orchestration_rule_hash="abc",
            alert_grouping_type="time",
            alert_grouping_timeout=60,
        )

        data = record.to_data()

        assert data[SERVICE_ID_KEY] == "PSVC1"
        assert data["HIBERNATING"] == "true"
        assert ServiceRecord.from_data(data) == record

    def test_rule_applied_requires_orchestration(self) -> None:
        """A rule flag without orchestration enabled is not trusted."""
        record = ServiceRecord.from_data(
            {ORCHESTRATION_ENABLED_KEY: "false", ORCHESTRATION_RULE_APPLIED_KEY: "true"}
        )
        assert not record.orchestration_rule_applied

    def test_bad_timeout_decodes_to_zero(self) -> None:
        assert ServiceRecord.from_data({ALERT_GROUPING_TIMEOUT_KEY: "soon"}).alert_grouping_timeout == 0


class TestServiceRecordStore:
    """Tests for ServiceRecordStore over an in-memory store."""

    @pytest.fixture
    def object_store(self) -> InMemoryObjectStore:
        store = InMemoryObjectStore()
        store.create(make_cluster_deployment())
        return store

    def test_load_missing(self, object_store: InMemoryObjectStore) -> None:
        with pytest.raises(NotFoundError):
            ServiceRecordStore(object_store).load("osd", make_cluster_deployment())

    def test_save_creates_owned_config_map(self, object_store: InMemoryObjectStore) -> None:
        records = ServiceRecordStore(object_store)
        cd = make_cluster_deployment()

        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))

        config_map = object_store.get(ConfigMap, "uhc-cluster1", "osd-cluster1-pd-config")
        assert config_map.metadata.owner_references[0].name == "cluster1"
        assert records.load("osd", cd).service_id == "PSVC1"

    def test_save_overwrites(self, object_store: InMemoryObjectStore) -> None:
        records = ServiceRecordStore(object_store)
        cd = make_cluster_deployment()

        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))
        records.save("osd", cd, ServiceRecord(service_id="PSVC1", hibernating=True))

        assert records.load("osd", cd).hibernating

    def test_unchanged_save_does_not_write(self, object_store: InMemoryObjectStore) -> None:
        records = ServiceRecordStore(object_store)
        cd = make_cluster_deployment()
        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))

        events = []
        object_store.watch(events.append)
        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))

        assert events == []

    def test_delete(self, object_store: InMemoryObjectStore) -> None:
        records = ServiceRecordStore(object_store)
        cd = make_cluster_deployment()
        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))

        assert records.delete("osd", cd)
        assert not records.delete("osd", cd)

    def test_prefixes_are_separate(self, object_store: InMemoryObjectStore) -> None:
        records = ServiceRecordStore(object_store)
        cd = make_cluster_deployment()
        records.save("osd", cd, ServiceRecord(service_id="PSVC1"))

        with pytest.raises(NotFoundError):
            records.load("fedramp", cd)
