"""Persisted per-cluster service state.

A ServiceRecord remembers which PagerDuty service was created for a
ClusterDeployment and which toggles were last applied to it. It is stored
as a ConfigMap named ``<prefix>-<cluster>-pd-config`` next to the
ClusterDeployment, owned by it, with flat string data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import CONFIG_MAP_SUFFIX, resource_name
from .models import ClusterDeployment, ConfigMap, ObjectMeta, OwnerReference
from .store import AlreadyExistsError, NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

# ConfigMap data keys
SERVICE_ID_KEY = "SERVICE_ID"
INTEGRATION_ID_KEY = "INTEGRATION_ID"
ESCALATION_POLICY_ID_KEY = "ESCALATION_POLICY_ID"
HIBERNATING_KEY = "HIBERNATING"
LIMITED_SUPPORT_KEY = "LIMITED_SUPPORT"
ORCHESTRATION_ENABLED_KEY = "SERVICE_ORCHESTRATION_ENABLED"
ORCHESTRATION_RULE_APPLIED_KEY = "SERVICE_ORCHESTRATION_RULE_APPLIED"
ORCHESTRATION_RULE_HASH_KEY = "SERVICE_ORCHESTRATION_RULE_HASH"
ALERT_GROUPING_TYPE_KEY = "ALERT_GROUPING_TYPE"
ALERT_GROUPING_TIMEOUT_KEY = "ALERT_GROUPING_TIMEOUT"


def _encode_bool(value: bool) -> str:
    return "true" if value else "false"


def _decode_bool(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


@dataclass
class ServiceRecord:
    """State of the PagerDuty service created for one ClusterDeployment."""

    service_id: str = ""
    integration_id: str = ""
    escalation_policy_id: str = ""
    hibernating: bool = False
    limited_support: bool = False
    orchestration_enabled: bool = False
    orchestration_rule_applied: bool = False
    orchestration_rule_hash: str = ""
    alert_grouping_type: str = ""
    alert_grouping_timeout: int = 0

    @property
    def service_created(self) -> bool:
        return self.service_id != ""

    @classmethod
    def from_data(cls, data: dict[str, str]) -> ServiceRecord:
        """Decode ConfigMap data. Missing keys take their defaults."""
        try:
            timeout = int(data.get(ALERT_GROUPING_TIMEOUT_KEY) or 0)
        except ValueError:
            timeout = 0

        enabled = _decode_bool(data.get(ORCHESTRATION_ENABLED_KEY))
        return cls(
            service_id=data.get(SERVICE_ID_KEY, ""),
            integration_id=data.get(INTEGRATION_ID_KEY, ""),
            escalation_policy_id=data.get(ESCALATION_POLICY_ID_KEY, ""),
            hibernating=_decode_bool(data.get(HIBERNATING_KEY)),
            limited_support=_decode_bool(data.get(LIMITED_SUPPORT_KEY)),
            orchestration_enabled=enabled,
            # A rule can only be applied on a service with orchestration on
            orchestration_rule_applied=enabled
            and _decode_bool(data.get(ORCHESTRATION_RULE_APPLIED_KEY)),
            orchestration_rule_hash=data.get(ORCHESTRATION_RULE_HASH_KEY, ""),
            alert_grouping_type=data.get(ALERT_GROUPING_TYPE_KEY, ""),
            alert_grouping_timeout=timeout,
        )

    def to_data(self) -> dict[str, str]:
        """Encode as ConfigMap data."""
        return {
            SERVICE_ID_KEY: self.service_id,
            INTEGRATION_ID_KEY: self.integration_id,
            ESCALATION_POLICY_ID_KEY: self.escalation_policy_id,
            HIBERNATING_KEY: _encode_bool(self.hibernating),
            LIMITED_SUPPORT_KEY: _encode_bool(self.limited_support),
            ORCHESTRATION_ENABLED_KEY: _encode_bool(self.orchestration_enabled),
            ORCHESTRATION_RULE_APPLIED_KEY: _encode_bool(self.orchestration_rule_applied),
            ORCHESTRATION_RULE_HASH_KEY: self.orchestration_rule_hash,
            ALERT_GROUPING_TYPE_KEY: self.alert_grouping_type,
            ALERT_GROUPING_TIMEOUT_KEY: str(self.alert_grouping_timeout),
        }


def owner_reference(cluster_deployment: ClusterDeployment) -> OwnerReference:
    """Owner reference pointing at a ClusterDeployment."""
    return OwnerReference(
        api_version=ClusterDeployment.API_VERSION,
        kind=ClusterDeployment.KIND.value,
        name=cluster_deployment.name,
    )


class ServiceRecordStore:
    """Load, save and delete ServiceRecords through an ObjectStore."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    @staticmethod
    def config_map_name(service_prefix: str, cluster_deployment: ClusterDeployment) -> str:
        return resource_name(service_prefix, cluster_deployment.name, CONFIG_MAP_SUFFIX)

    def load(self, service_prefix: str, cluster_deployment: ClusterDeployment) -> ServiceRecord:
        """Load the record for a ClusterDeployment.

        Raises:
            NotFoundError: If no record was saved yet.
        """
        config_map = self._store.get(
            ConfigMap,
            cluster_deployment.namespace,
            self.config_map_name(service_prefix, cluster_deployment),
        )
        return ServiceRecord.from_data(config_map.data)

    def save(
        self,
        service_prefix: str,
        cluster_deployment: ClusterDeployment,
        record: ServiceRecord,
    ) -> None:
        """Create or overwrite the record. An unchanged record is not written."""
        name = self.config_map_name(service_prefix, cluster_deployment)
        namespace = cluster_deployment.namespace
        data = record.to_data()

        try:
            existing = self._store.get(ConfigMap, namespace, name)
        except NotFoundError:
            config_map = ConfigMap(
                metadata=ObjectMeta(
                    name=name,
                    namespace=namespace,
                    owner_references=[owner_reference(cluster_deployment)],
                ),
                data=data,
            )
            try:
                self._store.create(config_map)
                return
            except AlreadyExistsError:
                # Created concurrently, fall through to overwrite
                existing = self._store.get(ConfigMap, namespace, name)

        if existing.data == data:
            return
        existing.data = data
        self._store.update(existing)

    def delete(self, service_prefix: str, cluster_deployment: ClusterDeployment) -> bool:
        """Delete the record. Returns False if there was none."""
        name = self.config_map_name(service_prefix, cluster_deployment)
        try:
            self._store.delete(ConfigMap, cluster_deployment.namespace, name)
        except NotFoundError:
            logger.debug(
                "Service record already gone",
                extra={"namespace": cluster_deployment.namespace, "config_map": name},
            )
            return False
        return True
