"""PagerDuty service client interface.

The reconciler talks to PagerDuty only through the ``ServiceClient``
protocol. A client is built per reconcile from the integration's API key
and the operator's ``ClientSettings`` by a ``ClientFactory``.
Implementations are synchronous; the reconciler runs them in an executor
under the same deadline it hands to the client, so a request that outlives
its caller is abandoned by the client too.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .config import OperatorConfig
from .models import ClusterDeployment, PagerDutyIntegration

logger = logging.getLogger(__name__)

SERVICE_NAME_SUFFIX = "-hive-cluster"
SERVICE_DESCRIPTION_SUFFIX = " - A managed hive created cluster"


class ServiceClientError(Exception):
    """A PagerDuty call failed. Treated as transient and retried."""

    pass


class ServiceNotFoundError(ServiceClientError):
    """The service does not exist in PagerDuty."""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"PagerDuty service {service_id} not found")


class IncidentsPendingError(ServiceClientError):
    """Open incidents did not resolve in time."""

    def __init__(self, service_id: str, remaining: int, attempts: int) -> None:
        self.service_id = service_id
        self.remaining = remaining
        self.attempts = attempts
        super().__init__(
            f"timed out waiting for incidents of service {service_id} to resolve: "
            f"{remaining} left after {attempts} attempts"
        )


@dataclass(frozen=True)
class ServiceParams:
    """Everything needed to create a PagerDuty service for one cluster."""

    service_prefix: str
    cluster_id: str
    base_domain: str
    escalation_policy_id: str
    resolve_timeout: int = 0
    acknowledge_timeout: int = 0
    fedramp: bool = False

    @classmethod
    def for_cluster(
        cls,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        fedramp: bool = False,
    ) -> ServiceParams:
        spec = integration.spec
        return cls(
            service_prefix=spec.service_prefix,
            cluster_id=cluster_deployment.cluster_id,
            base_domain=cluster_deployment.spec.base_domain,
            escalation_policy_id=spec.escalation_policy,
            resolve_timeout=spec.resolve_timeout,
            acknowledge_timeout=spec.acknowledge_timeout,
            fedramp=fedramp,
        )

    @property
    def name(self) -> str:
        """Service name. FedRAMP names omit the cluster's base domain."""
        if self.fedramp:
            return f"{self.service_prefix}-{self.cluster_id}"
        return f"{self.service_prefix}-{self.cluster_id}.{self.base_domain}{SERVICE_NAME_SUFFIX}"

    @property
    def description(self) -> str:
        if self.fedramp:
            return ""
        return f"{self.cluster_id}{SERVICE_DESCRIPTION_SUFFIX}"


@dataclass(frozen=True)
class CreatedService:
    """IDs returned by a successful create."""

    service_id: str
    integration_id: str
    escalation_policy_id: str


@dataclass(frozen=True)
class ServiceInfo:
    """Current state of a service in PagerDuty."""

    service_id: str
    name: str
    status: str
    escalation_policy_id: str


class ServiceClient(Protocol):
    """Operations the operator performs against PagerDuty.

    All methods raise ServiceClientError on failure. A request that takes
    longer than ``ClientSettings.request_timeout_seconds`` is abandoned and
    fails; ``delete_service`` and ``disable_service`` drain open incidents
    with ``wait_for_incidents_to_resolve`` using the settings' limits.
    """

    def create_service(self, params: ServiceParams) -> CreatedService:
        """Create the service and its Events API v2 integration.

        An existing service with the same name is adopted.
        """
        ...

    def get_service(self, service_id: str) -> ServiceInfo:
        """Raises ServiceNotFoundError if the service does not exist."""
        ...

    def delete_service(self, service_id: str) -> None: ...

    def enable_service(self, service_id: str) -> None: ...

    def disable_service(self, service_id: str) -> None: ...

    def get_integration_key(self, service_id: str, integration_id: str) -> str: ...

    def update_escalation_policy(self, service_id: str, escalation_policy_id: str) -> None: ...

    def update_alert_grouping(self, service_id: str, grouping_type: str, timeout: int) -> None: ...

    def toggle_service_orchestration(self, service_id: str, enabled: bool) -> None: ...

    def apply_service_orchestration_rule(
        self, service_id: str, rule_document: dict[str, Any]
    ) -> None: ...


@dataclass(frozen=True)
class ClientSettings:
    """Limits a client applies to its own requests."""

    request_timeout_seconds: float
    incident_resolve_max_attempts: int
    incident_resolve_delay_seconds: float

    @classmethod
    def from_config(cls, config: OperatorConfig) -> ClientSettings:
        return cls(
            request_timeout_seconds=config.api_timeout_seconds,
            incident_resolve_max_attempts=config.incident_resolve_max_attempts,
            incident_resolve_delay_seconds=config.incident_resolve_delay_seconds,
        )


# Builds a client from an API key
ClientFactory = Callable[[str, ClientSettings], ServiceClient]


def wait_for_incidents_to_resolve(
    service_id: str,
    count_unresolved: Callable[[], int],
    max_attempts: int,
    delay_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll until a service has no unresolved incidents.

    Client implementations call this before deleting or disabling a
    service, after asking PagerDuty to resolve the open alerts.

    Args:
        service_id: Service whose incidents are polled.
        count_unresolved: Returns the number of unresolved incidents.
        max_attempts: Number of polls before giving up.
        delay_seconds: Sleep between polls.
        sleep: Sleep function, replaceable in tests.

    Raises:
        IncidentsPendingError: If incidents remain after max_attempts polls.
    """
    remaining = 0
    for attempt in range(1, max_attempts + 1):
        remaining = count_unresolved()
        if remaining == 0:
            return

        logger.info(
            "Waiting for incidents to resolve",
            extra={
                "service_id": service_id,
                "unresolved": remaining,
                "attempt": attempt,
                "max_attempts": max_attempts,
            },
        )
        if attempt < max_attempts:
            sleep(delay_seconds)

    raise IncidentsPendingError(service_id, remaining, max_attempts)
