"""In-memory PagerDuty backend and ServiceClient.

A MockPagerDuty instance holds the state of a fake PagerDuty account.
Clients built by its ``client_factory`` share that state, record every
call, and fail on demand.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from pagerduty_operator.service_client import (
    ClientSettings,
    CreatedService,
    ServiceClientError,
    ServiceInfo,
    ServiceNotFoundError,
    ServiceParams,
    wait_for_incidents_to_resolve,
)


@dataclass
class MockService:
    """State of one fake PagerDuty service."""

    service_id: str
    name: str
    description: str
    escalation_policy_id: str
    resolve_timeout: int = 0
    acknowledge_timeout: int = 0
    status: str = "active"
    integrations: dict[str, str] = field(default_factory=dict)
    alert_grouping_type: str = ""
    alert_grouping_timeout: int = 0
    orchestration_enabled: bool = False
    orchestration_rules: dict[str, Any] | None = None
    # Polls left before open incidents report as resolved
    unresolved_polls: int = 0


@dataclass(frozen=True)
class MockCall:
    """A recorded client call."""

    operation: str
    args: tuple[Any, ...]
    api_key: str


class MockPagerDuty:
    """Fake PagerDuty account.

    Usage:
        pagerduty = MockPagerDuty()
        reconciler = Reconciler(config, store, pagerduty.client_factory)
        ...
        assert pagerduty.call_count("create_service") == 1
    """

    def __init__(self) -> None:
        self.services: dict[str, MockService] = {}
        self.calls: list[MockCall] = []
        self.api_keys: list[str] = []
        self.client_settings: list[ClientSettings] = []
        # Delays requested between incident polls, never actually slept
        self.sleeps: list[float] = []
        self._failures: dict[str, list[Exception]] = {}
        self._permanent_failures: dict[str, Exception] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    # -- test controls ---------------------------------------------------------

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call of an operation raise."""
        self._failures.setdefault(operation, []).append(
            error or ServiceClientError(f"injected {operation} failure")
        )

    def fail_always(self, operation: str, error: Exception | None = None) -> None:
        """Make every call of an operation raise until ``recover`` is called."""
        self._permanent_failures[operation] = error or ServiceClientError(
            f"injected {operation} failure"
        )

    def recover(self, operation: str | None = None) -> None:
        if operation is None:
            self._failures.clear()
            self._permanent_failures.clear()
        else:
            self._failures.pop(operation, None)
            self._permanent_failures.pop(operation, None)

    def add_service(self, name: str = "existing", escalation_policy_id: str = "PEP1") -> MockService:
        """Create a service directly in the account."""
        with self._lock:
            service = self._new_service(name, "", escalation_policy_id)
        return service

    def open_incidents(self, service_id: str, polls: int) -> None:
        """Leave incidents open on a service for ``polls`` polls."""
        self.services[service_id].unresolved_polls = polls

    def call_count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call.operation == operation)

    def operations(self) -> list[str]:
        return [call.operation for call in self.calls]

    def service_named(self, name: str) -> MockService | None:
        for service in self.services.values():
            if service.name == name:
                return service
        return None

    def client_factory(self, api_key: str, settings: ClientSettings) -> MockServiceClient:
        self.api_keys.append(api_key)
        self.client_settings.append(settings)
        return MockServiceClient(self, api_key, settings)

    # -- internals used by the client -----------------------------------------

    def _record(self, operation: str, args: tuple[Any, ...], api_key: str) -> None:
        with self._lock:
            self.calls.append(MockCall(operation, args, api_key))
            queued = self._failures.get(operation)
            if queued:
                raise queued.pop(0)
            permanent = self._permanent_failures.get(operation)
        if permanent is not None:
            raise permanent

    def _new_service(self, name: str, description: str, escalation_policy_id: str) -> MockService:
        service_id = f"PSVC{self._next_id:04d}"
        self._next_id += 1
        service = MockService(
            service_id=service_id,
            name=name,
            description=description,
            escalation_policy_id=escalation_policy_id,
        )
        self.services[service_id] = service
        return service

    def _get(self, service_id: str) -> MockService:
        service = self.services.get(service_id)
        if service is None:
            raise ServiceNotFoundError(service_id)
        return service

    def _count_unresolved(self, service_id: str) -> int:
        service = self._get(service_id)
        if service.unresolved_polls > 0:
            service.unresolved_polls -= 1
            return 1
        return 0


class MockServiceClient:
    """ServiceClient backed by a MockPagerDuty account."""

    def __init__(self, backend: MockPagerDuty, api_key: str, settings: ClientSettings) -> None:
        self._backend = backend
        self.api_key = api_key
        self.settings = settings

    def create_service(self, params: ServiceParams) -> CreatedService:
        self._backend._record("create_service", (params,), self.api_key)
        backend = self._backend
        with backend._lock:
            service = backend.service_named(params.name)
            if service is None:
                service = backend._new_service(
                    params.name, params.description, params.escalation_policy_id
                )
                service.resolve_timeout = params.resolve_timeout
                service.acknowledge_timeout = params.acknowledge_timeout

        integration_id = f"PINT{service.service_id[4:]}"
        service.integrations.setdefault(integration_id, f"key-{service.service_id}")
        return CreatedService(
            service_id=service.service_id,
            integration_id=integration_id,
            escalation_policy_id=service.escalation_policy_id,
        )

    def get_service(self, service_id: str) -> ServiceInfo:
        self._backend._record("get_service", (service_id,), self.api_key)
        service = self._backend._get(service_id)
        return ServiceInfo(
            service_id=service.service_id,
            name=service.name,
            status=service.status,
            escalation_policy_id=service.escalation_policy_id,
        )

    def delete_service(self, service_id: str) -> None:
        self._backend._record("delete_service", (service_id,), self.api_key)
        self._wait_for_incidents(service_id)
        del self._backend.services[service_id]

    def enable_service(self, service_id: str) -> None:
        self._backend._record("enable_service", (service_id,), self.api_key)
        self._backend._get(service_id).status = "active"

    def disable_service(self, service_id: str) -> None:
        self._backend._record("disable_service", (service_id,), self.api_key)
        self._wait_for_incidents(service_id)
        self._backend._get(service_id).status = "disabled"

    def get_integration_key(self, service_id: str, integration_id: str) -> str:
        self._backend._record("get_integration_key", (service_id, integration_id), self.api_key)
        service = self._backend._get(service_id)
        try:
            return service.integrations[integration_id]
        except KeyError as e:
            raise ServiceClientError(
                f"integration {integration_id} not found on service {service_id}"
            ) from e

    def update_escalation_policy(self, service_id: str, escalation_policy_id: str) -> None:
        self._backend._record(
            "update_escalation_policy", (service_id, escalation_policy_id), self.api_key
        )
        self._backend._get(service_id).escalation_policy_id = escalation_policy_id

    def update_alert_grouping(self, service_id: str, grouping_type: str, timeout: int) -> None:
        self._backend._record(
            "update_alert_grouping", (service_id, grouping_type, timeout), self.api_key
        )
        service = self._backend._get(service_id)
        service.alert_grouping_type = grouping_type
        service.alert_grouping_timeout = timeout

    def toggle_service_orchestration(self, service_id: str, enabled: bool) -> None:
        self._backend._record("toggle_service_orchestration", (service_id, enabled), self.api_key)
        self._backend._get(service_id).orchestration_enabled = enabled

    def apply_service_orchestration_rule(
        self, service_id: str, rule_document: dict[str, Any]
    ) -> None:
        self._backend._record(
            "apply_service_orchestration_rule", (service_id, rule_document), self.api_key
        )
        service = self._backend._get(service_id)
        if not service.orchestration_enabled:
            raise ServiceClientError(f"service orchestration is not enabled on {service_id}")
        service.orchestration_rules = rule_document

    def _wait_for_incidents(self, service_id: str) -> None:
        wait_for_incidents_to_resolve(
            service_id,
            lambda: self._backend._count_unresolved(service_id),
            max_attempts=self.settings.incident_resolve_max_attempts,
            delay_seconds=self.settings.incident_resolve_delay_seconds,
            sleep=self._backend.sleeps.append,
        )


__all__ = [
    "MockCall",
    "MockPagerDuty",
    "MockService",
    "MockServiceClient",
]
