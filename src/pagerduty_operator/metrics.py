"""Prometheus metrics for the operator.

Each OperatorMetrics owns its CollectorRegistry so that several instances
(one per test, for example) never collide on metric names.
"""

from __future__ import annotations

import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

INTEGRATION_LABEL = "pagerdutyintegration_name"
CLUSTER_DEPLOYMENT_LABEL = "clusterdeployment_name"


class ReconcileOutcome:
    """Values of the reconcile outcome label."""

    SUCCESS = "success"
    ERROR = "error"
    REQUEUE = "requeue"


class OperatorMetrics:
    """Gauges, counters and histograms exported by the operator."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        # (integration, cluster deployment) pairs with a failure series
        self._cluster_series: set[tuple[str, str]] = set()
        self._integration_series: set[str] = set()

        self._create_failure = Gauge(
            "pagerduty_create_failure",
            "Set to 1 when creating the PagerDuty service of a cluster deployment failed.",
            [INTEGRATION_LABEL, CLUSTER_DEPLOYMENT_LABEL],
            registry=self._registry,
        )
        self._delete_failure = Gauge(
            "pagerduty_delete_failure",
            "Set to 1 when tearing down the PagerDuty service of a cluster deployment failed.",
            [INTEGRATION_LABEL, CLUSTER_DEPLOYMENT_LABEL],
            registry=self._registry,
        )
        self._secret_loaded = Gauge(
            "pagerduty_integration_secret_loaded",
            "Set to 1 when the API key secret of an integration could be loaded.",
            [INTEGRATION_LABEL],
            registry=self._registry,
        )
        self._orchestration_failure = Gauge(
            "pagerduty_service_orchestration_failure",
            "Set to 1 when the service orchestration rule source could not be loaded.",
            [INTEGRATION_LABEL],
            registry=self._registry,
        )
        self._reconcile_total = Counter(
            "pagerduty_reconcile",
            "Reconcile passes by outcome.",
            ["outcome"],
            registry=self._registry,
        )
        self._reconcile_duration = Histogram(
            "pagerduty_reconcile_duration_seconds",
            "Duration of a reconcile pass.",
            registry=self._registry,
        )
        self._api_duration = Histogram(
            "pagerduty_api_call_duration_seconds",
            "Duration of calls made through the PagerDuty client.",
            ["operation"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def set_create_failure(self, integration: str, cluster_deployment: str, failed: bool) -> None:
        self._track(integration, cluster_deployment)
        self._create_failure.labels(integration, cluster_deployment).set(1 if failed else 0)

    def set_delete_failure(self, integration: str, cluster_deployment: str, failed: bool) -> None:
        self._track(integration, cluster_deployment)
        self._delete_failure.labels(integration, cluster_deployment).set(1 if failed else 0)

    def set_secret_loaded(self, integration: str, loaded: bool) -> None:
        with self._lock:
            self._integration_series.add(integration)
        self._secret_loaded.labels(integration).set(1 if loaded else 0)

    def set_orchestration_failure(self, integration: str, failed: bool) -> None:
        with self._lock:
            self._integration_series.add(integration)
        self._orchestration_failure.labels(integration).set(1 if failed else 0)

    def observe_reconcile(self, duration_seconds: float, outcome: str) -> None:
        self._reconcile_duration.observe(duration_seconds)
        self._reconcile_total.labels(outcome).inc()

    def observe_api_call(self, operation: str, duration_seconds: float) -> None:
        self._api_duration.labels(operation).observe(duration_seconds)

    def remove_integration(self, integration: str) -> None:
        """Drop every series labeled with a deleted integration."""
        with self._lock:
            pairs = [pair for pair in self._cluster_series if pair[0] == integration]
            self._cluster_series.difference_update(pairs)
            had_series = integration in self._integration_series
            self._integration_series.discard(integration)

        for pair in pairs:
            for gauge in (self._create_failure, self._delete_failure):
                try:
                    gauge.remove(*pair)
                except KeyError:
                    pass
        if had_series:
            for gauge in (self._secret_loaded, self._orchestration_failure):
                try:
                    gauge.remove(integration)
                except KeyError:
                    pass

    def render(self) -> bytes:
        """Exposition-format snapshot of the registry."""
        return generate_latest(self._registry)

    def _track(self, integration: str, cluster_deployment: str) -> None:
        with self._lock:
            self._cluster_series.add((integration, cluster_deployment))
