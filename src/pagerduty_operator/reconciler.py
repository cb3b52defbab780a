"""Core reconciliation of a PagerDutyIntegration.

One pass over an integration:
1. Load the integration and every ClusterDeployment
2. Load the PagerDuty API key and build a client
3. Integration being deleted: tear down every cluster it finalized, then
   release the integration
4. Otherwise tear down clusters that are finalized but no longer selected
   (or being deleted) and converge every selected cluster: service,
   integration key secret, SyncSet, escalation policy, alert grouping,
   then hibernation, limited support and service orchestration

Every cluster is processed independently; errors are collected and the
pass fails with all of them, so the dispatcher retries it with backoff.

Blocking calls (object store and PagerDuty) run in the default executor
under a deadline so that a hung API never stalls a worker.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from .config import (
    API_KEY_SECRET_KEY,
    INTEGRATION_FINALIZER,
    INTEGRATION_KEY_SECRET_KEY,
    LEGACY_FINALIZER,
    SECRET_SUFFIX,
    SERVICE_ORCHESTRATION_DATA_KEY,
    OperatorConfig,
    resource_name,
)
from .finalizers import (
    add_finalizer,
    cluster_deployment_finalizer,
    has_finalizer,
    patch_finalizers,
    remove_finalizer,
)
from .lifecycle import (
    ExistenceAction,
    ServiceAction,
    Transition,
    existence_action,
    hibernation_transition,
    limited_support_transition,
    orchestration_applies,
    rule_hash,
    rule_needs_apply,
)
from .metrics import OperatorMetrics, ReconcileOutcome
from .models import (
    ClusterDeployment,
    ConfigMap,
    KubeObject,
    ObjectMeta,
    PagerDutyIntegration,
    Secret,
    SecretMapping,
    SecretReference,
    SyncSet,
    SyncSetSpec,
)
from .selector import CompiledSelector, SelectorError, integration_selector
from .service_client import (
    ClientFactory,
    ClientSettings,
    ServiceClient,
    ServiceClientError,
    ServiceNotFoundError,
    ServiceParams,
)
from .state_store import ServiceRecord, ServiceRecordStore, owner_reference
from .store import NotFoundError, ObjectStore, StoreError

T = TypeVar("T")
K = TypeVar("K", bound=KubeObject)


class PolicyConfigError(Exception):
    """The integration is misconfigured. Retrying will not help until it is fixed."""

    pass


class CredentialsError(Exception):
    """The PagerDuty API key could not be loaded."""

    pass


class ReconcileErrors(Exception):
    """Errors collected from the clusters of one pass."""

    def __init__(self, errors: list[Exception]) -> None:
        if not errors:
            raise ValueError("ReconcileErrors requires at least one error")
        self.errors = list(errors)
        message = str(self.errors[0])
        if len(self.errors) > 1:
            message += f" - {len(self.errors) - 1} other errors"
        super().__init__(message)

    @property
    def has_config_error(self) -> bool:
        return any(isinstance(e, PolicyConfigError | SelectorError) for e in self.errors)


# Per-cluster errors that are collected instead of aborting the pass
CLUSTER_ERRORS = (ServiceClientError, StoreError, PolicyConfigError)


def _error_type(error: Exception) -> str:
    if isinstance(error, PolicyConfigError | SelectorError):
        return "config"
    return "transient"


@dataclass
class ReconcileResult:
    """Result of a single reconcile pass."""

    namespace: str
    name: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    requeue_after: float | None = None
    clusters_converged: int = 0
    clusters_torn_down: int = 0
    error: Exception | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the pass succeeded."""
        return self.error is None


class Reconciler:
    """Reconciles PagerDutyIntegrations against ClusterDeployments and PagerDuty.

    The reconciler keeps no state between passes: everything it needs is
    read from the object store and the persisted ServiceRecords, so a crash
    at any point is repaired by the next pass.
    """

    def __init__(
        self,
        config: OperatorConfig,
        store: ObjectStore,
        client_factory: ClientFactory,
        metrics: OperatorMetrics | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            config: Validated operator configuration.
            store: Object store holding integrations, clusters and owned objects.
            client_factory: Builds a PagerDuty client from an API key and the
                client settings derived from config.
            metrics: Metrics sink, a private one is created if omitted.
            logger: Logger, defaults to this module's logger.
        """
        self._config = config
        self._store = store
        self._records = ServiceRecordStore(store)
        self._client_factory = client_factory
        self._client_settings = ClientSettings.from_config(config)
        self._metrics = metrics if metrics is not None else OperatorMetrics()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @property
    def config(self) -> OperatorConfig:
        return self._config

    @property
    def metrics(self) -> OperatorMetrics:
        return self._metrics

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass for an integration. Never raises."""
        result = ReconcileResult(namespace=namespace, name=name)
        started = time.monotonic()

        try:
            await self._reconcile_once(result)
        except CredentialsError as e:
            self._logger.error(
                "Failed to load PagerDuty API key",
                extra={"integration": result.key, "error": str(e)},
            )
            result.requeue_after = self._config.credentials_retry_seconds
        except SelectorError as e:
            self._logger.error(
                "Invalid cluster deployment selector",
                extra={"integration": result.key, "error": str(e), "error_type": "config"},
            )
            result.error = e
        except ReconcileErrors as e:
            result.error = e
        except (ServiceClientError, StoreError) as e:
            self._logger.error(
                "Reconcile pass failed",
                extra={"integration": result.key, "error": str(e), "error_type": "transient"},
            )
            result.error = e
        except Exception as e:
            self._logger.exception(
                "Unexpected error during reconciliation", extra={"integration": result.key}
            )
            result.error = e

        result.end_time = datetime.now(UTC)

        if result.error is not None:
            outcome = ReconcileOutcome.ERROR
        elif result.requeue_after is not None:
            outcome = ReconcileOutcome.REQUEUE
        else:
            outcome = ReconcileOutcome.SUCCESS
        self._metrics.observe_reconcile(time.monotonic() - started, outcome)

        self._log_result(result)
        return result

    async def _reconcile_once(self, result: ReconcileResult) -> None:
        try:
            integration = await self._kube(
                self._store.get, PagerDutyIntegration, result.namespace, result.name
            )
        except NotFoundError:
            self._logger.info("PagerDutyIntegration not found", extra={"integration": result.key})
            return

        cluster_deployments = await self._kube(self._store.list, ClusterDeployment)
        client = await self._load_client(integration)
        finalizer = cluster_deployment_finalizer(integration.name)

        if integration.being_deleted:
            await self._release_integration(client, integration, cluster_deployments, result)
            return

        integration = await self._patch_finalizers(
            integration, lambda obj: add_finalizer(obj, INTEGRATION_FINALIZER)
        )

        selector = integration_selector(integration)
        errors: list[Exception] = []

        for cluster_deployment in cluster_deployments:
            action = existence_action(
                finalized=has_finalizer(cluster_deployment, finalizer),
                selected=selector.matches(cluster_deployment.labels),
                being_deleted=cluster_deployment.being_deleted,
            )
            if action == ExistenceAction.NONE:
                continue

            cluster_deployment = await self._drop_legacy_finalizer(cluster_deployment)

            if action == ExistenceAction.TEARDOWN:
                self._logger.info(
                    "Cleaning up cluster deployment",
                    extra={
                        "integration": integration.name,
                        "cluster_deployment": cluster_deployment.name,
                        "being_deleted": cluster_deployment.being_deleted,
                    },
                )
                try:
                    await self._teardown(client, integration, cluster_deployment)
                    result.clusters_torn_down += 1
                except CLUSTER_ERRORS as e:
                    self._record_cluster_error(errors, e, integration, cluster_deployment, "teardown")
            else:
                await self._process_cluster(
                    client, integration, cluster_deployment, selector, errors, result
                )

        if errors:
            raise ReconcileErrors(errors)

    async def _process_cluster(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        selector: CompiledSelector,
        errors: list[Exception],
        result: ReconcileResult,
    ) -> None:
        """Converge one selected cluster, then run the toggle axes."""
        try:
            record = await self._converge(client, integration, cluster_deployment)
        except CLUSTER_ERRORS as e:
            self._record_cluster_error(errors, e, integration, cluster_deployment, "converge")
            return

        if record is None:
            return
        result.clusters_converged += 1

        steps: list[tuple[str, Callable[[], Any]]] = [
            (
                "hibernation",
                lambda: self._apply_transition(
                    client,
                    integration,
                    cluster_deployment,
                    record,
                    hibernation_transition(cluster_deployment, record),
                    "hibernating",
                ),
            ),
            (
                "limited_support",
                lambda: self._apply_transition(
                    client,
                    integration,
                    cluster_deployment,
                    record,
                    limited_support_transition(cluster_deployment, record),
                    "limited_support",
                ),
            ),
            (
                "orchestration",
                lambda: self._orchestrate(client, integration, cluster_deployment, record, selector),
            ),
        ]
        for step_name, step in steps:
            try:
                await step()
            except CLUSTER_ERRORS as e:
                self._record_cluster_error(errors, e, integration, cluster_deployment, step_name)

    # =========================================================================
    # Credentials and integration lifecycle
    # =========================================================================

    async def _load_client(self, integration: PagerDutyIntegration) -> ServiceClient:
        """Build a PagerDuty client from the integration's API key secret.

        Raises:
            CredentialsError: If the secret or its key is missing.
        """
        ref = integration.spec.pagerduty_api_key_secret_ref
        try:
            secret = await self._kube(self._store.get, Secret, ref.namespace, ref.name)
        except NotFoundError as e:
            self._metrics.set_secret_loaded(integration.name, False)
            raise CredentialsError(f"secret {ref.namespace}/{ref.name} not found") from e

        api_key = secret.data.get(API_KEY_SECRET_KEY, "")
        if not api_key:
            self._metrics.set_secret_loaded(integration.name, False)
            raise CredentialsError(
                f"secret {ref.namespace}/{ref.name} has no {API_KEY_SECRET_KEY} key"
            )

        self._metrics.set_secret_loaded(integration.name, True)
        return self._client_factory(api_key, self._client_settings)

    async def _release_integration(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployments: list[ClusterDeployment],
        result: ReconcileResult,
    ) -> None:
        """Tear down every finalized cluster, then drop the integration finalizer."""
        if not has_finalizer(integration, INTEGRATION_FINALIZER):
            return

        finalizer = cluster_deployment_finalizer(integration.name)
        errors: list[Exception] = []

        for cluster_deployment in cluster_deployments:
            if not has_finalizer(cluster_deployment, finalizer):
                continue
            try:
                await self._teardown(client, integration, cluster_deployment)
                result.clusters_torn_down += 1
            except CLUSTER_ERRORS as e:
                self._record_cluster_error(errors, e, integration, cluster_deployment, "teardown")

        if errors:
            raise ReconcileErrors(errors)

        self._metrics.remove_integration(integration.name)
        await self._patch_finalizers(
            integration, lambda obj: remove_finalizer(obj, INTEGRATION_FINALIZER)
        )
        self._logger.info(
            "Released PagerDutyIntegration", extra={"integration": integration.name}
        )

    async def _drop_legacy_finalizer(self, cluster_deployment: ClusterDeployment) -> ClusterDeployment:
        """Remove the finalizer of the older schema. Failures are only logged."""
        if not has_finalizer(cluster_deployment, LEGACY_FINALIZER):
            return cluster_deployment

        try:
            return await self._patch_finalizers(
                cluster_deployment, lambda obj: remove_finalizer(obj, LEGACY_FINALIZER)
            )
        except StoreError as e:
            self._logger.warning(
                "Failed to remove legacy finalizer",
                extra={"cluster_deployment": cluster_deployment.name, "error": str(e)},
            )
            return cluster_deployment

    # =========================================================================
    # Existence
    # =========================================================================

    async def _converge(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
    ) -> ServiceRecord | None:
        """Make sure the service, secret and SyncSet exist and are current.

        Returns the refreshed record, or None if the cluster is not installed.
        """
        if not cluster_deployment.spec.installed:
            return None

        spec = integration.spec
        if not spec.escalation_policy:
            raise PolicyConfigError(
                f"PagerDutyIntegration {integration.name} has no escalation policy"
            )

        # The finalizer must be persisted before anything is created
        finalizer = cluster_deployment_finalizer(integration.name)
        cluster_deployment = await self._patch_finalizers(
            cluster_deployment, lambda obj: add_finalizer(obj, finalizer)
        )

        prefix = spec.service_prefix
        try:
            record = await self._kube(self._records.load, prefix, cluster_deployment)
        except NotFoundError:
            record = ServiceRecord()

        if not record.service_created:
            params = ServiceParams.for_cluster(integration, cluster_deployment, self._config.fedramp)
            self._logger.info(
                "Creating PagerDuty service",
                extra={
                    "integration": integration.name,
                    "cluster_deployment": cluster_deployment.name,
                    "service_name": params.name,
                },
            )
            try:
                created = await self._pd("create_service", client.create_service, params)
            except ServiceClientError:
                self._metrics.set_create_failure(integration.name, cluster_deployment.name, True)
                raise
            self._metrics.set_create_failure(integration.name, cluster_deployment.name, False)

            record.service_id = created.service_id
            record.integration_id = created.integration_id
            record.escalation_policy_id = created.escalation_policy_id
            await self._kube(self._records.save, prefix, cluster_deployment, record)

        integration_key = await self._pd(
            "get_integration_key",
            client.get_integration_key,
            record.service_id,
            record.integration_id,
        )
        secret_name = resource_name(prefix, cluster_deployment.name, SECRET_SUFFIX)
        await self._ensure_secret(cluster_deployment, secret_name, integration_key)
        await self._ensure_sync_set(integration, cluster_deployment, secret_name)

        if record.escalation_policy_id != spec.escalation_policy:
            self._logger.info(
                "Updating escalation policy",
                extra={
                    "cluster_deployment": cluster_deployment.name,
                    "service_id": record.service_id,
                    "escalation_policy": spec.escalation_policy,
                },
            )
            await self._pd(
                "update_escalation_policy",
                client.update_escalation_policy,
                record.service_id,
                spec.escalation_policy,
            )
            record.escalation_policy_id = spec.escalation_policy

        grouping = spec.alert_grouping_parameters
        if grouping is not None and (grouping.type, grouping.timeout) != (
            record.alert_grouping_type,
            record.alert_grouping_timeout,
        ):
            await self._pd(
                "update_alert_grouping",
                client.update_alert_grouping,
                record.service_id,
                grouping.type,
                grouping.timeout,
            )
            record.alert_grouping_type = grouping.type
            record.alert_grouping_timeout = grouping.timeout

        await self._kube(self._records.save, prefix, cluster_deployment, record)
        return record

    async def _ensure_secret(
        self, cluster_deployment: ClusterDeployment, name: str, integration_key: str
    ) -> None:
        """Create the integration key secret, replacing it if the key changed."""
        namespace = cluster_deployment.namespace
        desired = Secret(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                owner_references=[owner_reference(cluster_deployment)],
            ),
            data={INTEGRATION_KEY_SECRET_KEY: integration_key},
        )

        try:
            existing = await self._kube(self._store.get, Secret, namespace, name)
        except NotFoundError:
            await self._kube(self._store.create, desired)
            return

        if existing.data.get(INTEGRATION_KEY_SECRET_KEY) == integration_key:
            return

        self._logger.info(
            "Integration key changed, recreating secret",
            extra={"namespace": namespace, "secret": name},
        )
        await self._kube(self._store.delete, Secret, namespace, name)
        await self._kube(self._store.create, desired)

    async def _ensure_sync_set(
        self,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        secret_name: str,
    ) -> None:
        """Create the SyncSet copying the secret into the cluster if missing."""
        namespace = cluster_deployment.namespace
        try:
            await self._kube(self._store.get, SyncSet, namespace, secret_name)
            return
        except NotFoundError:
            pass

        sync_set = SyncSet(
            metadata=ObjectMeta(
                name=secret_name,
                namespace=namespace,
                owner_references=[owner_reference(cluster_deployment)],
            ),
            spec=SyncSetSpec(
                cluster_deployment_refs=[cluster_deployment.name],
                secrets=[
                    SecretMapping(
                        source_ref=SecretReference(name=secret_name, namespace=namespace),
                        target_ref=integration.spec.target_secret_ref,
                    )
                ],
            ),
        )
        await self._kube(self._store.create, sync_set)

    async def _teardown(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
    ) -> None:
        """Delete the service and owned objects, then release the cluster."""
        finalizer = cluster_deployment_finalizer(integration.name)
        if not has_finalizer(cluster_deployment, finalizer):
            return

        try:
            await self._delete_service(client, integration, cluster_deployment)
            await self._delete_owned(integration, cluster_deployment)

            try:
                await self._patch_finalizers(
                    cluster_deployment, lambda obj: remove_finalizer(obj, finalizer)
                )
            except NotFoundError:
                # Object already gone and our finalizer with it
                pass
        except CLUSTER_ERRORS:
            self._metrics.set_delete_failure(integration.name, cluster_deployment.name, True)
            raise

        self._metrics.set_delete_failure(integration.name, cluster_deployment.name, False)

    async def _delete_service(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
    ) -> None:
        prefix = integration.spec.service_prefix
        try:
            record = await self._kube(self._records.load, prefix, cluster_deployment)
        except NotFoundError:
            self._logger.info(
                "No service record, skipping PagerDuty service deletion",
                extra={"cluster_deployment": cluster_deployment.name},
            )
            return

        if record.service_created:
            try:
                await self._pd("get_service", client.get_service, record.service_id)
            except ServiceNotFoundError:
                self._logger.info(
                    "PagerDuty service not found, skipping deletion",
                    extra={
                        "cluster_deployment": cluster_deployment.name,
                        "service_id": record.service_id,
                    },
                )
            else:
                self._logger.info(
                    "Deleting PagerDuty service",
                    extra={
                        "cluster_deployment": cluster_deployment.name,
                        "service_id": record.service_id,
                    },
                )
                await self._pd("delete_service", client.delete_service, record.service_id)

        # The record goes only once the service it names is gone
        await self._kube(self._records.delete, prefix, cluster_deployment)

    async def _delete_owned(
        self, integration: PagerDutyIntegration, cluster_deployment: ClusterDeployment
    ) -> None:
        """Delete the secret and SyncSet. Failures are logged and skipped."""
        name = resource_name(integration.spec.service_prefix, cluster_deployment.name, SECRET_SUFFIX)
        namespace = cluster_deployment.namespace

        for kind in (Secret, SyncSet):
            try:
                await self._kube(self._store.delete, kind, namespace, name)
            except NotFoundError:
                pass
            except StoreError as e:
                self._logger.warning(
                    f"Failed to delete {kind.KIND.value}",
                    extra={"namespace": namespace, "name": name, "error": str(e)},
                )

    # =========================================================================
    # Toggles
    # =========================================================================

    async def _apply_transition(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        record: ServiceRecord,
        transition: Transition,
        flag_name: str,
    ) -> None:
        """Perform the call a transition asks for, then persist its flag."""
        if transition.is_noop:
            return

        self._logger.info(
            "Applying service transition",
            extra={
                "cluster_deployment": cluster_deployment.name,
                "service_id": record.service_id,
                "action": transition.action.value,
                "flag": flag_name,
                "value": transition.flag,
            },
        )

        if transition.action == ServiceAction.DISABLE:
            await self._pd("disable_service", client.disable_service, record.service_id)
        elif transition.action == ServiceAction.ENABLE:
            await self._pd("enable_service", client.enable_service, record.service_id)

        if transition.flag is not None:
            setattr(record, flag_name, transition.flag)
            await self._kube(
                self._records.save, integration.spec.service_prefix, cluster_deployment, record
            )

    async def _orchestrate(
        self,
        client: ServiceClient,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        record: ServiceRecord,
        selector: CompiledSelector,
    ) -> None:
        """Enable service orchestration, then apply the current rule set."""
        ref = integration.spec.service_orchestration.rule_config_config_map_ref
        if ref is None or not orchestration_applies(integration, cluster_deployment, record):
            return

        prefix = integration.spec.service_prefix

        if not record.orchestration_enabled:
            self._logger.info(
                "Enabling service orchestration",
                extra={"cluster_deployment": cluster_deployment.name, "service_id": record.service_id},
            )
            await self._pd(
                "toggle_service_orchestration",
                client.toggle_service_orchestration,
                record.service_id,
                True,
            )
            record.orchestration_enabled = True
            await self._kube(self._records.save, prefix, cluster_deployment, record)

        namespace = ref.namespace or self._config.operator_namespace

        try:
            source = await self._kube(self._store.get, ConfigMap, namespace, ref.name)
        except NotFoundError:
            source = None

        payload = source.data.get(SERVICE_ORCHESTRATION_DATA_KEY) if source else None
        if source is None or payload is None:
            self._logger.info(
                "No service orchestration rules found, skipping",
                extra={
                    "integration": integration.name,
                    "config_map": f"{namespace}/{ref.name}",
                    "data_key": SERVICE_ORCHESTRATION_DATA_KEY,
                },
            )
            self._metrics.set_orchestration_failure(integration.name, True)
            return

        if not selector.matches(source.labels):
            self._logger.info(
                "Service orchestration rules not selected by integration, skipping",
                extra={"integration": integration.name, "config_map": f"{namespace}/{ref.name}"},
            )
            return

        try:
            document = json.loads(payload)
        except json.JSONDecodeError as e:
            raise PolicyConfigError(
                f"invalid service orchestration rules in {namespace}/{ref.name}: {e}"
            ) from e
        if not isinstance(document, dict):
            raise PolicyConfigError(
                f"service orchestration rules in {namespace}/{ref.name} must be a JSON object"
            )
        self._metrics.set_orchestration_failure(integration.name, False)

        document_hash = rule_hash(document)
        if not rule_needs_apply(record, document_hash):
            return

        self._logger.info(
            "Applying service orchestration rules",
            extra={"cluster_deployment": cluster_deployment.name, "service_id": record.service_id},
        )
        await self._pd(
            "apply_service_orchestration_rule",
            client.apply_service_orchestration_rule,
            record.service_id,
            document,
        )
        record.orchestration_rule_applied = True
        record.orchestration_rule_hash = document_hash
        await self._kube(self._records.save, prefix, cluster_deployment, record)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _pd(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Call PagerDuty with a deadline. A timeout is a ServiceClientError."""
        started = time.monotonic()
        try:
            return await self._execute_with_timeout(func, *args)
        except TimeoutError as e:
            raise ServiceClientError(
                f"{operation} timed out after {self._config.api_timeout_seconds}s"
            ) from e
        finally:
            self._metrics.observe_api_call(operation, time.monotonic() - started)

    async def _patch_finalizers(self, obj: K, mutate: Callable[[Any], bool]) -> K:
        """Write a finalizer change, re-reading the object on conflict.

        The helper gets the same deadline as the await, so a write abandoned
        on timeout is not attempted after this pass gave up on it.
        """
        deadline = time.monotonic() + self._config.api_timeout_seconds
        patch = functools.partial(patch_finalizers, deadline=deadline)
        return await self._kube(patch, self._store, obj, mutate)

    async def _kube(self, func: Callable[..., T], *args: Any) -> T:
        """Call the object store with a deadline. A timeout is a StoreError."""
        try:
            return await self._execute_with_timeout(func, *args)
        except TimeoutError as e:
            raise StoreError(
                f"{getattr(func, '__name__', 'store call')} timed out after "
                f"{self._config.api_timeout_seconds}s"
            ) from e

    async def _execute_with_timeout(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(func, *args)),
            timeout=self._config.api_timeout_seconds,
        )

    def _record_cluster_error(
        self,
        errors: list[Exception],
        error: Exception,
        integration: PagerDutyIntegration,
        cluster_deployment: ClusterDeployment,
        step: str,
    ) -> None:
        errors.append(error)
        self._logger.error(
            "Cluster deployment step failed",
            extra={
                "integration": integration.name,
                "cluster_deployment": cluster_deployment.name,
                "step": step,
                "error": str(error),
                "error_type": _error_type(error),
            },
        )

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconcile result with structured data."""
        extra: dict[str, Any] = {
            "integration": result.key,
            "duration_seconds": result.duration_seconds,
            "clusters_converged": result.clusters_converged,
            "clusters_torn_down": result.clusters_torn_down,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            if isinstance(result.error, ReconcileErrors) and result.error.has_config_error:
                extra["error_type"] = "config"
            self._logger.error("Reconciliation failed", extra=extra)
        elif result.requeue_after is not None:
            extra["requeue_after"] = result.requeue_after
            self._logger.warning("Reconciliation requeued", extra=extra)
        else:
            self._logger.info("Reconciliation result", extra=extra)
