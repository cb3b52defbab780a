"""Lifecycle transitions for a (integration, cluster deployment) pair.

Each function here is pure: it looks at the ClusterDeployment and the
persisted ServiceRecord and decides what should happen. The reconciler
performs the calls and persists the result. Keeping decisions separate
from side effects lets every axis be tested on its own.

Axes:
- existence: converge, tear down, or leave alone
- hibernation: disable while hibernating, enable once instances run again
- limited support: disable while limited, a support exception wins
- orchestration: enable orchestration before applying rules
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import LIMITED_SUPPORT_LABEL, SUPPORT_EXCEPTION_LABEL
from .models import (
    HIBERNATING_CONDITION,
    ClusterDeployment,
    ClusterPowerState,
    PagerDutyIntegration,
)
from .state_store import ServiceRecord


class ServiceAction(str, Enum):
    """Call to make against an existing PagerDuty service."""

    NONE = "none"
    ENABLE = "enable"
    DISABLE = "disable"


@dataclass(frozen=True)
class Transition:
    """Outcome of a toggle axis.

    ``flag`` is the value to persist after the action succeeded, or None
    to leave the persisted flag untouched.
    """

    action: ServiceAction = ServiceAction.NONE
    flag: bool | None = None

    @property
    def is_noop(self) -> bool:
        return self.action == ServiceAction.NONE and self.flag is None


NO_TRANSITION = Transition()


class ExistenceAction(str, Enum):
    """What the reconciler does with a cluster deployment this pass."""

    NONE = "none"
    CONVERGE = "converge"
    TEARDOWN = "teardown"


class FinalizerState(str, Enum):
    """Ownership of a cluster deployment by one integration."""

    UNMANAGED = "unmanaged"
    MANAGED = "managed"
    TEARING_DOWN = "tearing_down"


def finalizer_state(finalized: bool, selected: bool, being_deleted: bool) -> FinalizerState:
    """Where a cluster deployment stands for one integration.

    TEARING_DOWN covers both a cluster deployment that is being deleted and
    one that no longer matches the selector while still finalized.
    """
    if not finalized:
        return FinalizerState.UNMANAGED
    if being_deleted or not selected:
        return FinalizerState.TEARING_DOWN
    return FinalizerState.MANAGED


def existence_action(finalized: bool, selected: bool, being_deleted: bool) -> ExistenceAction:
    """Action the reconciler takes for a cluster deployment's finalizer state.

    An unmanaged cluster deployment is taken over when it is selected and
    not being deleted.
    """
    match finalizer_state(finalized, selected, being_deleted):
        case FinalizerState.TEARING_DOWN:
            return ExistenceAction.TEARDOWN
        case FinalizerState.MANAGED:
            return ExistenceAction.CONVERGE
        case _:
            if selected and not being_deleted:
                return ExistenceAction.CONVERGE
            return ExistenceAction.NONE


def instances_are_running(cluster_deployment: ClusterDeployment) -> bool:
    """True once a resumed cluster reports running instances.

    Older Hive versions only report a Hibernating=False condition with
    reason Running instead of status.powerState.
    """
    if cluster_deployment.status.power_state == ClusterPowerState.RUNNING.value:
        return True

    condition = cluster_deployment.get_condition(HIBERNATING_CONDITION)
    return (
        condition is not None
        and condition.status == "False"
        and condition.reason == ClusterPowerState.RUNNING.value
    )


def hibernation_transition(
    cluster_deployment: ClusterDeployment, record: ServiceRecord
) -> Transition:
    if not cluster_deployment.spec.installed or not record.service_created:
        return NO_TRANSITION

    wants_hibernation = cluster_deployment.spec.power_state == ClusterPowerState.HIBERNATING.value

    if wants_hibernation and not record.hibernating:
        return Transition(ServiceAction.DISABLE, True)

    if not wants_hibernation and record.hibernating:
        if instances_are_running(cluster_deployment):
            return Transition(ServiceAction.ENABLE, False)
        # Resuming, wait for the instances
        return NO_TRANSITION

    return NO_TRANSITION


def limited_support_transition(
    cluster_deployment: ClusterDeployment, record: ServiceRecord
) -> Transition:
    if not cluster_deployment.spec.installed or not record.service_created:
        return NO_TRANSITION

    limited = cluster_deployment.label_is_true(LIMITED_SUPPORT_LABEL)
    exception = cluster_deployment.label_is_true(SUPPORT_EXCEPTION_LABEL)

    if exception and record.limited_support:
        # Keep alerting on, the persisted flag is left as is
        return Transition(ServiceAction.ENABLE, None)

    if limited and not record.limited_support:
        if exception:
            return NO_TRANSITION
        return Transition(ServiceAction.DISABLE, True)

    if not limited and record.limited_support:
        return Transition(ServiceAction.ENABLE, False)

    return NO_TRANSITION


def orchestration_applies(
    integration: PagerDutyIntegration,
    cluster_deployment: ClusterDeployment,
    record: ServiceRecord,
) -> bool:
    """Whether the orchestration axis runs for this pair at all."""
    return (
        integration.spec.service_orchestration.configured
        and cluster_deployment.spec.installed
        and not cluster_deployment.is_fake
        and record.service_created
    )


def rule_hash(rule_document: dict[str, Any]) -> str:
    """Stable digest of an orchestration rule document."""
    canonical = json.dumps(rule_document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def rule_needs_apply(record: ServiceRecord, document_hash: str) -> bool:
    return not (record.orchestration_rule_applied and record.orchestration_rule_hash == document_hash)
