"""Tests for the pure lifecycle decisions."""

from unittest.mock import patch

import pytest
from pagerduty_mock import make_cluster_deployment, make_integration

from pagerduty_operator.config import (
    FAKE_CLUSTER_ANNOTATION,
    LIMITED_SUPPORT_LABEL,
    SUPPORT_EXCEPTION_LABEL,
)
from pagerduty_operator.lifecycle import (
    NO_TRANSITION,
    ExistenceAction,
    FinalizerState,
    ServiceAction,
    Transition,
    existence_action,
    finalizer_state,
    hibernation_transition,
    instances_are_running,
    limited_support_transition,
    orchestration_applies,
    rule_hash,
    rule_needs_apply,
)
from pagerduty_operator.models import ClusterDeploymentCondition
from pagerduty_operator.state_store import ServiceRecord

CREATED = ServiceRecord(service_id="PSVC1")


def labeled(**labels: str):
    return make_cluster_deployment(labels={"api.openshift.com/managed": "true", **labels})


class TestExistence:
    """Tests for the finalizer state machine."""

    @pytest.mark.parametrize(
        ("finalized", "selected", "being_deleted", "state", "action"),
        [
            (False, False, False, FinalizerState.UNMANAGED, ExistenceAction.NONE),
            (False, True, False, FinalizerState.UNMANAGED, ExistenceAction.CONVERGE),
            (False, True, True, FinalizerState.UNMANAGED, ExistenceAction.NONE),
            (True, True, False, FinalizerState.MANAGED, ExistenceAction.CONVERGE),
            (True, False, False, FinalizerState.TEARING_DOWN, ExistenceAction.TEARDOWN),
            (True, True, True, FinalizerState.TEARING_DOWN, ExistenceAction.TEARDOWN),
        ],
    )
    def test_states(self, finalized, selected, being_deleted, state, action) -> None:
        assert finalizer_state(finalized, selected, being_deleted) == state
        assert existence_action(finalized, selected, being_deleted) == action

    def test_action_follows_finalizer_state(self) -> None:
        """The existence action is read off the finalizer state machine."""
        with patch(
            "pagerduty_operator.lifecycle.finalizer_state",
            return_value=FinalizerState.TEARING_DOWN,
        ) as state:
            action = existence_action(finalized=True, selected=True, being_deleted=False)

        assert action == ExistenceAction.TEARDOWN
        state.assert_called_once_with(True, True, False)


class TestHibernation:
    """Tests for hibernation_transition."""

    def test_hibernate(self) -> None:
        cd = make_cluster_deployment(power_state="Hibernating")
        assert hibernation_transition(cd, CREATED) == Transition(ServiceAction.DISABLE, True)

    def test_already_hibernating(self) -> None:
        cd = make_cluster_deployment(power_state="Hibernating")
        record = ServiceRecord(service_id="PSVC1", hibernating=True)
        assert hibernation_transition(cd, record) is NO_TRANSITION

    def test_resuming_waits(self) -> None:
        cd = make_cluster_deployment(power_state="Running", status_power_state="Resuming")
        record = ServiceRecord(service_id="PSVC1", hibernating=True)
        assert hibernation_transition(cd, record).is_noop

    def test_running_enables(self) -> None:
        cd = make_cluster_deployment(power_state="Running", status_power_state="Running")
        record = ServiceRecord(service_id="PSVC1", hibernating=True)
        assert hibernation_transition(cd, record) == Transition(ServiceAction.ENABLE, False)

    def test_no_service_yet(self) -> None:
        cd = make_cluster_deployment(power_state="Hibernating")
        assert hibernation_transition(cd, ServiceRecord()).is_noop

    def test_legacy_running_condition(self) -> None:
        cd = make_cluster_deployment(
            conditions=[ClusterDeploymentCondition(type="Hibernating", status="False", reason="Running")]
        )
        assert instances_are_running(cd)

    def test_legacy_condition_still_hibernating(self) -> None:
        cd = make_cluster_deployment(
            conditions=[
                ClusterDeploymentCondition(type="Hibernating", status="True", reason="Hibernating")
            ]
        )
        assert not instances_are_running(cd)


class TestLimitedSupport:
    """Tests for limited_support_transition."""

    def test_limited_disables(self) -> None:
        cd = labeled(**{LIMITED_SUPPORT_LABEL: "true"})
        assert limited_support_transition(cd, CREATED) == Transition(ServiceAction.DISABLE, True)

    def test_cleared_enables(self) -> None:
        record = ServiceRecord(service_id="PSVC1", limited_support=True)
        assert limited_support_transition(labeled(), record) == Transition(ServiceAction.ENABLE, False)

    def test_exception_blocks_disable(self) -> None:
        cd = labeled(**{LIMITED_SUPPORT_LABEL: "true", SUPPORT_EXCEPTION_LABEL: "true"})
        assert limited_support_transition(cd, CREATED).is_noop

    def test_exception_enables_without_touching_flag(self) -> None:
        cd = labeled(**{LIMITED_SUPPORT_LABEL: "true", SUPPORT_EXCEPTION_LABEL: "true"})
        record = ServiceRecord(service_id="PSVC1", limited_support=True)

        transition = limited_support_transition(cd, record)

        assert transition == Transition(ServiceAction.ENABLE, None)
        assert not transition.is_noop


class TestOrchestration:
    """Tests for orchestration decisions."""

    def test_applies(self) -> None:
        assert orchestration_applies(make_integration(orchestration=True), labeled(), CREATED)

    def test_disabled_on_integration(self) -> None:
        assert not orchestration_applies(make_integration(), labeled(), CREATED)

    def test_fake_cluster(self) -> None:
        cd = make_cluster_deployment(annotations={FAKE_CLUSTER_ANNOTATION: "true"})
        assert not orchestration_applies(make_integration(orchestration=True), cd, CREATED)

    def test_rule_hash_ignores_key_order(self) -> None:
        assert rule_hash({"a": 1, "b": {"c": 2}}) == rule_hash({"b": {"c": 2}, "a": 1})
        assert rule_hash({"a": 1}) != rule_hash({"a": 2})

    def test_rule_needs_apply(self) -> None:
        digest = rule_hash({"a": 1})
        applied = ServiceRecord(
            service_id="PSVC1",
            orchestration_enabled=True,
            orchestration_rule_applied=True,
            orchestration_rule_hash=digest,
        )

        assert not rule_needs_apply(applied, digest)
        assert rule_needs_apply(applied, rule_hash({"a": 2}))
        assert rule_needs_apply(CREATED, digest)
