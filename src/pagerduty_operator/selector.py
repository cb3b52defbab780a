"""Label selector compilation and matching.

Selectors follow Kubernetes semantics: every ``matchLabels`` entry and every
``matchExpressions`` requirement must hold. An empty selector matches every
label set.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .config import NOALERTS_LABEL
from .models import LabelSelector, PagerDutyIntegration

# Name part of a qualified label key, also the syntax of a non-empty value
LABEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
DNS_SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
MAX_LABEL_NAME_LENGTH = 63
MAX_LABEL_PREFIX_LENGTH = 253


class SelectorError(ValueError):
    """Raised when a label selector is malformed."""

    pass


class SelectorOperator(str, Enum):
    """Set-based selector operators."""

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass(frozen=True)
class Requirement:
    """One validated selector requirement."""

    key: str
    operator: SelectorOperator
    values: frozenset[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        match self.operator:
            case SelectorOperator.IN:
                return self.key in labels and labels[self.key] in self.values
            case SelectorOperator.NOT_IN:
                return self.key not in labels or labels[self.key] not in self.values
            case SelectorOperator.EXISTS:
                return self.key in labels
            case SelectorOperator.DOES_NOT_EXIST:
                return self.key not in labels


@dataclass(frozen=True)
class CompiledSelector:
    """A validated selector, ready to be evaluated against label sets."""

    requirements: tuple[Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        return all(requirement.matches(labels) for requirement in self.requirements)

    def with_requirement(self, requirement: Requirement) -> CompiledSelector:
        return CompiledSelector(self.requirements + (requirement,))


def _validate_key(key: str) -> None:
    prefix, _, name = key.rpartition("/")
    if "/" in key and not prefix:
        raise SelectorError(f"invalid label key {key!r}: empty prefix")
    if prefix and (
        len(prefix) > MAX_LABEL_PREFIX_LENGTH or not DNS_SUBDOMAIN_PATTERN.match(prefix)
    ):
        raise SelectorError(f"invalid label key {key!r}: prefix must be a DNS subdomain")
    if len(name) > MAX_LABEL_NAME_LENGTH or not LABEL_NAME_PATTERN.match(name):
        raise SelectorError(
            f"invalid label key {key!r}: name must be at most {MAX_LABEL_NAME_LENGTH} "
            "alphanumeric characters, '-', '_' or '.'"
        )


def _validate_value(key: str, value: str) -> None:
    if value and (len(value) > MAX_LABEL_NAME_LENGTH or not LABEL_NAME_PATTERN.match(value)):
        raise SelectorError(f"invalid value {value!r} for label key {key!r}")


def compile_selector(selector: LabelSelector) -> CompiledSelector:
    """Validate a selector and turn it into requirements.

    Raises:
        SelectorError: On an invalid key or value, an unknown operator,
            In/NotIn without values, or Exists/DoesNotExist with values.
    """
    requirements: list[Requirement] = []

    for key, value in sorted(selector.match_labels.items()):
        _validate_key(key)
        _validate_value(key, value)
        requirements.append(Requirement(key, SelectorOperator.IN, frozenset([value])))

    for expression in selector.match_expressions:
        _validate_key(expression.key)
        try:
            operator = SelectorOperator(expression.operator)
        except ValueError as e:
            raise SelectorError(
                f"unknown operator {expression.operator!r} for label key {expression.key!r}"
            ) from e

        if operator in (SelectorOperator.IN, SelectorOperator.NOT_IN):
            if not expression.values:
                raise SelectorError(
                    f"operator {operator.value} for label key {expression.key!r} requires values"
                )
            for value in expression.values:
                _validate_value(expression.key, value)
        elif expression.values:
            raise SelectorError(
                f"operator {operator.value} for label key {expression.key!r} takes no values"
            )

        requirements.append(Requirement(expression.key, operator, frozenset(expression.values)))

    return CompiledSelector(tuple(requirements))


def matches(selector: LabelSelector, labels: Mapping[str, str]) -> bool:
    """Check a label set against a selector.

    Raises:
        SelectorError: If the selector is malformed.
    """
    return compile_selector(selector).matches(labels)


def integration_selector(integration: PagerDutyIntegration) -> CompiledSelector:
    """Selector of an integration, excluding clusters labeled noalerts.

    Raises:
        SelectorError: If the declared selector is malformed.
    """
    declared = compile_selector(integration.spec.cluster_deployment_selector)
    return declared.with_requirement(Requirement(NOALERTS_LABEL, SelectorOperator.DOES_NOT_EXIST))
