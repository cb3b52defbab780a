"""Configuration management with validation.

Naming constants shared with other controllers (finalizers, labels, object
suffixes) live here together with the operator's runtime configuration.
Runtime configuration is validated at load time so that a misconfigured
operator fails at startup rather than during reconciliation.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# =============================================================================
# Naming contract
# =============================================================================
# These names are read by other controllers and by the clusters themselves.
# Changing them orphans existing services.

DEFAULT_OPERATOR_NAMESPACE = "pagerduty-operator"

# Finalizer on the PagerDutyIntegration itself
INTEGRATION_FINALIZER = "pd.managed.openshift.io/pagerduty"

# Finalizer on a ClusterDeployment, suffixed with the PagerDutyIntegration name
CLUSTER_DEPLOYMENT_FINALIZER_PREFIX = "pd.managed.openshift.io/"

# Finalizer written by an older schema, removed whenever it is seen
LEGACY_FINALIZER = "pd.manage.openshift.io/pagerduty"

SECRET_SUFFIX = "-pd-secret"
CONFIG_MAP_SUFFIX = "-pd-config"

# Key holding the API key in the secret referenced by the integration
API_KEY_SECRET_KEY = "PAGERDUTY_API_KEY"

# Key holding the integration key in the secret synced to the cluster
INTEGRATION_KEY_SECRET_KEY = "PAGERDUTY_KEY"

# ClusterDeployment labels and annotations
NOALERTS_LABEL = "api.openshift.com/noalerts"
LIMITED_SUPPORT_LABEL = "api.openshift.com/limited-support"
SUPPORT_EXCEPTION_LABEL = "api.openshift.com/support-exception"
FAKE_CLUSTER_ANNOTATION = "managed.openshift.com/fake"

# Data key of the service orchestration rules in the rule-source ConfigMap
SERVICE_ORCHESTRATION_DATA_KEY = "service-orchestration.json"

# =============================================================================
# Runtime configuration bounds
# =============================================================================

DEFAULT_RECONCILE_WORKERS = 4
MIN_RECONCILE_WORKERS = 1
MAX_RECONCILE_WORKERS = 32

DEFAULT_API_TIMEOUT_SECONDS = 30
MAX_API_TIMEOUT_SECONDS = 300

# Missing credentials do not fix themselves quickly, retry slower than backoff
DEFAULT_CREDENTIALS_RETRY_SECONDS = 600

DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 5
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 1000

DEFAULT_INCIDENT_RESOLVE_MAX_ATTEMPTS = 5
DEFAULT_INCIDENT_RESOLVE_DELAY_SECONDS = 2

VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"

MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max manifest file


def resource_name(service_prefix: str, cluster_deployment_name: str, suffix: str) -> str:
    """Build the name of an object derived from a ClusterDeployment.

    Example: ``resource_name("osd", "mycluster", SECRET_SUFFIX)`` is
    ``osd-mycluster-pd-secret``.
    """
    return f"{service_prefix}-{cluster_deployment_name}{suffix}"


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    operator_namespace: str = DEFAULT_OPERATOR_NAMESPACE

    # Concurrency
    reconcile_workers: int = DEFAULT_RECONCILE_WORKERS

    # Timing
    api_timeout_seconds: float = DEFAULT_API_TIMEOUT_SECONDS
    credentials_retry_seconds: float = DEFAULT_CREDENTIALS_RETRY_SECONDS
    retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    retry_backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS

    # Incident draining before delete/disable
    incident_resolve_max_attempts: int = DEFAULT_INCIDENT_RESOLVE_MAX_ATTEMPTS
    incident_resolve_delay_seconds: float = DEFAULT_INCIDENT_RESOLVE_DELAY_SECONDS

    # FedRAMP environments get anonymized service names
    fedramp: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.operator_namespace:
            errors.append("OPERATOR_NAMESPACE is required")
        elif not re.match(VALID_NAMESPACE_PATTERN, self.operator_namespace):
            errors.append(
                f"OPERATOR_NAMESPACE must match pattern {VALID_NAMESPACE_PATTERN}: "
                f"{self.operator_namespace}"
            )

        if not MIN_RECONCILE_WORKERS <= self.reconcile_workers <= MAX_RECONCILE_WORKERS:
            errors.append(
                f"RECONCILE_WORKERS must be between {MIN_RECONCILE_WORKERS} "
                f"and {MAX_RECONCILE_WORKERS}"
            )

        if not 0 < self.api_timeout_seconds <= MAX_API_TIMEOUT_SECONDS:
            errors.append(
                f"API_TIMEOUT_SECONDS must be greater than 0 and at most "
                f"{MAX_API_TIMEOUT_SECONDS}"
            )

        if self.credentials_retry_seconds <= 0:
            errors.append("CREDENTIALS_RETRY_SECONDS must be positive")

        if self.retry_backoff_base_seconds <= 0:
            errors.append("RETRY_BACKOFF_BASE_SECONDS must be positive")
        elif self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            errors.append("RETRY_BACKOFF_MAX_SECONDS must not be lower than the base backoff")

        if self.incident_resolve_max_attempts < 1:
            errors.append("INCIDENT_RESOLVE_MAX_ATTEMPTS must be at least 1")

        if self.incident_resolve_delay_seconds < 0:
            errors.append("INCIDENT_RESOLVE_DELAY_SECONDS must not be negative")

        # Incident draining runs inside a single request deadline
        drain_seconds = (self.incident_resolve_max_attempts - 1) * self.incident_resolve_delay_seconds
        if drain_seconds >= self.api_timeout_seconds > 0:
            errors.append(
                "INCIDENT_RESOLVE_DELAY_SECONDS between INCIDENT_RESOLVE_MAX_ATTEMPTS polls "
                "must fit within API_TIMEOUT_SECONDS"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            OPERATOR_NAMESPACE: Namespace holding rule-source ConfigMaps
                (default: pagerduty-operator)
            RECONCILE_WORKERS: Concurrent reconcile workers (default: 4)
            API_TIMEOUT_SECONDS: Deadline for each external call (default: 30)
            CREDENTIALS_RETRY_SECONDS: Requeue delay when the API key cannot be
                loaded (default: 600)
            RETRY_BACKOFF_BASE_SECONDS: First retry delay after a failed
                reconcile (default: 5)
            RETRY_BACKOFF_MAX_SECONDS: Retry delay cap (default: 1000)
            INCIDENT_RESOLVE_MAX_ATTEMPTS: Polls for open incidents before a
                service is deleted or disabled (default: 5)
            INCIDENT_RESOLVE_DELAY_SECONDS: Delay between polls (default: 2)
            FEDRAMP: If "true", anonymize PagerDuty service names (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            operator_namespace=os.environ.get("OPERATOR_NAMESPACE", DEFAULT_OPERATOR_NAMESPACE),
            reconcile_workers=get_int("RECONCILE_WORKERS", DEFAULT_RECONCILE_WORKERS),
            api_timeout_seconds=get_float("API_TIMEOUT_SECONDS", DEFAULT_API_TIMEOUT_SECONDS),
            credentials_retry_seconds=get_float(
                "CREDENTIALS_RETRY_SECONDS", DEFAULT_CREDENTIALS_RETRY_SECONDS
            ),
            retry_backoff_base_seconds=get_float(
                "RETRY_BACKOFF_BASE_SECONDS", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
            retry_backoff_max_seconds=get_float(
                "RETRY_BACKOFF_MAX_SECONDS", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
            ),
            incident_resolve_max_attempts=get_int(
                "INCIDENT_RESOLVE_MAX_ATTEMPTS", DEFAULT_INCIDENT_RESOLVE_MAX_ATTEMPTS
            ),
            incident_resolve_delay_seconds=get_float(
                "INCIDENT_RESOLVE_DELAY_SECONDS", DEFAULT_INCIDENT_RESOLVE_DELAY_SECONDS
            ),
            fedramp=get_bool("FEDRAMP", False),
        )
