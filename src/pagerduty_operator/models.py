"""Pydantic models for the objects the operator reads and writes.

These models provide:
1. Type-safe YAML/JSON parsing of Kubernetes-style manifests
2. Validation at the boundary (fail fast, fail loudly)
3. A single typed view of PagerDutyIntegration and ClusterDeployment objects

Field names are snake_case in Python and camelCase on the wire (aliases).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, Field

from .config import FAKE_CLUSTER_ANNOTATION


class ObjectKind(str, Enum):
    """Object kinds the operator works with."""

    PAGERDUTY_INTEGRATION = "PagerDutyIntegration"
    CLUSTER_DEPLOYMENT = "ClusterDeployment"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    SYNC_SET = "SyncSet"


class ClusterPowerState(str, Enum):
    """Hive power states of a ClusterDeployment."""

    RUNNING = "Running"
    HIBERNATING = "Hibernating"
    RESUMING = "Resuming"


# Hive condition type reporting hibernation on older Hive versions
HIBERNATING_CONDITION = "Hibernating"


# =============================================================================
# Metadata
# =============================================================================


class OwnerReference(BaseModel):
    """Reference from a dependent object to the object that owns it."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field("hive.openshift.io/v1", alias="apiVersion")
    kind: str
    name: Annotated[str, Field(min_length=1)]
    controller: bool = True


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the operator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=253)]
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    resource_version: str = Field("", alias="resourceVersion")
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")


class KubeObject(BaseModel):
    """Base for all stored objects."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    KIND: ClassVar[ObjectKind]
    API_VERSION: ClassVar[str] = "v1"

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @property
    def being_deleted(self) -> bool:
        """True once deletion was requested and finalizers are pending."""
        return self.metadata.deletion_timestamp is not None

    def to_manifest(self) -> dict[str, Any]:
        """Convert to a manifest dictionary (camelCase, no empty optionals)."""
        manifest: dict[str, Any] = {"apiVersion": self.API_VERSION, "kind": self.KIND.value}
        manifest.update(self.model_dump(by_alias=True, exclude_none=True, mode="json"))
        return manifest


# =============================================================================
# Label selectors and references
# =============================================================================


class LabelSelectorRequirement(BaseModel):
    """A single set-based selector requirement.

    The operator is kept as a plain string so that a malformed selector is
    reported when the integration is reconciled, not when it is loaded.
    """

    model_config = {"extra": "ignore"}

    key: Annotated[str, Field(min_length=1)]
    operator: str
    values: list[str] = Field(default_factory=list)


class LabelSelector(BaseModel):
    """Kubernetes label selector: matchLabels AND matchExpressions."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    match_labels: dict[str, str] = Field(default_factory=dict, alias="matchLabels")
    match_expressions: list[LabelSelectorRequirement] = Field(
        default_factory=list, alias="matchExpressions"
    )


class SecretReference(BaseModel):
    """Name and namespace of a Secret."""

    model_config = {"extra": "ignore"}

    name: str = ""
    namespace: str = ""


class ObjectReference(BaseModel):
    """Reference to an arbitrary object, used for the rule-source ConfigMap."""

    model_config = {"extra": "ignore"}

    kind: str = ObjectKind.CONFIG_MAP.value
    name: Annotated[str, Field(min_length=1)]
    namespace: str = ""


# =============================================================================
# PagerDutyIntegration
# =============================================================================


class ServiceOrchestration(BaseModel):
    """Service orchestration settings of an integration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    enabled: bool = False
    rule_config_config_map_ref: ObjectReference | None = Field(
        None, alias="ruleConfigConfigMapRef"
    )

    @property
    def configured(self) -> bool:
        """True when orchestration is enabled and points at a rule source."""
        return self.enabled and self.rule_config_config_map_ref is not None


class AlertGroupingConfig(BaseModel):
    """Alert grouping behaviour for a grouping type."""

    model_config = {"extra": "ignore"}

    timeout: Annotated[int, Field(ge=0)] = 0


class AlertGroupingParameters(BaseModel):
    """Alert grouping applied to every service of an integration."""

    model_config = {"extra": "ignore"}

    type: str = ""
    config: AlertGroupingConfig | None = None

    @property
    def timeout(self) -> int:
        return self.config.timeout if self.config else 0


class PagerDutyIntegrationSpec(BaseModel):
    """Desired state of a PagerDutyIntegration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Seconds after which an acknowledged incident is triggered again; 0 disables
    acknowledge_timeout: Annotated[int, Field(ge=0, alias="acknowledgeTimeout")] = 0

    # ID of an existing escalation policy in PagerDuty
    escalation_policy: str = Field("", alias="escalationPolicy")

    # Seconds after which an open incident is resolved; 0 disables
    resolve_timeout: Annotated[int, Field(ge=0, alias="resolveTimeout")] = 0

    service_prefix: Annotated[str, Field(min_length=1, alias="servicePrefix")]

    pagerduty_api_key_secret_ref: SecretReference = Field(
        default_factory=SecretReference, alias="pagerdutyApiKeySecretRef"
    )
    cluster_deployment_selector: LabelSelector = Field(
        default_factory=LabelSelector, alias="clusterDeploymentSelector"
    )
    target_secret_ref: SecretReference = Field(
        default_factory=SecretReference, alias="targetSecretRef"
    )
    service_orchestration: ServiceOrchestration = Field(
        default_factory=ServiceOrchestration, alias="serviceOrchestration"
    )
    alert_grouping_parameters: AlertGroupingParameters | None = Field(
        None, alias="alertGroupingParameters"
    )


class PagerDutyIntegration(KubeObject):
    """Declarative policy: which clusters get a PagerDuty service, and how."""

    KIND: ClassVar[ObjectKind] = ObjectKind.PAGERDUTY_INTEGRATION
    API_VERSION: ClassVar[str] = "pagerduty.openshift.io/v1alpha1"

    spec: PagerDutyIntegrationSpec


# =============================================================================
# ClusterDeployment
# =============================================================================


class ClusterMetadata(BaseModel):
    """Metadata Hive records once a cluster is provisioned."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_id: str = Field("", alias="clusterID")


class ClusterDeploymentCondition(BaseModel):
    """A status condition reported by Hive."""

    model_config = {"extra": "ignore"}

    type: str
    status: str = "Unknown"
    reason: str = ""


class ClusterDeploymentSpec(BaseModel):
    """Spec fields of a Hive ClusterDeployment the operator reads."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_name: str = Field("", alias="clusterName")
    base_domain: str = Field("", alias="baseDomain")
    installed: bool = False
    power_state: str = Field("", alias="powerState")
    cluster_metadata: ClusterMetadata | None = Field(None, alias="clusterMetadata")


class ClusterDeploymentStatus(BaseModel):
    """Status fields of a Hive ClusterDeployment the operator reads."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    power_state: str = Field("", alias="powerState")
    conditions: list[ClusterDeploymentCondition] = Field(default_factory=list)


class ClusterDeployment(KubeObject):
    """A cluster that may receive a PagerDuty service."""

    KIND: ClassVar[ObjectKind] = ObjectKind.CLUSTER_DEPLOYMENT
    API_VERSION: ClassVar[str] = "hive.openshift.io/v1"

    spec: ClusterDeploymentSpec = Field(default_factory=ClusterDeploymentSpec)
    status: ClusterDeploymentStatus = Field(default_factory=ClusterDeploymentStatus)

    @property
    def cluster_id(self) -> str:
        """Cluster ID used to name the PagerDuty service."""
        if self.spec.cluster_metadata and self.spec.cluster_metadata.cluster_id:
            return self.spec.cluster_metadata.cluster_id
        return self.spec.cluster_name or self.metadata.name

    @property
    def is_fake(self) -> bool:
        return self.metadata.annotations.get(FAKE_CLUSTER_ANNOTATION) == "true"

    def label_is_true(self, label: str) -> bool:
        """Parse a boolean label; missing or unparsable values are False."""
        return parse_bool(self.metadata.labels.get(label, ""))

    def get_condition(self, condition_type: str) -> ClusterDeploymentCondition | None:
        for condition in self.status.conditions:
            if condition.type == condition_type:
                return condition
        return None


# =============================================================================
# Secondary objects
# =============================================================================


class Secret(KubeObject):
    """Opaque secret. Data values are stored decoded."""

    KIND: ClassVar[ObjectKind] = ObjectKind.SECRET

    type: str = "Opaque"
    data: dict[str, str] = Field(default_factory=dict)


class ConfigMap(KubeObject):
    """Flat string key-value data."""

    KIND: ClassVar[ObjectKind] = ObjectKind.CONFIG_MAP

    data: dict[str, str] = Field(default_factory=dict)


class SecretMapping(BaseModel):
    """Copy a secret from the hub namespace into the target cluster."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    source_ref: SecretReference = Field(alias="sourceRef")
    target_ref: SecretReference = Field(alias="targetRef")


class SyncSetSpec(BaseModel):
    """Subset of a Hive SyncSet spec."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_deployment_refs: list[str] = Field(default_factory=list, alias="clusterDeploymentRefs")
    resource_apply_mode: str = Field("Sync", alias="resourceApplyMode")
    secrets: list[SecretMapping] = Field(default_factory=list)


class SyncSet(KubeObject):
    """Distributes the integration key secret to the cluster."""

    KIND: ClassVar[ObjectKind] = ObjectKind.SYNC_SET
    API_VERSION: ClassVar[str] = "hive.openshift.io/v1"

    spec: SyncSetSpec = Field(default_factory=SyncSetSpec)


def parse_bool(value: str) -> bool:
    """Parse a boolean the way Kubernetes labels spell them."""
    return value.strip().lower() in ("1", "t", "true")


# Registry mapping manifest kinds to model classes
KIND_REGISTRY: dict[str, type[KubeObject]] = {
    ObjectKind.PAGERDUTY_INTEGRATION.value: PagerDutyIntegration,
    ObjectKind.CLUSTER_DEPLOYMENT.value: ClusterDeployment,
    ObjectKind.SECRET.value: Secret,
    ObjectKind.CONFIG_MAP.value: ConfigMap,
    ObjectKind.SYNC_SET.value: SyncSet,
}


def get_kind_class(kind: str) -> type[KubeObject]:
    """Get the model class for a manifest kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    kind_class = KIND_REGISTRY.get(kind)
    if kind_class is None:
        valid_kinds = list(KIND_REGISTRY.keys())
        raise ValueError(f"Unknown kind '{kind}'. Valid kinds: {valid_kinds}")
    return kind_class
