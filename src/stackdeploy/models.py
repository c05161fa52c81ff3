"""Core data models for CloudFormation stack deployment."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class RollbackChoice(StrEnum):
    """What kind of rollback a stack in its current status allows."""

    NONE = "NONE"
    START_ROLLBACK = "START_ROLLBACK"
    CONTINUE_UPDATE_ROLLBACK = "CONTINUE_UPDATE_ROLLBACK"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"


@dataclass(frozen=True)
class StackStatus:
    """Classification of a raw CloudFormation stack status string."""

    name: str
    reason: str | None = None

    @classmethod
    def from_stack_description(cls, stack: dict) -> "StackStatus":
        return cls(stack["StackStatus"], stack.get("StackStatusReason"))

    @classmethod
    def not_found(cls) -> "StackStatus":
        return cls("NOT_FOUND", "Stack not found during lookup")

    @property
    def is_not_found(self) -> bool:
        return self.name == "NOT_FOUND"

    @property
    def is_review_in_progress(self) -> bool:
        return self.name == "REVIEW_IN_PROGRESS"

    @property
    def is_in_progress(self) -> bool:
        return self.name.endswith("_IN_PROGRESS") and not self.is_review_in_progress

    @property
    def is_deleted(self) -> bool:
        return self.name.startswith("DELETE_")

    @property
    def is_failure(self) -> bool:
        return self.name.endswith("FAILED")

    @property
    def is_creation_failure(self) -> bool:
        return self.name in ("ROLLBACK_COMPLETE", "ROLLBACK_FAILED")

    @property
    def is_rollback(self) -> bool:
        return "ROLLBACK" in self.name

    @property
    def is_rollback_success(self) -> bool:
        return self.name in ("ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE")

    @property
    def is_deploy_success(self) -> bool:
        return self.name in ("CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE")

    @property
    def rollback_choice(self) -> RollbackChoice:
        if self.name in ("CREATE_FAILED", "UPDATE_FAILED"):
            return RollbackChoice.START_ROLLBACK
        if self.name == "UPDATE_ROLLBACK_FAILED":
            return RollbackChoice.CONTINUE_UPDATE_ROLLBACK
        if self.name == "ROLLBACK_FAILED":
            # A failed creation rollback has no stable state to continue towards.
            return RollbackChoice.ROLLBACK_FAILED
        return RollbackChoice.NONE

    @property
    def is_rollbackable(self) -> bool:
        """True if the stack is paused in a failed state that a rollback can resolve."""
        return self.rollback_choice in (
            RollbackChoice.START_ROLLBACK,
            RollbackChoice.CONTINUE_UPDATE_ROLLBACK,
        )

    def __str__(self) -> str:
        return f"{self.name} ({self.reason})" if self.reason else self.name


@dataclass(frozen=True)
class DeployedStack:
    """The last observed description of a stack in CloudFormation.

    A stack that does not exist is represented with ``stack_id=None`` and the
    special ``NOT_FOUND`` status rather than by ``None``.
    """

    stack_name: str
    stack_id: str | None = None
    status: StackStatus = field(default_factory=StackStatus.not_found)
    outputs: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    notification_arns: list[str] = field(default_factory=list)
    termination_protection: bool = False

    @classmethod
    def does_not_exist(cls, stack_name: str) -> "DeployedStack":
        return cls(stack_name=stack_name)

    @property
    def exists(self) -> bool:
        return self.stack_id is not None


class ChangeSetStatus(StrEnum):
    """Status of a CloudFormation change set."""

    CREATE_PENDING = "CREATE_PENDING"
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    DELETE_PENDING = "DELETE_PENDING"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"
    FAILED = "FAILED"


# Status reasons CloudFormation uses to say a change set is empty. The second one
# shows up when the template goes through a transform.
NO_CHANGES_REASONS = (
    "The submitted information didn't contain changes.",
    "No updates are to be performed.",
)

REPLACEMENT_POLICY_ACTIONS = ("ReplaceAndDelete", "ReplaceAndRetain", "ReplaceAndSnapshot")


@dataclass(frozen=True)
class ResourceChange:
    """A single resource-level change declared by a change set."""

    action: str
    logical_id: str
    resource_type: str
    physical_id: str | None = None
    replacement: str | None = None
    policy_action: str | None = None

    @property
    def is_replacement(self) -> bool:
        return self.policy_action in REPLACEMENT_POLICY_ACTIONS


@dataclass(frozen=True)
class ChangeSetDescription:
    """A change set as reported by CloudFormation."""

    change_set_id: str
    change_set_name: str
    stack_id: str
    stack_name: str
    status: ChangeSetStatus
    status_reason: str | None = None
    changes: list[ResourceChange] = field(default_factory=list)
    creation_time: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status in (ChangeSetStatus.CREATE_PENDING, ChangeSetStatus.CREATE_IN_PROGRESS)

    @property
    def has_no_changes(self) -> bool:
        """True if the change set failed only because there is nothing to change.

        This must come from the status, not from an empty ``changes`` list: a change
        set that only touches Outputs has no resource changes but still executes.
        """
        return self.status == ChangeSetStatus.FAILED and (self.status_reason or "").startswith(
            NO_CHANGES_REASONS
        )

    @property
    def has_replacement(self) -> bool:
        return any(change.is_replacement for change in self.changes)


SSM_PARAMETER_TYPE_PREFIX = "AWS::SSM::Parameter::"
NO_INVALIDATE_MARKER = "[stackdeploy:skip]"


@dataclass(frozen=True)
class FormalParameter:
    """A parameter declared in a template's ``Parameters`` section."""

    key: str
    type: str = "String"
    default: str | None = None
    description: str | None = None

    @property
    def is_runtime_sourced(self) -> bool:
        """Whether the value is resolved from SSM at deploy time and may change outside our view."""
        return self.type.startswith(SSM_PARAMETER_TYPE_PREFIX) and NO_INVALIDATE_MARKER not in (
            self.description or ""
        )


@dataclass(frozen=True)
class ApiParameter:
    """A parameter entry as sent to CloudFormation."""

    key: str
    value: str | None = None
    use_previous_value: bool = False

    def to_api(self) -> dict:
        if self.use_previous_value:
            return {"ParameterKey": self.key, "UsePreviousValue": True}
        return {"ParameterKey": self.key, "ParameterValue": self.value}


class ParameterChange(StrEnum):
    """Whether resolved parameters differ from the deployed ones."""

    UNCHANGED = "UNCHANGED"
    CHANGED = "CHANGED"
    # Some values come from a runtime store, so we cannot tell.
    INDETERMINATE = "INDETERMINATE"


@dataclass(frozen=True)
class ParameterResolution:
    """Final parameter values for a deployment and how they compare to the deployed ones."""

    values: dict[str, str]
    api_parameters: list[ApiParameter]
    changes: ParameterChange

    @property
    def has_changes(self) -> bool:
        return self.changes != ParameterChange.UNCHANGED


@dataclass(frozen=True)
class StackEvent:
    """One entry of a stack's event history."""

    event_id: str
    stack_name: str
    logical_id: str
    resource_type: str
    status: str
    timestamp: datetime
    physical_id: str | None = None
    status_reason: str | None = None

    @property
    def is_stack_event(self) -> bool:
        return (
            self.resource_type == "AWS::CloudFormation::Stack"
            and self.logical_id == self.stack_name
        )


class DetectionStatus(StrEnum):
    """Status of a drift detection operation."""

    IN_PROGRESS = "DETECTION_IN_PROGRESS"
    COMPLETE = "DETECTION_COMPLETE"
    FAILED = "DETECTION_FAILED"


class StackDriftStatus(StrEnum):
    """Overall stack drift status."""

    DRIFTED = "DRIFTED"
    IN_SYNC = "IN_SYNC"
    NOT_CHECKED = "NOT_CHECKED"
    UNKNOWN = "UNKNOWN"


class ResourceStatus(StrEnum):
    """Individual resource drift status."""

    IN_SYNC = "IN_SYNC"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    NOT_CHECKED = "NOT_CHECKED"
    UNKNOWN = "UNKNOWN"
    UNSUPPORTED = "UNSUPPORTED"


class DiffType(StrEnum):
    """Property difference type."""

    ADD = "ADD"
    REMOVE = "REMOVE"
    NOT_EQUAL = "NOT_EQUAL"


@dataclass(frozen=True)
class PropertyDiff:
    """A single property difference between expected and actual configuration."""

    property_path: str
    expected_value: str
    actual_value: str
    diff_type: DiffType


@dataclass(frozen=True)
class ResourceDrift:
    """Drift information for a single CloudFormation resource."""

    logical_id: str
    physical_id: str
    resource_type: str
    status: ResourceStatus
    property_diffs: list[PropertyDiff]
    timestamp: datetime


@dataclass(frozen=True)
class DetectionRun:
    """Tracks an in-progress drift detection operation for polling."""

    detection_id: str
    stack_id: str
    stack_name: str
    status: DetectionStatus
    started_at: datetime
    stack_status: StackDriftStatus | None = None
    drifted_resource_count: int | None = None
    status_reason: str | None = None


@dataclass(frozen=True)
class DriftCheckResult:
    """Outcome of one drift detection for a single stack."""

    detection_id: str
    stack_id: str
    stack_name: str
    status: DetectionStatus
    stack_status: StackDriftStatus
    drifted_resource_count: int
    timestamp: datetime
    # Only populated when resource details were requested.
    resource_drifts: list[ResourceDrift] | None = None


@dataclass(frozen=True)
class DetectionResult:
    """Drift results across several stacks, with the stacks whose check failed."""

    results: list[DriftCheckResult]
    failed_stacks: list[str]
