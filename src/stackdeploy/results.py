"""Outcomes of deploy, destroy and rollback operations.

A deployment produces exactly one of the ``DeployResult`` variants. Paused and
refused deployments are results, not exceptions, so callers can decide whether to
prompt somebody before going further.
"""

from dataclasses import dataclass, field
from enum import StrEnum


@dataclass(frozen=True)
class NoOpDeployment:
    """Nothing was deployed because the stack is already up to date."""

    stack_arn: str | None
    outputs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeploymentApplied:
    """The update was applied and the stack converged successfully."""

    stack_arn: str
    outputs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ChangeSetPending:
    """A change set was created and left for manual execution."""

    stack_arn: str
    change_set_id: str
    outputs: dict[str, str] = field(default_factory=dict)


class PauseReason(StrEnum):
    """Why a deployment into a paused, failed stack needs a rollback first."""

    # The change set would replace resources.
    REPLACEMENT = "replacement"
    # The stack was left paused by a deployment without rollback, and this
    # deployment asks for rollback on failure.
    ROLLBACK_ENABLED = "rollback-enabled"


@dataclass(frozen=True)
class NeedRollbackFirst:
    """The stack is paused in a failed state and must be rolled back before deploying."""

    reason: PauseReason
    status: str


@dataclass(frozen=True)
class ReplacementRequiresRollback:
    """The change replaces resources, which is refused while rollback is disabled."""


DeployResult = (
    NoOpDeployment
    | DeploymentApplied
    | ChangeSetPending
    | NeedRollbackFirst
    | ReplacementRequiresRollback
)


@dataclass(frozen=True)
class DestroyResult:
    """Outcome of a stack deletion. ``stack_arn`` is None if there was nothing to delete."""

    stack_arn: str | None


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback."""

    stack_arn: str | None
    success: bool = False
    not_in_rollbackable_state: bool = False
