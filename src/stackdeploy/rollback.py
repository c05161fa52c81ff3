"""Recovering stacks that were left paused in a failed state."""

import logging
import uuid

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.errors import (
    DeploymentError,
    StackVanishedError,
    ValidationError,
    suffix_with_errors,
)
from stackdeploy.models import RollbackChoice
from stackdeploy.monitor import MonitorFactory, StackActivityMonitor
from stackdeploy.results import RollbackResult
from stackdeploy.stabilizer import StackStabilizer

logger = logging.getLogger(__name__)

# Rolling back while orphaning failed resources can surface new failures; give up
# if that keeps happening.
MAX_ROLLBACK_LOOPS = 10

_ROLLBACK_START_STATUSES = ("ROLLBACK_IN_PROGRESS", "UPDATE_ROLLBACK_IN_PROGRESS")


class RollbackExecutor:
    """Rolls a failed stack back to its last stable state."""

    def __init__(
        self,
        client: CloudFormationClient,
        *,
        monitor_factory: MonitorFactory | None = None,
        poll_interval: float = 5.0,
    ):
        self._client = client
        self._monitor_factory = monitor_factory or StackActivityMonitor
        self._stabilizer = StackStabilizer(client, poll_interval=poll_interval)

    def rollback(
        self,
        stack_name: str,
        role_arn: str | None = None,
        orphan_failed_resources: bool = False,
        orphan_logical_ids: tuple[str, ...] | list[str] = (),
    ) -> RollbackResult:
        """Roll the stack back.

        A rollback that is stuck on resources that cannot be rolled back is continued
        while skipping them: either the ``orphan_logical_ids`` given, or, with
        ``orphan_failed_resources``, whichever resources failed during the rollback.
        """
        resources_to_skip = list(orphan_logical_ids)
        if orphan_failed_resources and resources_to_skip:
            raise ValidationError(
                "Cannot combine orphaning all failed resources with a list of resources to orphan",
                stack_name=stack_name,
            )

        for _ in range(MAX_ROLLBACK_LOOPS):
            current = self._client.describe_stack(stack_name)
            stack_arn = current.stack_id
            choice = current.status.rollback_choice

            if choice == RollbackChoice.NONE:
                logger.warning("Stack %s does not need a rollback: %s", stack_name, current.status)
                return RollbackResult(stack_arn=stack_arn, not_in_rollbackable_state=True)

            if choice == RollbackChoice.ROLLBACK_FAILED:
                logger.warning(
                    "Stack %s failed creation and rollback. This state cannot be rolled back. "
                    "You can recreate this stack by deploying it again.",
                    stack_name,
                )
                return RollbackResult(stack_arn=stack_arn, not_in_rollbackable_state=True)

            if choice == RollbackChoice.START_ROLLBACK:
                logger.debug("Initiating rollback of stack %s", stack_name)
                self._client.rollback_stack(
                    stack_name, client_request_token=str(uuid.uuid4()), role_arn=role_arn
                )
            else:
                if orphan_failed_resources:
                    resources_to_skip = self.find_failed_resources(stack_name)
                if resources_to_skip:
                    logger.warning(
                        "Continuing rollback of stack %s (orphaning: %s)",
                        stack_name,
                        ", ".join(resources_to_skip),
                    )
                else:
                    logger.warning("Continuing rollback of stack %s", stack_name)
                self._client.continue_update_rollback(
                    stack_name,
                    client_request_token=str(uuid.uuid4()),
                    resources_to_skip=resources_to_skip,
                    role_arn=role_arn,
                )

            monitor = self._monitor_factory(self._client, stack_name)
            monitor.start()

            final = current
            error_message = None
            try:
                stable = self._stabilizer.wait_for_stable(stack_name)
                if stable is None:
                    raise StackVanishedError(
                        f"Stack rollback failed (the stack {stack_name} disappeared while we "
                        "were rolling it back)",
                        stack_name=stack_name,
                    )
                final = stable
            except Exception as e:
                error_message = str(e)
            finally:
                monitor.stop()

            if error_message is not None:
                error_message = suffix_with_errors(error_message, monitor.errors)
            elif monitor.errors:
                error_message = ", ".join(monitor.errors)

            if final.status.is_rollback_success or not error_message:
                logger.info("%s: rollback complete", stack_name)
                return RollbackResult(stack_arn=stack_arn, success=True)

            if (
                final.status.rollback_choice == RollbackChoice.CONTINUE_UPDATE_ROLLBACK
                and orphan_failed_resources
            ):
                logger.debug("%s: rollback left failed resources behind, retrying", stack_name)
                continue

            raise DeploymentError(
                f"{error_message} (fix problem and retry, or orphan these resources "
                "using --orphan or --force)",
                stack_name=stack_name,
            )

        raise DeploymentError(
            "Rollback did not finish after a large number of iterations; stopping because it "
            "looks like we're not making progress anymore. You can retry if rollback was "
            "progressing as expected.",
            stack_name=stack_name,
        )

    def find_failed_resources(self, stack_name: str) -> list[str]:
        """Logical ids of resources that failed since the last rollback started, newest first."""
        failed: list[str] = []
        next_token = None
        while True:
            events, next_token = self._client.describe_stack_events(stack_name, next_token)
            for event in events:
                if event.is_stack_event:
                    if event.status in _ROLLBACK_START_STATUSES:
                        return failed
                    continue
                if event.status.endswith("_FAILED") and event.logical_id not in failed:
                    failed.append(event.logical_id)
            if not next_token:
                return failed
