"""Stack deletion."""

import logging
from datetime import UTC, datetime

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.errors import StackFailedError, suffix_with_errors
from stackdeploy.monitor import MonitorFactory, StackActivityMonitor
from stackdeploy.results import DestroyResult
from stackdeploy.stabilizer import StackStabilizer

logger = logging.getLogger(__name__)


class DestructionExecutor:
    """Deletes a stack and waits until it is gone."""

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

    def destroy(self, stack_name: str, role_arn: str | None = None) -> DestroyResult:
        current = self._client.describe_stack(stack_name)
        if not current.exists:
            logger.debug("Stack %s does not exist, nothing to destroy", stack_name)
            return DestroyResult(stack_arn=None)

        monitor = self._monitor_factory(self._client, stack_name, start_time=datetime.now(UTC))
        monitor.start()

        error = None
        remaining = None
        try:
            logger.info("%s: destroying...", stack_name)
            self._client.delete_stack(stack_name, role_arn=role_arn)
            remaining = self._stabilizer.wait_for_stack_delete(stack_name)
        except Exception as e:
            error = e
        finally:
            monitor.stop()

        if error is not None:
            raise StackFailedError(
                suffix_with_errors(f"Failed to destroy {stack_name}: {error}", monitor.errors),
                stack_name=stack_name,
            ) from error
        if remaining is not None:
            raise StackFailedError(
                suffix_with_errors(
                    f"Failed to destroy {stack_name}: {remaining.status}", monitor.errors
                ),
                stack_name=stack_name,
            )

        logger.info("%s: destroyed", stack_name)
        return DestroyResult(stack_arn=current.stack_id)
