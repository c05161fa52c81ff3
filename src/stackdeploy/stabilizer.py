"""Waiting for stacks to leave their in-progress states."""

import logging
import time

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.errors import StackFailedError
from stackdeploy.models import DeployedStack

logger = logging.getLogger(__name__)


class StackStabilizer:
    """Polls a stack until no operation is in progress on it."""

    def __init__(self, client: CloudFormationClient, poll_interval: float = 5.0):
        self._client = client
        self._poll_interval = poll_interval

    def wait_for_stable(self, stack_name: str) -> DeployedStack | None:
        """Wait until the stack is stable and return it, or None if it does not exist.

        There is no upper bound on the number of polls; wrap the call if you need one.
        """
        logger.debug("Waiting for stack %s to finish creating or updating...", stack_name)

        while True:
            stack = self._client.describe_stack(stack_name)
            if not stack.exists:
                logger.debug("Stack %s does not exist", stack_name)
                return None

            status = stack.status
            if not status.is_in_progress:
                if status.is_review_in_progress:
                    # A change set was created but never executed. Nothing will move the
                    # stack out of this state on its own, so rather than waiting forever
                    # we treat it as stable and let whichever operation comes next fail
                    # if it conflicts.
                    logger.debug(
                        "Stack %s is in REVIEW_IN_PROGRESS state. "
                        "Considering this is a stable status (%s)",
                        stack_name,
                        status,
                    )
                return stack

            logger.debug(
                "Stack %s has an ongoing operation in progress and is not stable (%s)",
                stack_name,
                status,
            )
            if self._poll_interval > 0:
                time.sleep(self._poll_interval)

    def wait_for_stack_deploy(self, stack_name: str) -> DeployedStack | None:
        """Wait for a create or update to finish. Raises unless it succeeded."""
        stack = self.wait_for_stable(stack_name)
        if stack is None:
            return None

        status = stack.status
        if status.is_creation_failure:
            raise StackFailedError(
                f"The stack named {stack_name} failed creation, it may need to be manually "
                f"deleted from the AWS console: {status}",
                stack_name=stack_name,
            )
        if not status.is_deploy_success:
            raise StackFailedError(
                f"The stack named {stack_name} failed to deploy: {status}",
                stack_name=stack_name,
            )
        return stack

    def wait_for_stack_delete(self, stack_name: str) -> DeployedStack | None:
        """Wait for a delete to finish.

        Returns None once the stack is gone. A stack that stabilized without being
        deleted is returned so the caller can decide what to do with it.
        """
        stack = self.wait_for_stable(stack_name)
        if stack is None:
            return None

        status = stack.status
        if status.is_failure:
            raise StackFailedError(
                f"The stack named {stack_name} is in a failed state. You may need to delete "
                f"it from the AWS console: {status}",
                stack_name=stack_name,
            )
        if status.is_deleted:
            return None
        return stack
