"""Change set lifecycle: create, wait for completion, delete."""

import logging
import time

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.errors import ChangeSetCreationError
from stackdeploy.models import ChangeSetDescription, ChangeSetStatus
from stackdeploy.options import StackRequest

logger = logging.getLogger(__name__)


class ChangeSetManager:
    """Creates change sets and waits until they are ready, empty or failed."""

    def __init__(self, client: CloudFormationClient, poll_interval: float = 5.0):
        self._client = client
        self._poll_interval = poll_interval

    def create(
        self,
        stack_name: str,
        change_set_name: str,
        change_set_type: str,
        request: StackRequest,
        client_token: str,
        description: str,
        resources_to_import: list[dict] | None = None,
        import_existing_resources: bool = False,
        stack_exists: bool = True,
        fetch_all: bool = False,
    ) -> ChangeSetDescription:
        """Create a change set and wait for it.

        A same-named change set left over from an earlier attempt is deleted first,
        since names must be unique per stack. Set ``fetch_all`` when the change set
        will be executed so the full list of changes is available.
        """
        if stack_exists:
            self.delete(stack_name, change_set_name)

        logger.debug(
            "Attempting to create ChangeSet with name %s (%s) for stack %s",
            change_set_name,
            change_set_type,
            stack_name,
        )
        logger.info("%s: creating CloudFormation changeset...", stack_name)
        change_set_id = self._client.create_change_set(
            stack_name=stack_name,
            change_set_name=change_set_name,
            change_set_type=change_set_type,
            request=request,
            client_token=client_token,
            description=description,
            resources_to_import=resources_to_import,
            import_existing_resources=import_existing_resources,
        )
        logger.debug(
            "Initiated creation of changeset: %s; waiting for it to finish creating...",
            change_set_id,
        )
        return self.wait_for_change_set(stack_name, change_set_name, fetch_all=fetch_all)

    def preview(
        self,
        stack_name: str,
        change_set_name: str,
        change_set_type: str,
        request: StackRequest,
        client_token: str,
        description: str,
        stack_exists: bool = True,
    ) -> ChangeSetDescription:
        """Create a change set only to look at it; it is deleted again whatever happens."""
        try:
            return self.create(
                stack_name,
                change_set_name,
                change_set_type,
                request,
                client_token=client_token,
                description=description,
                stack_exists=stack_exists,
                fetch_all=True,
            )
        finally:
            self.delete(stack_name, change_set_name)

    def wait_for_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        fetch_all: bool = False,
    ) -> ChangeSetDescription:
        """Poll until the change set is ready to execute or known to contain no changes.

        Any other failure raises ChangeSetCreationError.
        """
        logger.debug(
            "Waiting for changeset %s on stack %s to finish creating...",
            change_set_name,
            stack_name,
        )
        while True:
            description = self._client.describe_change_set(
                stack_name, change_set_name, fetch_all=fetch_all
            )
            if description is None:
                raise ChangeSetCreationError(
                    "Change set took too long to be created; aborting", stack_name=stack_name
                )

            if not description.is_pending:
                break

            logger.debug("Changeset %s on stack %s is still creating", change_set_name, stack_name)
            if self._poll_interval > 0:
                time.sleep(self._poll_interval)

        if description.status == ChangeSetStatus.CREATE_COMPLETE or description.has_no_changes:
            return description

        raise ChangeSetCreationError(
            f"Failed to create ChangeSet {change_set_name} on {stack_name}: "
            f"{description.status}, {description.status_reason or 'no reason provided'}",
            stack_name=stack_name,
        )

    def delete(self, stack_name: str, change_set_name: str) -> None:
        """Delete a change set. Succeeds while the stack exists, even if the change set does not."""
        logger.debug("Removing existing change set with name %s if it exists", change_set_name)
        self._client.delete_change_set(stack_name, change_set_name)
