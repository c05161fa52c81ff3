"""The deployment state machine: skip, hotswap, change set or direct apply, then wait."""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from botocore.exceptions import BotoCoreError, ClientError

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.changeset import ChangeSetManager
from stackdeploy.errors import (
    ChangeSetCreationError,
    HotswapDeclinedError,
    StackFailedError,
    StackVanishedError,
    ValidationError,
    suffix_with_errors,
)
from stackdeploy.models import (
    ChangeSetDescription,
    ChangeSetStatus,
    DeployedStack,
    ParameterResolution,
    ResourceChange,
)
from stackdeploy.monitor import MonitorFactory, StackActivityMonitor
from stackdeploy.options import (
    ChangeSetDeployment,
    DeployOptions,
    DirectDeployment,
    HotswapMode,
    StackArtifact,
    StackRequest,
    inline_template_body,
    make_stack_request,
)
from stackdeploy.parameters import TemplateParameters
from stackdeploy.results import (
    ChangeSetPending,
    DeploymentApplied,
    DeployResult,
    NeedRollbackFirst,
    NoOpDeployment,
    PauseReason,
    ReplacementRequiresRollback,
)
from stackdeploy.skip import can_skip_deploy
from stackdeploy.stabilizer import StackStabilizer

logger = logging.getLogger(__name__)

# (desired parameter values, current stack, desired artifact) -> result, or None to decline.
HotswapHook = Callable[[dict[str, str], DeployedStack, StackArtifact], DeployResult | None]
AssetPublisher = Callable[[StackArtifact], None]


@dataclass(frozen=True)
class _DeploymentContext:
    """Everything one deployment attempt needs, fixed once the remote state is known."""

    stack_name: str
    artifact: StackArtifact
    options: DeployOptions
    current: DeployedStack
    resolution: ParameterResolution
    request: StackRequest
    uuid: str

    @property
    def is_update(self) -> bool:
        # A stack in REVIEW_IN_PROGRESS only has an unexecuted change set; it was never created.
        return self.current.exists and not self.current.status.is_review_in_progress


class DeploymentExecutor:
    """Deploys one stack per call and returns exactly one DeployResult.

    The executor keeps no state between calls, so one instance can be shared to
    deploy different stacks concurrently.
    """

    def __init__(
        self,
        client: CloudFormationClient,
        *,
        hotswap: HotswapHook | None = None,
        asset_publisher: AssetPublisher | None = None,
        monitor_factory: MonitorFactory | None = None,
        poll_interval: float = 5.0,
    ):
        self._client = client
        self._hotswap = hotswap
        self._asset_publisher = asset_publisher
        self._monitor_factory = monitor_factory or StackActivityMonitor
        self._stabilizer = StackStabilizer(client, poll_interval=poll_interval)
        self._change_sets = ChangeSetManager(client, poll_interval=poll_interval)

    def deploy(self, artifact: StackArtifact, options: DeployOptions | None = None) -> DeployResult:
        options = options or DeployOptions()
        stack_name = options.deploy_name or artifact.stack_name

        if options.resources_to_import and isinstance(options.deployment_method, DirectDeployment):
            raise ValidationError(
                "Importing resources requires a changeset deployment", stack_name=stack_name
            )
        inline_template_body(artifact)
        template_params = TemplateParameters.from_template(artifact.template)

        current = self._client.describe_stack(stack_name)
        if current.status.is_creation_failure:
            current = self._delete_failed_stack(stack_name, current, options)

        resolution = template_params.resolve(
            options.parameters,
            current.parameters,
            use_previous_values=options.use_previous_parameters,
            stack_name=stack_name,
        )

        deployed_template: dict = {}
        if current.exists and not options.force and options.execute:
            deployed_template = self._client.get_template(stack_name)

        if can_skip_deploy(artifact, current, deployed_template, resolution, options):
            return NoOpDeployment(current.stack_id, current.outputs)
        logger.debug("%s: deploying...", stack_name)

        if self._asset_publisher is not None:
            self._asset_publisher(artifact)

        if self._hotswap is not None and options.hotswap_mode != HotswapMode.FULL_DEPLOYMENT:
            hotswapped = self._try_hotswap(stack_name, resolution, current, artifact)
            if hotswapped is not None:
                return hotswapped
            if options.hotswap_mode == HotswapMode.HOTSWAP_ONLY:
                logger.warning(
                    "%s: the change cannot be hotswapped and hotswap-only mode is on; "
                    "not falling back to a full deployment",
                    stack_name,
                )
                return NoOpDeployment(current.stack_id, current.outputs)
            logger.info("%s: falling back to doing a full deployment", stack_name)

        ctx = _DeploymentContext(
            stack_name=stack_name,
            artifact=artifact,
            options=options,
            current=current,
            resolution=resolution,
            request=make_stack_request(artifact, options, resolution.api_parameters),
            uuid=str(uuid.uuid4()),
        )

        if isinstance(options.deployment_method, ChangeSetDeployment):
            return self._change_set_deployment(ctx, options.deployment_method)
        return self._direct_deployment(ctx)

    def diff(
        self, artifact: StackArtifact, options: DeployOptions | None = None
    ) -> ChangeSetDescription:
        """Show what deploying the artifact would change, without changing anything.

        For an existing stack a change set is created, read and deleted again. For a
        stack that does not exist every resource in the template is reported as added.
        """
        options = options or DeployOptions()
        stack_name = options.deploy_name or artifact.stack_name
        template_params = TemplateParameters.from_template(artifact.template)

        current = self._client.describe_stack(stack_name)
        if not current.exists or current.status.is_review_in_progress:
            return _creation_preview(stack_name, artifact.template)

        resolution = template_params.resolve(
            options.parameters,
            current.parameters,
            use_previous_values=options.use_previous_parameters,
            stack_name=stack_name,
        )
        diff_uuid = str(uuid.uuid4())
        return self._change_sets.preview(
            stack_name,
            f"stackdeploy-diff-{diff_uuid}",
            "UPDATE",
            make_stack_request(artifact, options, resolution.api_parameters),
            client_token=f"diff{diff_uuid}",
            description=f"stackdeploy diff for {diff_uuid}",
        )

    def _delete_failed_stack(
        self,
        stack_name: str,
        current: DeployedStack,
        options: DeployOptions,
    ) -> DeployedStack:
        # CloudFormation refuses to update a stack that failed to create, so start over.
        logger.debug(
            "Found existing stack %s that had previously failed creation. "
            "Deleting it before attempting to re-create it.",
            stack_name,
        )
        self._client.delete_stack(stack_name, role_arn=options.role_arn)
        remaining = self._stabilizer.wait_for_stack_delete(stack_name)
        if remaining is not None:
            raise StackFailedError(
                f"Failed deleting stack {stack_name} that had previously failed creation "
                f"(current state: {remaining.status})",
                stack_name=stack_name,
            )
        return DeployedStack.does_not_exist(stack_name)

    def _try_hotswap(
        self,
        stack_name: str,
        resolution: ParameterResolution,
        current: DeployedStack,
        artifact: StackArtifact,
    ) -> DeployResult | None:
        try:
            return self._hotswap(resolution.values, current, artifact)
        except HotswapDeclinedError as e:
            logger.info("%s: could not perform a hotswap deployment: %s", stack_name, e)
            return None

    def _change_set_deployment(
        self,
        ctx: _DeploymentContext,
        method: ChangeSetDeployment,
    ) -> DeployResult:
        if ctx.options.resources_to_import:
            change_set_type = "IMPORT"
        else:
            change_set_type = "UPDATE" if ctx.is_update else "CREATE"

        try:
            change_set = self._change_sets.create(
                ctx.stack_name,
                method.change_set_name,
                change_set_type,
                ctx.request,
                client_token=f"create{ctx.uuid}",
                description=f"stackdeploy change set for execution {ctx.uuid}",
                resources_to_import=ctx.options.resources_to_import,
                import_existing_resources=method.import_existing_resources,
                stack_exists=ctx.current.exists,
                fetch_all=ctx.options.execute,
            )
        except ChangeSetCreationError:
            self._discard_change_set(ctx.stack_name, method.change_set_name)
            raise
        self._update_termination_protection(ctx)

        if change_set.has_no_changes:
            logger.debug("No changes are to be performed on %s.", ctx.stack_name)
            if ctx.options.execute:
                logger.debug("Deleting empty change set %s", change_set.change_set_id)
                self._change_sets.delete(ctx.stack_name, method.change_set_name)
            if ctx.options.force:
                logger.warning(
                    "You used the --force flag, but CloudFormation reported that the deployment "
                    "would not make any changes. According to CloudFormation, all resources are "
                    "already up-to-date with the state in your template."
                )
            return NoOpDeployment(change_set.stack_id or ctx.current.stack_id, ctx.current.outputs)

        if not ctx.options.execute:
            logger.info(
                "Changeset %s created and waiting in review for manual execution (--no-execute)",
                change_set.change_set_id,
            )
            return ChangeSetPending(
                stack_arn=change_set.stack_id,
                change_set_id=change_set.change_set_id,
                outputs=ctx.current.outputs,
            )

        refusal = self._check_paused_state(ctx, change_set)
        if refusal is not None:
            self._change_sets.delete(ctx.stack_name, method.change_set_name)
            return refusal

        return self._execute_change_set(ctx, method, change_set)

    def _discard_change_set(self, stack_name: str, change_set_name: str) -> None:
        try:
            self._change_sets.delete(stack_name, change_set_name)
        except (ClientError, BotoCoreError) as e:
            logger.warning("%s: could not delete change set %s: %s", stack_name, change_set_name, e)

    def _check_paused_state(
        self,
        ctx: _DeploymentContext,
        change_set: ChangeSetDescription,
    ) -> DeployResult | None:
        # A stack deployed without rollback can be left paused in a failed state.
        # Executing on top of it can only make things worse in these cases.
        status = ctx.current.status
        paused = status.is_rollbackable
        replacement = change_set.has_replacement

        if paused and replacement:
            logger.debug(
                "%s: paused in %s and the change replaces resources", ctx.stack_name, status
            )
            return NeedRollbackFirst(reason=PauseReason.REPLACEMENT, status=str(status))
        if paused and ctx.options.rollback:
            logger.debug("%s: paused in %s and rollback is enabled", ctx.stack_name, status)
            return NeedRollbackFirst(reason=PauseReason.ROLLBACK_ENABLED, status=str(status))
        if not ctx.options.rollback and replacement:
            logger.debug(
                "%s: the change replaces resources but rollback is disabled", ctx.stack_name
            )
            return ReplacementRequiresRollback()
        return None

    def _execute_change_set(
        self,
        ctx: _DeploymentContext,
        method: ChangeSetDeployment,
        change_set: ChangeSetDescription,
    ) -> DeployResult:
        logger.debug(
            "Initiating execution of changeset %s on stack %s",
            change_set.change_set_id,
            ctx.stack_name,
        )
        self._client.execute_change_set(
            ctx.stack_name,
            method.change_set_name,
            client_request_token=f"exec{ctx.uuid}",
            disable_rollback=not ctx.options.rollback,
        )
        logger.debug(
            "Execution of changeset %s on stack %s has started; "
            "waiting for the update to complete...",
            change_set.change_set_id,
            ctx.stack_name,
        )

        # An update also emits an event for the stack itself.
        expected_changes = len(change_set.changes) + (1 if ctx.is_update else 0)
        return self._monitor_deployment(ctx, change_set.creation_time, expected_changes)

    def _direct_deployment(self, ctx: _DeploymentContext) -> DeployResult:
        start_time = datetime.now(UTC)

        if ctx.is_update:
            self._update_termination_protection(ctx)
            updated = self._client.update_stack(
                ctx.stack_name,
                ctx.request,
                client_request_token=f"update{ctx.uuid}",
            )
            if not updated:
                logger.debug("No updates are to be performed on stack %s", ctx.stack_name)
                return NoOpDeployment(ctx.current.stack_id, ctx.current.outputs)
            return self._monitor_deployment(ctx, start_time)

        self._client.create_stack(
            ctx.stack_name,
            ctx.request,
            client_request_token=f"create{ctx.uuid}",
            termination_protection=ctx.options.termination_protection,
        )
        return self._monitor_deployment(ctx, start_time)

    def _monitor_deployment(
        self,
        ctx: _DeploymentContext,
        start_time: datetime | None,
        expected_changes: int | None = None,
    ) -> DeployResult:
        monitor = self._monitor_factory(
            self._client,
            ctx.stack_name,
            resources_total=expected_changes,
            start_time=start_time,
        )
        monitor.start()

        error = None
        final = None
        try:
            final = self._stabilizer.wait_for_stack_deploy(ctx.stack_name)
        except Exception as e:
            error = e
        finally:
            monitor.stop()

        if error is not None:
            raise StackFailedError(
                suffix_with_errors(str(error), monitor.errors), stack_name=ctx.stack_name
            ) from error
        if final is None:
            raise StackVanishedError(
                f"Stack deploy failed (the stack {ctx.stack_name} disappeared "
                "while we were deploying it)",
                stack_name=ctx.stack_name,
            )

        logger.debug("Stack %s has completed updating", ctx.stack_name)
        return DeploymentApplied(stack_arn=final.stack_id, outputs=final.outputs)

    def _update_termination_protection(self, ctx: _DeploymentContext) -> None:
        desired = bool(ctx.options.termination_protection)
        if desired == ctx.current.termination_protection:
            return
        logger.debug(
            "Updating termination protection from %s to %s for stack %s",
            ctx.current.termination_protection,
            desired,
            ctx.stack_name,
        )
        self._client.update_termination_protection(ctx.stack_name, desired)
        logger.debug("Termination protection updated to %s for stack %s", desired, ctx.stack_name)


def _creation_preview(stack_name: str, template: dict) -> ChangeSetDescription:
    changes = [
        ResourceChange(action="Add", logical_id=logical_id, resource_type=resource.get("Type", ""))
        for logical_id, resource in (template.get("Resources") or {}).items()
    ]
    return ChangeSetDescription(
        change_set_id="",
        change_set_name="",
        stack_id="",
        stack_name=stack_name,
        status=ChangeSetStatus.CREATE_COMPLETE,
        changes=changes,
    )
