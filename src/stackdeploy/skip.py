"""Deciding whether a deployment can be skipped without asking CloudFormation."""

import json
import logging

from stackdeploy.models import DeployedStack, ParameterChange, ParameterResolution
from stackdeploy.options import DeployOptions, StackArtifact

logger = logging.getLogger(__name__)


def can_skip_deploy(
    artifact: StackArtifact,
    deployed: DeployedStack,
    deployed_template: dict,
    resolution: ParameterResolution,
    options: DeployOptions,
) -> bool:
    """Return True if the stack is already in the desired state.

    The checks are deliberately conservative: anything we cannot prove unchanged
    forces a deployment.
    """
    stack_name = options.deploy_name or artifact.stack_name
    logger.debug("%s: checking if we can skip deploy", stack_name)

    if options.force:
        logger.debug("%s: forced deployment", stack_name)
        return False

    if not options.execute:
        logger.debug("%s: --no-execute, always creating change set", stack_name)
        return False

    if not deployed.exists:
        logger.debug("%s: no existing stack", stack_name)
        return False

    if _serialize(artifact.template) != _serialize(deployed_template):
        logger.debug("%s: template has changed", stack_name)
        return False

    if options.tags != deployed.tags:
        logger.debug("%s: tags have changed", stack_name)
        return False

    if set(options.notification_arns) != set(deployed.notification_arns):
        logger.debug("%s: notification arns have changed", stack_name)
        return False

    if bool(options.termination_protection) != deployed.termination_protection:
        logger.debug("%s: termination protection has been updated", stack_name)
        return False

    if resolution.has_changes:
        if resolution.changes == ParameterChange.INDETERMINATE:
            logger.debug(
                "%s: parameters may have changed because some are read from SSM at deploy time",
                stack_name,
            )
        else:
            logger.debug("%s: parameters have changed", stack_name)
        return False

    if deployed.status.is_failure:
        logger.debug("%s: stack is in a failure state", stack_name)
        return False

    logger.debug("%s: skipping deployment (use --force to override)", stack_name)
    return True


def _serialize(template: dict) -> str:
    return json.dumps(template, sort_keys=True)
