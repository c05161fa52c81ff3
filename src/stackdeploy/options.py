"""Inputs to a deployment: the desired stack and how to deploy it."""

import json
from dataclasses import dataclass, field
from enum import StrEnum

from stackdeploy.errors import ValidationError
from stackdeploy.models import ApiParameter

# Largest template CloudFormation accepts inline; bigger ones have to be uploaded first.
MAX_TEMPLATE_BODY_SIZE = 51_200

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]


@dataclass(frozen=True)
class StackArtifact:
    """The desired state of a stack."""

    stack_name: str
    template: dict
    # Set when the template was already published by the asset step.
    template_url: str | None = None


@dataclass(frozen=True)
class ChangeSetDeployment:
    """Deploy by creating a change set and (optionally) executing it."""

    change_set_name: str = "stackdeploy-change-set"
    execute: bool = True
    import_existing_resources: bool = False


@dataclass(frozen=True)
class DirectDeployment:
    """Deploy with CreateStack/UpdateStack directly, without a change set."""


DeploymentMethod = ChangeSetDeployment | DirectDeployment


class HotswapMode(StrEnum):
    """How a configured hotswap hook is used."""

    FULL_DEPLOYMENT = "full-deployment"
    FALL_BACK = "fall-back"
    HOTSWAP_ONLY = "hotswap-only"


@dataclass(frozen=True)
class DeployOptions:
    """Fully resolved options for deploying one stack."""

    deployment_method: DeploymentMethod = field(default_factory=ChangeSetDeployment)
    deploy_name: str | None = None
    parameters: dict[str, str | None] = field(default_factory=dict)
    use_previous_parameters: bool = True
    force: bool = False
    rollback: bool = True
    resources_to_import: list[dict] | None = None
    tags: dict[str, str] = field(default_factory=dict)
    notification_arns: list[str] = field(default_factory=list)
    termination_protection: bool = False
    role_arn: str | None = None
    hotswap_mode: HotswapMode = HotswapMode.FALL_BACK

    @property
    def execute(self) -> bool:
        """False only for a change set deployment that must not be executed."""
        return not (
            isinstance(self.deployment_method, ChangeSetDeployment)
            and not self.deployment_method.execute
        )


@dataclass(frozen=True)
class StackRequest:
    """Arguments shared by CreateStack, UpdateStack and CreateChangeSet."""

    template_body: str | None = None
    template_url: str | None = None
    parameters: list[ApiParameter] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)
    notification_arns: list[str] = field(default_factory=list)
    role_arn: str | None = None
    capabilities: list[str] = field(default_factory=lambda: list(CAPABILITIES))
    disable_rollback: bool = False


def inline_template_body(artifact: StackArtifact) -> str | None:
    """The template body to send inline, or None when the template is deployed from its URL.

    Raises ValidationError if the body is too large to send inline.
    """
    if artifact.template_url is not None:
        return None

    template_body = json.dumps(artifact.template, indent=1)
    size = len(template_body.encode("utf-8"))
    if size > MAX_TEMPLATE_BODY_SIZE:
        raise ValidationError(
            f"Template of {artifact.stack_name} is too large to deploy inline "
            f"({size} bytes, limit {MAX_TEMPLATE_BODY_SIZE}); "
            "publish it and supply a template URL",
            stack_name=artifact.stack_name,
        )
    return template_body


def make_stack_request(
    artifact: StackArtifact,
    options: DeployOptions,
    parameters: list[ApiParameter],
) -> StackRequest:
    """Build the arguments shared by the create, update and change set calls."""
    return StackRequest(
        template_body=inline_template_body(artifact),
        template_url=artifact.template_url,
        parameters=parameters,
        tags=options.tags,
        notification_arns=options.notification_arns,
        role_arn=options.role_arn,
        disable_rollback=not options.rollback,
    )
