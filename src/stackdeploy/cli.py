"""CLI entrypoint for stackdeploy."""

import logging
import sys
from pathlib import Path

import click
import yaml
from botocore.exceptions import BotoCoreError, ClientError

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.deploy import DeploymentExecutor
from stackdeploy.destroy import DestructionExecutor
from stackdeploy.drift import DriftDetector
from stackdeploy.errors import DeploymentError, ValidationError
from stackdeploy.formatter import (
    format_change_set,
    format_change_set_json,
    format_drift_json,
    format_drift_table,
    format_result,
    format_result_json,
)
from stackdeploy.models import StackDriftStatus
from stackdeploy.options import (
    ChangeSetDeployment,
    DeployOptions,
    DirectDeployment,
    StackArtifact,
)
from stackdeploy.results import NeedRollbackFirst, ReplacementRequiresRollback
from stackdeploy.rollback import RollbackExecutor
from stackdeploy.templates import parse_template

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _parse_pairs(values: tuple[str, ...], what: str) -> dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    pairs = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint=what)
        pairs[key] = value
    return pairs


def load_template(path: str) -> dict:
    """Load a JSON or YAML template file."""
    try:
        template = parse_template(Path(path).read_text())
    except yaml.YAMLError as e:
        raise click.BadParameter(f"{path} is not valid JSON or YAML: {e}", param_hint="TEMPLATE")
    if not template or not isinstance(template, dict):
        raise click.BadParameter(f"{path} does not contain a template", param_hint="TEMPLATE")
    return template


def _fail(message: str, code: int) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="STACKDEPLOY_LOG_LEVEL",
    show_default=True,
    help="Log level (env: STACKDEPLOY_LOG_LEVEL).",
)
@click.option("--region", default=None, help="AWS region.")
@click.pass_context
def main(ctx, log_level, region):
    """Deploy CloudFormation stacks and keep an eye on them."""
    logging.basicConfig(level=getattr(logging, log_level.upper()), format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["region"] = region


def _client(ctx) -> CloudFormationClient:
    return CloudFormationClient(region=ctx.obj.get("region"))


def _deploy_options(
    stack_name,
    parameter,
    tag,
    notification_arn,
    method,
    change_set_name,
    execute,
    force,
    rollback,
    termination_protection,
    role_arn,
    previous_parameters,
    import_existing_resources,
) -> DeployOptions:
    if method == "direct":
        if import_existing_resources:
            raise click.BadParameter(
                "--import-existing-resources requires --method change-set", param_hint="--method"
            )
        deployment_method = DirectDeployment()
    else:
        deployment_method = ChangeSetDeployment(
            change_set_name=change_set_name,
            execute=execute,
            import_existing_resources=import_existing_resources,
        )

    return DeployOptions(
        deployment_method=deployment_method,
        deploy_name=stack_name,
        parameters=_parse_pairs(parameter, "--parameter"),
        use_previous_parameters=previous_parameters,
        force=force,
        rollback=rollback,
        tags=_parse_pairs(tag, "--tag"),
        notification_arns=list(notification_arn),
        termination_protection=termination_protection,
        role_arn=role_arn,
    )


def _deploy_arguments(func):
    options = [
        click.argument("template", type=click.Path(exists=True, dir_okay=False)),
        click.option("--stack-name", required=True, help="Name of the stack."),
        click.option("--template-url", default=None, help="URL of the already uploaded template."),
        click.option("--parameter", "-p", multiple=True, help="Template parameter (KEY=VALUE)."),
        click.option(
            "--previous-parameters/--no-previous-parameters",
            default=True,
            help="Reuse deployed values for parameters that are not supplied.",
        ),
        click.option("--tag", multiple=True, help="Stack tag (KEY=VALUE)."),
        click.option("--notification-arn", multiple=True, help="SNS topic for stack events."),
        click.option(
            "--method",
            type=click.Choice(["change-set", "direct"]),
            default="change-set",
            show_default=True,
            help="Deploy through a change set or directly.",
        ),
        click.option(
            "--change-set-name",
            default="stackdeploy-change-set",
            show_default=True,
            help="Name of the change set to create.",
        ),
        click.option(
            "--execute/--no-execute",
            default=True,
            help="Execute the change set, or leave it for review.",
        ),
        click.option("--force", is_flag=True, help="Deploy even if the stack looks up to date."),
        click.option(
            "--rollback/--no-rollback",
            default=True,
            help="Roll back the stack if the deployment fails.",
        ),
        click.option(
            "--termination-protection", is_flag=True, help="Protect the stack from deletion."
        ),
        click.option(
            "--role-arn", default=None, help="Role CloudFormation assumes for the operation."
        ),
        click.option(
            "--import-existing-resources",
            is_flag=True,
            help="Import resources that already exist instead of creating them.",
        ),
        click.option(
            "--format",
            "output_format",
            type=click.Choice(["table", "json"]),
            default="table",
            help="Output format.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@main.command()
@_deploy_arguments
@click.pass_context
def deploy(
    ctx,
    template,
    stack_name,
    template_url,
    parameter,
    previous_parameters,
    tag,
    notification_arn,
    method,
    change_set_name,
    execute,
    force,
    rollback,
    termination_protection,
    role_arn,
    import_existing_resources,
    output_format,
):
    """Deploy TEMPLATE as a stack."""
    options = _deploy_options(
        stack_name,
        parameter,
        tag,
        notification_arn,
        method,
        change_set_name,
        execute,
        force,
        rollback,
        termination_protection,
        role_arn,
        previous_parameters,
        import_existing_resources,
    )
    artifact = StackArtifact(stack_name, load_template(template), template_url=template_url)
    executor = DeploymentExecutor(_client(ctx))

    try:
        result = executor.deploy(artifact, options)
    except ValidationError as e:
        _fail(e.message, EXIT_USAGE)
    except (DeploymentError, ClientError, BotoCoreError) as e:
        _fail(str(e), EXIT_FAILED)

    formatters = {"table": format_result, "json": format_result_json}
    click.echo(formatters[output_format](stack_name, result))

    refused = isinstance(result, (NeedRollbackFirst, ReplacementRequiresRollback))
    sys.exit(EXIT_FAILED if refused else EXIT_OK)


@main.command()
@_deploy_arguments
@click.pass_context
def diff(
    ctx,
    template,
    stack_name,
    template_url,
    parameter,
    previous_parameters,
    tag,
    notification_arn,
    method,
    change_set_name,
    execute,
    force,
    rollback,
    termination_protection,
    role_arn,
    import_existing_resources,
    output_format,
):
    """Show what deploying TEMPLATE would change."""
    options = _deploy_options(
        stack_name,
        parameter,
        tag,
        notification_arn,
        "change-set",
        change_set_name,
        False,
        force,
        rollback,
        termination_protection,
        role_arn,
        previous_parameters,
        import_existing_resources,
    )
    artifact = StackArtifact(stack_name, load_template(template), template_url=template_url)
    executor = DeploymentExecutor(_client(ctx))

    try:
        change_set = executor.diff(artifact, options)
    except ValidationError as e:
        _fail(e.message, EXIT_USAGE)
    except (DeploymentError, ClientError, BotoCoreError) as e:
        _fail(str(e), EXIT_FAILED)

    formatters = {"table": format_change_set, "json": format_change_set_json}
    click.echo(formatters[output_format](change_set))
    sys.exit(EXIT_OK)


@main.command()
@click.option("--stack-name", required=True, help="Name of the stack.")
@click.option("--role-arn", default=None, help="Role CloudFormation assumes for the operation.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def destroy(ctx, stack_name, role_arn, yes, output_format):
    """Delete a stack."""
    if not yes:
        click.confirm(f"Are you sure you want to delete {stack_name}?", abort=True)

    executor = DestructionExecutor(_client(ctx))
    try:
        result = executor.destroy(stack_name, role_arn=role_arn)
    except (DeploymentError, ClientError, BotoCoreError) as e:
        _fail(str(e), EXIT_FAILED)

    formatters = {"table": format_result, "json": format_result_json}
    click.echo(formatters[output_format](stack_name, result))
    sys.exit(EXIT_OK)


@main.command()
@click.option("--stack-name", required=True, help="Name of the stack.")
@click.option("--role-arn", default=None, help="Role CloudFormation assumes for the operation.")
@click.option(
    "--force",
    "orphan_failed",
    is_flag=True,
    help="Orphan all resources that fail to roll back.",
)
@click.option("--orphan", multiple=True, help="Logical id of a resource to orphan.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def rollback(ctx, stack_name, role_arn, orphan_failed, orphan, output_format):
    """Roll a failed stack back to its last stable state."""
    executor = RollbackExecutor(_client(ctx))
    try:
        result = executor.rollback(
            stack_name,
            role_arn=role_arn,
            orphan_failed_resources=orphan_failed,
            orphan_logical_ids=orphan,
        )
    except ValidationError as e:
        _fail(e.message, EXIT_USAGE)
    except (DeploymentError, ClientError, BotoCoreError) as e:
        _fail(str(e), EXIT_FAILED)

    formatters = {"table": format_result, "json": format_result_json}
    click.echo(formatters[output_format](stack_name, result))
    sys.exit(EXIT_OK)


@main.command()
@click.option("--stack", multiple=True, help="Specific stack name(s) to check.")
@click.option("--prefix", default=None, help="Filter stacks by name prefix.")
@click.option("--tag", default=None, help="Filter stacks by tag (KEY=VALUE).")
@click.option("--drifted-only", is_flag=True, help="Show only drifted stacks.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(1, 50),
    default=5,
    help="Max concurrent drift detections (1-50).",
)
@click.pass_context
def drift(ctx, stack, prefix, tag, drifted_only, output_format, max_concurrent):
    """Detect CloudFormation stack drift."""
    tags = None
    if tag:
        tags = _parse_pairs((tag,), "--tag")

    client = _client(ctx)
    stack_names = list(stack) or client.list_stack_names(prefix=prefix, tags=tags)
    detector = DriftDetector(client, max_concurrent=max_concurrent)
    detection = detector.detect(stack_names)

    results = detection.results
    if drifted_only:
        results = [r for r in results if r.stack_status == StackDriftStatus.DRIFTED]

    formatters = {"table": format_drift_table, "json": format_drift_json}
    click.echo(formatters[output_format](results, detection.failed_stacks))

    if detection.failed_stacks:
        sys.exit(EXIT_USAGE)
    has_drift = any(r.stack_status == StackDriftStatus.DRIFTED for r in detection.results)
    sys.exit(EXIT_FAILED if has_drift else EXIT_OK)
