"""Output formatters for deployment results, change sets and drift results."""

import json
from dataclasses import asdict

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from stackdeploy.models import (
    ChangeSetDescription,
    DriftCheckResult,
    ResourceStatus,
    StackDriftStatus,
)
from stackdeploy.results import (
    ChangeSetPending,
    DeploymentApplied,
    DestroyResult,
    NeedRollbackFirst,
    NoOpDeployment,
    ReplacementRequiresRollback,
    RollbackResult,
)

ACTION_COLORS = {
    "Add": "green",
    "Modify": "yellow",
    "Remove": "red",
    "Import": "cyan",
    "Dynamic": "magenta",
}


def _console() -> Console:
    return Console(record=True, width=120)


def describe_result(stack_name: str, result) -> str:
    """One-line, plain text summary of a deploy, destroy or rollback result."""
    if isinstance(result, NoOpDeployment):
        return f"{stack_name} (no changes)"
    if isinstance(result, DeploymentApplied):
        return f"{stack_name} deployed"
    if isinstance(result, ChangeSetPending):
        return f"{stack_name}: change set {result.change_set_id} created and waiting for execution"
    if isinstance(result, NeedRollbackFirst):
        return (
            f"{stack_name} is paused in a failed state ({result.status}) and needs a rollback "
            f"before it can be deployed ({result.reason})"
        )
    if isinstance(result, ReplacementRequiresRollback):
        return f"{stack_name}: the change replaces resources, which requires rollback to be enabled"
    if isinstance(result, DestroyResult):
        if result.stack_arn is None:
            return f"{stack_name} does not exist, nothing to destroy"
        return f"{stack_name} destroyed"
    if isinstance(result, RollbackResult):
        if result.not_in_rollbackable_state:
            return f"{stack_name} is not in a state that can be rolled back"
        return f"{stack_name} rolled back"
    raise TypeError(f"Unknown result type: {type(result).__name__}")


def format_result(stack_name: str, result) -> str:
    """Format a result with its stack ARN and outputs as a Rich tree, returned as a string."""
    console = _console()
    succeeded = (NoOpDeployment, DeploymentApplied, ChangeSetPending, DestroyResult)
    ok = isinstance(result, succeeded) or (isinstance(result, RollbackResult) and result.success)
    style = "green" if ok else "red"
    tree = Tree(Text(describe_result(stack_name, result), style=style))

    stack_arn = getattr(result, "stack_arn", None)
    if stack_arn:
        tree.add(Text(f"Stack ARN: {stack_arn}"))

    outputs = getattr(result, "outputs", None)
    if outputs:
        outputs_branch = tree.add(Text.from_markup("[bold]Outputs[/bold]"))
        for key, value in sorted(outputs.items()):
            outputs_branch.add(Text(f"{key} = {value}"))

    console.print(tree)
    return console.export_text()


def format_result_json(stack_name: str, result) -> str:
    """Format a result as JSON."""
    return json.dumps(
        {
            "stack_name": stack_name,
            "result": type(result).__name__,
            "message": describe_result(stack_name, result),
            **asdict(result),
        },
        indent=2,
    )


def format_change_set(change_set: ChangeSetDescription) -> str:
    """Format the resource changes of a change set as a Rich table, returned as a string."""
    if change_set.has_no_changes:
        return f"{change_set.stack_name}: no changes"

    console = _console()
    table = Table(title=f"{change_set.stack_name}: {len(change_set.changes)} change(s)")
    table.add_column("Action")
    table.add_column("Logical ID")
    table.add_column("Type")
    table.add_column("Replacement")

    for change in change_set.changes:
        color = ACTION_COLORS.get(change.action, "white")
        replacement = change.replacement or ""
        if change.is_replacement:
            replacement = f"[bold red]{replacement or 'True'}[/bold red]"
        table.add_row(
            f"[{color}]{change.action}[/{color}]",
            change.logical_id,
            change.resource_type,
            replacement,
        )

    console.print(table)
    return console.export_text()


def format_change_set_json(change_set: ChangeSetDescription) -> str:
    """Format a change set as JSON."""
    return json.dumps(
        {
            "stack_name": change_set.stack_name,
            "change_set_id": change_set.change_set_id,
            "status": change_set.status.value,
            "no_changes": change_set.has_no_changes,
            "changes": [asdict(change) for change in change_set.changes],
        },
        indent=2,
    )


def format_drift_json(
    results: list[DriftCheckResult], failed_stacks: list[str] | None = None
) -> str:
    """Format drift results as JSON."""
    drifted_count = sum(1 for r in results if r.stack_status == StackDriftStatus.DRIFTED)

    stacks = []
    for result in results:
        resources = []
        for rd in result.resource_drifts or []:
            if rd.status == ResourceStatus.IN_SYNC:
                continue
            resources.append(
                {
                    "logical_id": rd.logical_id,
                    "physical_id": rd.physical_id,
                    "resource_type": rd.resource_type,
                    "status": rd.status.value,
                    "property_diffs": [
                        {
                            "property_path": pd.property_path,
                            "expected_value": pd.expected_value,
                            "actual_value": pd.actual_value,
                            "diff_type": pd.diff_type.value,
                        }
                        for pd in rd.property_diffs
                    ],
                }
            )

        stacks.append(
            {
                "stack_name": result.stack_name,
                "stack_id": result.stack_id,
                "detection_id": result.detection_id,
                "status": result.stack_status.value,
                "drifted_resource_count": result.drifted_resource_count,
                "resources": resources,
            }
        )

    return json.dumps(
        {
            "summary": {
                "total_stacks": len(results),
                "drifted_stacks": drifted_count,
                "failed_stacks": failed_stacks or [],
            },
            "stacks": stacks,
        },
        indent=2,
    )


def format_drift_table(
    results: list[DriftCheckResult], failed_stacks: list[str] | None = None
) -> str:
    """Format drift results as a Rich tree view, returned as a string."""
    if not results and not failed_stacks:
        return "No stacks checked."

    console = _console()
    tree = Tree("[bold]Drift Report[/bold]")

    for result in results:
        status_style = "green" if result.stack_status == StackDriftStatus.IN_SYNC else "red"
        stack_branch = tree.add(
            Text.from_markup(
                f"[{status_style}]{result.stack_name}[/{status_style}]"
                f" - {result.stack_status.value}"
            )
        )

        for rd in result.resource_drifts or []:
            if rd.status == ResourceStatus.IN_SYNC:
                continue
            resource_branch = stack_branch.add(
                Text.from_markup(
                    f"[yellow]{rd.logical_id}[/yellow] ({rd.resource_type}) - {rd.status.value}"
                )
            )
            for pd in rd.property_diffs:
                resource_branch.add(
                    Text.from_markup(
                        f"{escape(pd.property_path)}: "
                        f"[green]{escape(pd.expected_value)}[/green] → "
                        f"[red]{escape(pd.actual_value)}[/red]"
                    )
                )

    for stack_name in failed_stacks or []:
        tree.add(Text.from_markup(f"[bold red]{stack_name}[/bold red] - detection failed"))

    console.print(tree)
    return console.export_text()
