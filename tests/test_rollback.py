"""Tests for rolling back failed stacks."""

from datetime import UTC, datetime

import pytest

from stackdeploy.errors import DeploymentError, ValidationError
from stackdeploy.models import StackEvent
from stackdeploy.results import RollbackResult
from stackdeploy.rollback import RollbackExecutor
from tests.conftest import STACK_ID, make_stack


@pytest.fixture
def executor(mock_cfn_client, monitor_factory):
    return RollbackExecutor(mock_cfn_client, monitor_factory=monitor_factory, poll_interval=0)


def _event(event_id, logical_id, status, resource_type="AWS::SQS::Queue"):
    return StackEvent(
        event_id=event_id,
        stack_name="my-stack",
        logical_id=logical_id,
        resource_type=resource_type,
        status=status,
        timestamp=datetime(2026, 2, 25, 13, 0, 0, tzinfo=UTC),
    )


def _stack_event(event_id, status):
    return _event(event_id, "my-stack", status, resource_type="AWS::CloudFormation::Stack")


@pytest.mark.parametrize("status", ["UPDATE_COMPLETE", "ROLLBACK_FAILED"])
def test_not_rollbackable(executor, mock_cfn_client, status):
    mock_cfn_client.describe_stack.return_value = make_stack(status)

    result = executor.rollback("my-stack")

    assert result == RollbackResult(stack_arn=STACK_ID, not_in_rollbackable_state=True)
    mock_cfn_client.rollback_stack.assert_not_called()


def test_start_rollback(executor, mock_cfn_client, monitor):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_FAILED"),
        make_stack("UPDATE_ROLLBACK_COMPLETE"),
    ]

    result = executor.rollback("my-stack", role_arn="arn:role")

    assert result == RollbackResult(stack_arn=STACK_ID, success=True)
    args = mock_cfn_client.rollback_stack.call_args
    assert args.args == ("my-stack",)
    assert args.kwargs["role_arn"] == "arn:role"
    monitor.stop.assert_called_once()


def test_continue_rollback_with_explicit_orphans(executor, mock_cfn_client):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_ROLLBACK_FAILED"),
        make_stack("UPDATE_ROLLBACK_COMPLETE"),
    ]

    result = executor.rollback("my-stack", orphan_logical_ids=("MyQueue",))

    assert result.success
    assert mock_cfn_client.continue_update_rollback.call_args.kwargs["resources_to_skip"] == ["MyQueue"]


def test_orphan_failed_discovers_resources(executor, mock_cfn_client):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_ROLLBACK_FAILED"),
        make_stack("UPDATE_ROLLBACK_COMPLETE"),
    ]
    mock_cfn_client.describe_stack_events.return_value = (
        [
            _stack_event("5", "UPDATE_ROLLBACK_FAILED"),
            _event("4", "MyTopic", "UPDATE_FAILED"),
            _event("3", "MyQueue", "UPDATE_FAILED"),
            _stack_event("2", "UPDATE_ROLLBACK_IN_PROGRESS"),
            _event("1", "OldFailure", "UPDATE_FAILED"),
        ],
        None,
    )

    executor.rollback("my-stack", orphan_failed_resources=True)

    skipped = mock_cfn_client.continue_update_rollback.call_args.kwargs["resources_to_skip"]
    assert skipped == ["MyTopic", "MyQueue"]


def test_orphan_options_conflict(executor, mock_cfn_client):
    with pytest.raises(ValidationError):
        executor.rollback("my-stack", orphan_failed_resources=True, orphan_logical_ids=["MyQueue"])

    mock_cfn_client.describe_stack.assert_not_called()


def test_rollback_failure_raises_with_errors(executor, mock_cfn_client, monitor):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_FAILED"),
        make_stack("UPDATE_ROLLBACK_FAILED"),
    ]
    monitor.errors = ["MyQueue: Queue cannot be restored"]

    with pytest.raises(DeploymentError, match="MyQueue: Queue cannot be restored .*--orphan"):
        executor.rollback("my-stack")


def test_orphaning_loops_until_rolled_back(executor, mock_cfn_client, monitor):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_ROLLBACK_FAILED"),
        make_stack("UPDATE_ROLLBACK_FAILED"),
        make_stack("UPDATE_ROLLBACK_FAILED"),
        make_stack("UPDATE_ROLLBACK_COMPLETE"),
    ]
    mock_cfn_client.describe_stack_events.return_value = (
        [_event("1", "MyQueue", "UPDATE_FAILED")],
        None,
    )
    monitor.errors = ["MyQueue: still failing"]

    result = executor.rollback("my-stack", orphan_failed_resources=True)

    assert result.success
    assert mock_cfn_client.continue_update_rollback.call_count == 2


def test_vanished_during_rollback(executor, mock_cfn_client):
    mock_cfn_client.describe_stack.side_effect = [
        make_stack("UPDATE_FAILED"),
        make_stack(stack_id=None),
    ]

    with pytest.raises(DeploymentError, match="disappeared"):
        executor.rollback("my-stack")
