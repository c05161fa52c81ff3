"""Tests for drift detection."""

from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from stackdeploy.drift import DriftDetector
from stackdeploy.errors import DriftDetectionError
from stackdeploy.models import (
    DetectionRun,
    DetectionStatus,
    DiffType,
    PropertyDiff,
    ResourceDrift,
    ResourceStatus,
    StackDriftStatus,
)


def _make_detection_run(stack_name, status=DetectionStatus.IN_PROGRESS, **kwargs):
    return DetectionRun(
        detection_id=f"det-{stack_name}",
        stack_id=f"arn:aws:cloudformation:us-east-1:123:stack/{stack_name}/uuid",
        stack_name=stack_name,
        status=status,
        started_at=datetime(2026, 2, 25, 13, 0, 0, tzinfo=UTC),
        **kwargs,
    )


def _complete(stack_name, drifted=False):
    return _make_detection_run(
        stack_name,
        status=DetectionStatus.COMPLETE,
        stack_status=StackDriftStatus.DRIFTED if drifted else StackDriftStatus.IN_SYNC,
        drifted_resource_count=1 if drifted else 0,
    )


@pytest.fixture
def no_sleep():
    with patch("stackdeploy.drift.time.sleep") as sleep:
        yield sleep


def test_detect_and_poll_in_sync(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("my-stack")
    mock_cfn_client.poll_detection.return_value = _complete("my-stack")
    mock_cfn_client.get_resource_drifts.return_value = []

    result = DriftDetector(mock_cfn_client).detect_and_poll("my-stack")

    assert result.status == DetectionStatus.COMPLETE
    assert result.stack_status == StackDriftStatus.IN_SYNC
    assert result.detection_id == "det-my-stack"
    assert result.resource_drifts == []
    no_sleep.assert_not_called()


def test_detect_and_poll_drifted_with_resources(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("drifted-stack")
    mock_cfn_client.poll_detection.return_value = _complete("drifted-stack", drifted=True)
    mock_cfn_client.get_resource_drifts.return_value = [
        ResourceDrift(
            logical_id="MyQueue",
            physical_id="queue-url",
            resource_type="AWS::SQS::Queue",
            status=ResourceStatus.MODIFIED,
            property_diffs=[
                PropertyDiff(
                    property_path="/Properties/DelaySeconds",
                    expected_value="0",
                    actual_value="5",
                    diff_type=DiffType.NOT_EQUAL,
                )
            ],
            timestamp=datetime(2026, 2, 25, 13, 30, 0),
        )
    ]

    result = DriftDetector(mock_cfn_client).detect_and_poll("drifted-stack")

    assert result.stack_status == StackDriftStatus.DRIFTED
    assert result.drifted_resource_count == 1
    assert len(result.resource_drifts) == 1


def test_resources_only_fetched_when_requested(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("my-stack")
    mock_cfn_client.poll_detection.return_value = _complete("my-stack")

    result = DriftDetector(mock_cfn_client).detect_and_poll("my-stack", include_resources=False)

    assert result.resource_drifts is None
    mock_cfn_client.get_resource_drifts.assert_not_called()


def test_polls_until_complete(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("slow-stack")
    mock_cfn_client.poll_detection.side_effect = [
        _make_detection_run("slow-stack"),
        _make_detection_run("slow-stack"),
        _complete("slow-stack"),
    ]
    mock_cfn_client.get_resource_drifts.return_value = []

    DriftDetector(mock_cfn_client).detect_and_poll("slow-stack")

    assert mock_cfn_client.poll_detection.call_count == 3
    assert no_sleep.call_count == 2


def test_detection_failure_carries_reason(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("bad-stack")
    mock_cfn_client.poll_detection.return_value = _make_detection_run(
        "bad-stack",
        status=DetectionStatus.FAILED,
        status_reason="Stack is being updated",
    )

    with pytest.raises(DriftDetectionError, match="Stack is being updated"):
        DriftDetector(mock_cfn_client).detect_and_poll("bad-stack")


def test_gives_up_after_exactly_30_attempts(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("stuck-stack")
    mock_cfn_client.poll_detection.return_value = _make_detection_run("stuck-stack")

    with pytest.raises(DriftDetectionError, match="timed out after 30 attempts"):
        DriftDetector(mock_cfn_client).detect_and_poll("stuck-stack")

    assert mock_cfn_client.poll_detection.call_count == 30
    # No wait after the last poll.
    assert no_sleep.call_count == 29


def test_backoff_delays_are_monotonic_and_capped(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.return_value = _make_detection_run("stuck-stack")
    mock_cfn_client.poll_detection.return_value = _make_detection_run("stuck-stack")

    with patch("stackdeploy.drift.random.uniform", side_effect=[0.9, 0.0] * 15):
        with pytest.raises(DriftDetectionError):
            DriftDetector(mock_cfn_client).detect_and_poll("stuck-stack")

    delays = [call.args[0] for call in no_sleep.call_args_list]
    assert delays[:5] == pytest.approx([1.9, 2.0, 4.9, 8.0, 16.9])
    assert all(a <= b for a, b in zip(delays, delays[1:]))
    assert max(delays) == 30.0
    assert delays[-1] == 30.0


def test_backoff_jitter_is_added_before_capping(mock_cfn_client):
    detector = DriftDetector(mock_cfn_client)

    with patch("stackdeploy.drift.random.uniform", return_value=0.5):
        assert detector.backoff_delay(0) == 1.5
        assert detector.backoff_delay(4) == 16.5
        assert detector.backoff_delay(5) == 30.0


def test_detect_multiple_stacks_concurrent(mock_cfn_client, no_sleep):
    mock_cfn_client.detect_drift.side_effect = lambda name: _make_detection_run(name)
    mock_cfn_client.poll_detection.side_effect = lambda detection_id, name: _complete(name)
    mock_cfn_client.get_resource_drifts.return_value = []

    detection = DriftDetector(mock_cfn_client, max_concurrent=3).detect(
        ["stack-2", "stack-0", "stack-1"]
    )

    assert [r.stack_name for r in detection.results] == ["stack-0", "stack-1", "stack-2"]
    assert detection.failed_stacks == []
    assert mock_cfn_client.detect_drift.call_count == 3


def test_detect_records_failed_stacks(mock_cfn_client, no_sleep):
    def poll(detection_id, name):
        if name == "bad-stack":
            return _make_detection_run(name, status=DetectionStatus.FAILED, status_reason="nope")
        return _complete(name)

    mock_cfn_client.detect_drift.side_effect = lambda name: _make_detection_run(name)
    mock_cfn_client.poll_detection.side_effect = poll
    mock_cfn_client.get_resource_drifts.return_value = []

    detection = DriftDetector(mock_cfn_client, max_concurrent=2).detect(["good-stack", "bad-stack"])

    assert [r.stack_name for r in detection.results] == ["good-stack"]
    assert detection.failed_stacks == ["bad-stack"]


def test_detect_no_stacks(mock_cfn_client):
    detection = DriftDetector(mock_cfn_client).detect([])

    assert detection.results == []
    assert detection.failed_stacks == []
    mock_cfn_client.detect_drift.assert_not_called()
