"""Shared test fixtures."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from stackdeploy.models import (
    ChangeSetDescription,
    ChangeSetStatus,
    DeployedStack,
    ResourceChange,
    StackStatus,
)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def cfn_client(aws_credentials):
    """Create a moto-mocked CloudFormation boto3 client."""
    with mock_aws():
        yield boto3.client("cloudformation", region_name="us-east-1")


@pytest.fixture
def mock_cfn_client():
    return MagicMock()


@pytest.fixture
def monitor():
    """A stand-in activity monitor with no collected errors."""
    m = MagicMock()
    m.errors = []
    return m


@pytest.fixture
def monitor_factory(monitor):
    return MagicMock(return_value=monitor)


SIMPLE_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyQueue": {
            "Type": "AWS::SQS::Queue",
            "Properties": {
                "QueueName": "my-test-queue"
            }
        }
    }
}"""

TAGGED_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyBucket": {
            "Type": "AWS::S3::Bucket"
        }
    }
}"""

QUEUE_TEMPLATE = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyQueue": {
            "Type": "AWS::SQS::Queue",
            "Properties": {"DelaySeconds": 0},
        }
    },
    "Outputs": {"QueueUrl": {"Value": {"Ref": "MyQueue"}}},
}

STACK_ID = "arn:aws:cloudformation:us-east-1:123456789012:stack/my-stack/uuid"


def make_stack(status="CREATE_COMPLETE", stack_name="my-stack", **kwargs):
    """A DeployedStack with sensible defaults for an existing stack."""
    kwargs.setdefault("stack_id", STACK_ID)
    return DeployedStack(
        stack_name=stack_name,
        status=StackStatus(status),
        **kwargs,
    )


def make_change_set(status=ChangeSetStatus.CREATE_COMPLETE, reason=None, changes=None):
    return ChangeSetDescription(
        change_set_id="arn:aws:cloudformation:us-east-1:123456789012:changeSet/cs/uuid",
        change_set_name="stackdeploy-change-set",
        stack_id=STACK_ID,
        stack_name="my-stack",
        status=status,
        status_reason=reason,
        changes=changes if changes is not None else [],
        creation_time=datetime(2026, 2, 25, 13, 0, 0, tzinfo=UTC),
    )


def modify_change(logical_id="MyQueue", policy_action=None, replacement="False"):
    return ResourceChange(
        action="Modify",
        logical_id=logical_id,
        resource_type="AWS::SQS::Queue",
        replacement=replacement,
        policy_action=policy_action,
    )
