"""Thin boto3 wrapper for the CloudFormation API calls used by stackdeploy."""

from datetime import UTC, datetime

import boto3
from botocore.exceptions import ClientError

from stackdeploy.models import (
    ChangeSetDescription,
    ChangeSetStatus,
    DeployedStack,
    DetectionRun,
    DetectionStatus,
    DiffType,
    PropertyDiff,
    ResourceChange,
    ResourceDrift,
    ResourceStatus,
    StackDriftStatus,
    StackEvent,
    StackStatus,
)
from stackdeploy.options import StackRequest
from stackdeploy.templates import parse_template

NO_UPDATES_MESSAGE = "No updates are to be performed."

# Drift detection is only accepted for stacks that are not mid-operation.
DRIFT_CHECKABLE_STATUSES = (
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
)


def _error_message(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Message", "")


def _is_stack_missing(err: ClientError, stack_name: str) -> bool:
    error = err.response.get("Error", {})
    return (
        error.get("Code") == "ValidationError"
        and error.get("Message") == f"Stack with id {stack_name} does not exist"
    )


def _is_stack_gone(err: ClientError, stack_name: str) -> bool:
    # The event stream of a deleted stack answers with a differently worded message.
    error = err.response.get("Error", {})
    return (
        error.get("Code") == "ValidationError"
        and error.get("Message") == f"Stack [{stack_name}] does not exist"
    )


def _request_kwargs(request: StackRequest) -> dict:
    kwargs: dict = {
        "Capabilities": request.capabilities,
        "Parameters": [p.to_api() for p in request.parameters],
        "Tags": [{"Key": k, "Value": v} for k, v in request.tags.items()],
        "NotificationARNs": request.notification_arns,
    }
    if request.template_url:
        kwargs["TemplateURL"] = request.template_url
    else:
        kwargs["TemplateBody"] = request.template_body
    if request.role_arn:
        kwargs["RoleARN"] = request.role_arn
    return kwargs


def _parse_template(body) -> dict:
    # botocore already decodes JSON template bodies into dicts.
    if isinstance(body, dict):
        return body
    return parse_template(body)


class CloudFormationClient:
    """Wraps boto3 CloudFormation calls and returns stackdeploy dataclasses."""

    def __init__(self, region: str | None = None):
        self._client = boto3.client("cloudformation", **({"region_name": region} if region else {}))

    def describe_stack(self, stack_name: str) -> DeployedStack:
        """Describe a stack. A stack that does not exist is returned with ``exists == False``."""
        try:
            resp = self._client.describe_stacks(StackName=stack_name)
        except ClientError as err:
            if _is_stack_missing(err, stack_name):
                return DeployedStack.does_not_exist(stack_name)
            raise

        stacks = resp.get("Stacks") or []
        if not stacks:
            return DeployedStack.does_not_exist(stack_name)
        stack = stacks[0]

        return DeployedStack(
            stack_name=stack_name,
            stack_id=stack["StackId"],
            status=StackStatus.from_stack_description(stack),
            outputs={o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])},
            parameters={
                p["ParameterKey"]: p.get("ResolvedValue", p.get("ParameterValue"))
                for p in stack.get("Parameters", [])
            },
            tags={t["Key"]: t["Value"] for t in stack.get("Tags", [])},
            notification_arns=list(stack.get("NotificationARNs", [])),
            termination_protection=bool(stack.get("EnableTerminationProtection", False)),
        )

    def get_template(self, stack_name: str, processed: bool = False) -> dict:
        """Fetch the deployed template of a stack, or ``{}`` if it does not exist."""
        try:
            resp = self._client.get_template(
                StackName=stack_name,
                TemplateStage="Processed" if processed else "Original",
            )
        except ClientError as err:
            if _is_stack_missing(err, stack_name):
                return {}
            raise
        return _parse_template(resp.get("TemplateBody"))

    def create_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        change_set_type: str,
        request: StackRequest,
        client_token: str,
        description: str,
        resources_to_import: list[dict] | None = None,
        import_existing_resources: bool = False,
    ) -> str:
        """Start creating a change set. Returns its id."""
        kwargs = _request_kwargs(request)
        if resources_to_import:
            kwargs["ResourcesToImport"] = resources_to_import
        if import_existing_resources:
            kwargs["ImportExistingResources"] = True

        resp = self._client.create_change_set(
            StackName=stack_name,
            ChangeSetName=change_set_name,
            ChangeSetType=change_set_type,
            ClientToken=client_token,
            Description=description,
            **kwargs,
        )
        return resp["Id"]

    def describe_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        fetch_all: bool = False,
    ) -> ChangeSetDescription:
        """Describe a change set. With ``fetch_all`` every page of changes is collected."""
        resp = self._client.describe_change_set(StackName=stack_name, ChangeSetName=change_set_name)
        raw_changes = list(resp.get("Changes", []))

        next_token = resp.get("NextToken")
        while fetch_all and next_token:
            page = self._client.describe_change_set(
                StackName=stack_name,
                ChangeSetName=resp.get("ChangeSetId", change_set_name),
                NextToken=next_token,
            )
            raw_changes.extend(page.get("Changes", []))
            next_token = page.get("NextToken")

        changes = []
        for change in raw_changes:
            rc = change.get("ResourceChange")
            if rc is None:
                continue
            changes.append(
                ResourceChange(
                    action=rc.get("Action", ""),
                    logical_id=rc.get("LogicalResourceId", ""),
                    resource_type=rc.get("ResourceType", ""),
                    physical_id=rc.get("PhysicalResourceId"),
                    replacement=rc.get("Replacement"),
                    policy_action=rc.get("PolicyAction"),
                )
            )

        return ChangeSetDescription(
            change_set_id=resp.get("ChangeSetId", ""),
            change_set_name=resp.get("ChangeSetName", change_set_name),
            stack_id=resp.get("StackId", ""),
            stack_name=resp.get("StackName", stack_name),
            status=ChangeSetStatus(resp["Status"]),
            status_reason=resp.get("StatusReason"),
            changes=changes,
            creation_time=resp.get("CreationTime"),
        )

    def delete_change_set(self, stack_name: str, change_set_name: str) -> None:
        self._client.delete_change_set(StackName=stack_name, ChangeSetName=change_set_name)

    def execute_change_set(
        self,
        stack_name: str,
        change_set_name: str,
        client_request_token: str,
        disable_rollback: bool = False,
    ) -> None:
        kwargs: dict = {}
        if disable_rollback:
            kwargs["DisableRollback"] = True
        self._client.execute_change_set(
            StackName=stack_name,
            ChangeSetName=change_set_name,
            ClientRequestToken=client_request_token,
            **kwargs,
        )

    def create_stack(
        self,
        stack_name: str,
        request: StackRequest,
        client_request_token: str,
        termination_protection: bool = False,
    ) -> str:
        kwargs = _request_kwargs(request)
        if request.disable_rollback:
            kwargs["DisableRollback"] = True
        if termination_protection:
            kwargs["EnableTerminationProtection"] = True
        resp = self._client.create_stack(
            StackName=stack_name,
            ClientRequestToken=client_request_token,
            **kwargs,
        )
        return resp["StackId"]

    def update_stack(
        self, stack_name: str, request: StackRequest, client_request_token: str
    ) -> bool:
        """Start a stack update. Returns False if CloudFormation reports nothing to update."""
        kwargs = _request_kwargs(request)
        if request.disable_rollback:
            kwargs["DisableRollback"] = True
        try:
            self._client.update_stack(
                StackName=stack_name,
                ClientRequestToken=client_request_token,
                **kwargs,
            )
        except ClientError as err:
            if _error_message(err) == NO_UPDATES_MESSAGE:
                return False
            raise
        return True

    def delete_stack(self, stack_name: str, role_arn: str | None = None) -> None:
        kwargs = {"RoleARN": role_arn} if role_arn else {}
        self._client.delete_stack(StackName=stack_name, **kwargs)

    def update_termination_protection(self, stack_name: str, enabled: bool) -> None:
        self._client.update_termination_protection(
            StackName=stack_name,
            EnableTerminationProtection=enabled,
        )

    def rollback_stack(
        self,
        stack_name: str,
        client_request_token: str,
        role_arn: str | None = None,
    ) -> None:
        kwargs = {"RoleARN": role_arn} if role_arn else {}
        self._client.rollback_stack(
            StackName=stack_name,
            ClientRequestToken=client_request_token,
            RetainExceptOnCreate=True,
            **kwargs,
        )

    def continue_update_rollback(
        self,
        stack_name: str,
        client_request_token: str,
        resources_to_skip: list[str] | None = None,
        role_arn: str | None = None,
    ) -> None:
        kwargs: dict = {"RoleARN": role_arn} if role_arn else {}
        if resources_to_skip:
            kwargs["ResourcesToSkip"] = resources_to_skip
        self._client.continue_update_rollback(
            StackName=stack_name,
            ClientRequestToken=client_request_token,
            **kwargs,
        )

    def describe_stack_events(
        self,
        stack_name: str,
        next_token: str | None = None,
    ) -> tuple[list[StackEvent], str | None]:
        """Fetch one page of stack events, newest first.

        A stack that has been deleted has no events to report.
        """
        kwargs = {"NextToken": next_token} if next_token else {}
        try:
            resp = self._client.describe_stack_events(StackName=stack_name, **kwargs)
        except ClientError as err:
            if _is_stack_gone(err, stack_name) or _is_stack_missing(err, stack_name):
                return [], None
            raise
        events = [
            StackEvent(
                event_id=e["EventId"],
                stack_name=e.get("StackName", stack_name),
                logical_id=e.get("LogicalResourceId", ""),
                resource_type=e.get("ResourceType", ""),
                status=e.get("ResourceStatus", ""),
                timestamp=e["Timestamp"],
                physical_id=e.get("PhysicalResourceId"),
                status_reason=e.get("ResourceStatusReason"),
            )
            for e in resp.get("StackEvents", [])
        ]
        return events, resp.get("NextToken")

    def list_stack_names(
        self,
        prefix: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> list[str]:
        """Names of stable, successfully deployed stacks, optionally filtered."""
        paginator = self._client.get_paginator("describe_stacks")
        names = []
        for page in paginator.paginate():
            for stack in page["Stacks"]:
                if stack.get("StackStatus") not in DRIFT_CHECKABLE_STATUSES:
                    continue

                name = stack["StackName"]
                if prefix and not name.startswith(prefix):
                    continue

                if tags:
                    stack_tags = {t["Key"]: t["Value"] for t in stack.get("Tags", [])}
                    if not all(stack_tags.get(k) == v for k, v in tags.items()):
                        continue

                names.append(name)
        return names

    def detect_drift(self, stack_name: str) -> DetectionRun:
        """Trigger drift detection for a stack. Returns a DetectionRun for polling."""
        response = self._client.detect_stack_drift(StackName=stack_name)
        detection_id = response["StackDriftDetectionId"]

        desc = self._client.describe_stacks(StackName=stack_name)
        stack_id = desc["Stacks"][0]["StackId"]

        return DetectionRun(
            detection_id=detection_id,
            stack_id=stack_id,
            stack_name=stack_name,
            status=DetectionStatus.IN_PROGRESS,
            started_at=datetime.now(UTC),
        )

    def poll_detection(self, detection_id: str, stack_name: str) -> DetectionRun:
        """Check status of a drift detection operation."""
        resp = self._client.describe_stack_drift_detection_status(
            StackDriftDetectionId=detection_id
        )

        status = DetectionStatus(resp["DetectionStatus"])
        stack_status = None
        drifted_count = None
        status_reason = None

        if status == DetectionStatus.COMPLETE:
            stack_status = StackDriftStatus(resp["StackDriftStatus"])
            drifted_count = resp.get("DriftedStackResourceCount", 0)
        elif status == DetectionStatus.FAILED:
            status_reason = resp.get("DetectionStatusReason")

        return DetectionRun(
            detection_id=detection_id,
            stack_id=resp["StackId"],
            stack_name=stack_name,
            status=status,
            started_at=resp["Timestamp"],
            stack_status=stack_status,
            drifted_resource_count=drifted_count,
            status_reason=status_reason,
        )

    def get_resource_drifts(self, stack_name: str) -> list[ResourceDrift]:
        """Fetch resource-level drift details for a stack."""
        results = []
        next_token = None

        while True:
            kwargs: dict = {"StackName": stack_name}
            if next_token:
                kwargs["NextToken"] = next_token

            resp = self._client.describe_stack_resource_drifts(**kwargs)

            for resource in resp["StackResourceDrifts"]:
                property_diffs = [
                    PropertyDiff(
                        property_path=pd["PropertyPath"],
                        expected_value=pd["ExpectedValue"],
                        actual_value=pd["ActualValue"],
                        diff_type=DiffType(pd["DifferenceType"]),
                    )
                    for pd in resource.get("PropertyDifferences", [])
                ]

                results.append(
                    ResourceDrift(
                        logical_id=resource["LogicalResourceId"],
                        physical_id=resource.get("PhysicalResourceId", ""),
                        resource_type=resource["ResourceType"],
                        status=ResourceStatus(resource["StackResourceDriftStatus"]),
                        property_diffs=property_diffs,
                        timestamp=resource["Timestamp"],
                    )
                )

            next_token = resp.get("NextToken")
            if not next_token:
                break

        return results
