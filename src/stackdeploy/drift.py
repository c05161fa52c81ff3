"""Drift detection with exponential backoff, for one stack or many at once."""

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import UTC, datetime

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.errors import DriftDetectionError
from stackdeploy.models import (
    DetectionResult,
    DetectionStatus,
    DriftCheckResult,
    StackDriftStatus,
)

logger = logging.getLogger(__name__)


class DriftDetector:
    """Triggers CloudFormation drift detection and polls it to completion."""

    def __init__(
        self,
        client: CloudFormationClient,
        max_concurrent: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 30,
    ):
        self._client = client
        self._max_concurrent = max_concurrent
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._max_attempts = max_attempts

    def detect_and_poll(self, stack_name: str, include_resources: bool = True) -> DriftCheckResult:
        """Detect drift on one stack.

        Raises DriftDetectionError if CloudFormation reports the detection as failed,
        or if it is still running after ``max_attempts`` polls.
        """
        logger.debug("Starting drift detection for stack %s...", stack_name)
        run = self._client.detect_drift(stack_name)
        logger.info("Detecting drift for stack %s...", stack_name)

        for attempt in range(self._max_attempts):
            run = self._client.poll_detection(run.detection_id, stack_name)

            if run.status == DetectionStatus.COMPLETE:
                break
            if run.status == DetectionStatus.FAILED:
                raise DriftDetectionError(
                    f"Drift detection failed for {stack_name}: "
                    f"{run.status_reason or 'No reason provided'}",
                    stack_name=stack_name,
                )

            if attempt == self._max_attempts - 1:
                raise DriftDetectionError(
                    f"Drift detection timed out after {self._max_attempts} attempts",
                    stack_name=stack_name,
                )
            delay = self.backoff_delay(attempt)
            logger.debug(
                "Drift detection %s still in progress (attempt %d), waiting %.1fs",
                run.detection_id,
                attempt + 1,
                delay,
            )
            if delay > 0:
                time.sleep(delay)

        resource_drifts = None
        if include_resources:
            resource_drifts = self._client.get_resource_drifts(stack_name)

        return DriftCheckResult(
            detection_id=run.detection_id,
            stack_id=run.stack_id,
            stack_name=stack_name,
            status=run.status,
            stack_status=run.stack_status or StackDriftStatus.UNKNOWN,
            drifted_resource_count=run.drifted_resource_count or 0,
            timestamp=datetime.now(UTC),
            resource_drifts=resource_drifts,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given zero-based attempt: doubling, jittered, then capped."""
        if self._initial_delay <= 0:
            return 0.0
        delay = self._initial_delay * (2**attempt) + random.uniform(0, 1)
        return min(delay, self._max_delay)

    def detect(self, stack_names: list[str], include_resources: bool = True) -> DetectionResult:
        """Run drift detection on several stacks concurrently.

        A stack whose detection fails is logged and listed in ``failed_stacks``;
        it does not abort the others.
        """
        if not stack_names:
            return DetectionResult(results=[], failed_stacks=[])

        results: list[DriftCheckResult] = []
        failed_stacks: list[str] = []

        with ThreadPoolExecutor(max_workers=self._max_concurrent) as executor:
            futures = {
                executor.submit(self.detect_and_poll, name, include_resources): name
                for name in stack_names
            }
            for future in as_completed(futures):
                stack_name = futures[future]
                try:
                    results.append(future.result())
                except Exception:
                    logger.exception("Failed to detect drift for %s", stack_name)
                    failed_stacks.append(stack_name)

        results.sort(key=lambda r: r.stack_name)
        return DetectionResult(results=results, failed_stacks=sorted(failed_stacks))
