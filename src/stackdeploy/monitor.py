"""Background reporting of stack events while an operation is running."""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from stackdeploy.aws.client import CloudFormationClient
from stackdeploy.models import StackEvent

logger = logging.getLogger(__name__)


class StackActivityMonitor:
    """Polls a stack's event stream on a background thread and logs new events.

    Failure reasons are collected in ``errors`` so they can be attached to the
    error raised when the operation fails.
    """

    def __init__(
        self,
        client: CloudFormationClient,
        stack_name: str,
        resources_total: int | None = None,
        start_time: datetime | None = None,
        poll_interval: float = 2.0,
    ):
        self._client = client
        self._stack_name = stack_name
        self._resources_total = resources_total
        self._start_time = _as_utc(start_time) if start_time else datetime.now(UTC)
        self._poll_interval = poll_interval

        self.errors: list[str] = []
        self.resources_done = 0

        self._seen: set[str] = set()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> "StackActivityMonitor":
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"monitor-{self._stack_name}", daemon=True
        )
        self._thread.start()
        return self

    def stop(self) -> None:
        """Stop polling, then read once more so events from the last seconds are not lost."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        try:
            self.read_new_events()
        except Exception:
            logger.exception("Error occurred while monitoring stack %s", self._stack_name)

    def _run(self) -> None:
        while not self._stop_event.wait(self._poll_interval):
            try:
                self.read_new_events()
            except Exception:
                logger.exception("Error occurred while monitoring stack %s", self._stack_name)

    def read_new_events(self) -> list[StackEvent]:
        """Fetch events not seen yet and process them oldest first."""
        with self._lock:
            new_events = self._fetch_unseen()
            for event in reversed(new_events):
                self._seen.add(event.event_id)
                self._process(event)
            return list(reversed(new_events))

    def _fetch_unseen(self) -> list[StackEvent]:
        # Events come newest first; stop at the first one already seen or older
        # than the operation we are watching.
        events: list[StackEvent] = []
        next_token = None
        while True:
            page, next_token = self._client.describe_stack_events(self._stack_name, next_token)
            for event in page:
                if event.event_id in self._seen or _as_utc(event.timestamp) < self._start_time:
                    return events
                events.append(event)
            if not next_token:
                return events

    def _process(self, event: StackEvent) -> None:
        if event.status.endswith("_COMPLETE") and not event.is_stack_event:
            self.resources_done += 1

        logger.info(
            "%s | %s | %s | %s | %s | %s%s",
            self._stack_name,
            self._progress(),
            event.timestamp.strftime("%H:%M:%S"),
            event.status,
            event.resource_type,
            event.logical_id,
            f" {event.status_reason}" if event.status_reason else "",
        )

        if event.status.endswith("_FAILED"):
            reason = event.status_reason or ""
            # Cancellations only echo another failure, and the stack's own event
            # just says the stack failed.
            if "cancelled" not in reason and not event.is_stack_event:
                self.errors.append(f"{event.logical_id}: {reason}")

    def _progress(self) -> str:
        if self._resources_total is None:
            return str(self.resources_done)
        return f"{self.resources_done}/{self._resources_total}"


def _as_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp


# Called as factory(client, stack_name, resources_total=..., start_time=...).
MonitorFactory = Callable[..., StackActivityMonitor]
