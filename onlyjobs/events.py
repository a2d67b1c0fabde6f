"""Progress notifications emitted while a matching run advances."""

import logging
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    BATCH_START = "batch_start"
    BATCH_END = "batch_end"
    UNIT_CLASSIFIED = "unit_classified"
    JOB_FOUND = "job_found"
    UNIT_SKIPPED = "unit_skipped"


class ProgressEvent(BaseModel):
    kind: EventKind
    phase: str  # "threads" or "orphans"
    batch_index: Optional[int] = None
    batch_total: Optional[int] = None
    units_processed: Optional[int] = None
    units_total: Optional[int] = None
    unit_id: Optional[str] = None
    is_job_related: Optional[bool] = None
    company: Optional[str] = None
    position: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


ProgressSink = Callable[[ProgressEvent], None]


def logging_sink(event: ProgressEvent) -> None:
    """Default sink: write progress to the log."""
    if event.kind == EventKind.BATCH_START:
        logger.info(
            f"[{event.phase}] batch {event.batch_index}/{event.batch_total} "
            f"({event.units_processed}/{event.units_total} units done)"
        )
    elif event.kind == EventKind.JOB_FOUND:
        logger.info(f"[{event.phase}] job found: {event.company} - {event.position} ({event.status})")
    elif event.kind == EventKind.UNIT_SKIPPED:
        logger.warning(f"[{event.phase}] skipped {event.unit_id}: {event.reason}")
    else:
        logger.debug(f"[{event.phase}] {event.kind.value} {event.unit_id or ''}")


class CollectingSink:
    """Keeps every event in memory, for callers that render progress later."""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[ProgressEvent]:
        return [event for event in self.events if event.kind == kind]
