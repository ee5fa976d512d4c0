"""Telemetry event model."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventName(str, Enum):
    """Product analytics events emitted by watch-time tracking."""

    LESSON_VIEW_START = "lesson_view_start"
    LESSON_PROGRESS_TICK = "lesson_progress_tick"
    LESSON_VIEW_COMPLETE = "lesson_view_complete"


def get_hour_bucket(dt: datetime | None = None) -> str:
    """Generate hour bucket key (e.g., '2025-01-20-14')."""
    if dt is None:
        dt = datetime.now(UTC)
    return dt.strftime("%Y-%m-%d-%H")


@dataclass
class TelemetryEvent:
    """A single analytics event.

    ``distinct_id`` is the learner the event is attributed to; ``org_id`` is
    sent as a group so events can be sliced per tenant.
    """

    event: str
    distinct_id: str
    org_id: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: UUID = field(default_factory=uuid4)

    @classmethod
    def create(
        cls,
        event: EventName | str,
        distinct_id: str,
        org_id: str | None = None,
        **properties: Any,
    ) -> "TelemetryEvent":
        """Create an event, dropping properties that are None."""
        name = event.value if isinstance(event, EventName) else event
        return cls(
            event=name,
            distinct_id=distinct_id,
            org_id=org_id,
            properties={k: v for k, v in properties.items() if v is not None},
        )

    def to_posthog(self) -> dict[str, Any]:
        """Serialize to a PostHog batch item."""
        properties = dict(self.properties)
        if self.org_id:
            properties["$groups"] = {"organization": self.org_id}
            properties["org_id"] = self.org_id
        return {
            "event": self.event,
            "distinct_id": self.distinct_id,
            "properties": properties,
            "timestamp": self.timestamp.isoformat(),
            "uuid": str(self.event_id),
        }
