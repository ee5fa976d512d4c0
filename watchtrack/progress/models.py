"""Database models for watch-time progress.

One row per (user, lesson) holds the canonical watched segments, the cached
unique-seconds total, and the completion and last-heartbeat timestamps.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from watchtrack.core.dates import ensure_utc_aware

from .segments import Segment, coerce_segments


# Partition key: user_id (a learner's progress across lessons lives together)
# Clustering: lesson_id
LESSON_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_progress (
    user_id TEXT,
    lesson_id TEXT,
    org_id TEXT,
    segments LIST<FROZEN<TUPLE<DOUBLE, DOUBLE>>>,
    unique_seconds INT,
    completed_at TIMESTAMP,
    last_tick_at TIMESTAMP,
    created_at TIMESTAMP,
    PRIMARY KEY ((user_id), lesson_id)
) WITH CLUSTERING ORDER BY (lesson_id ASC)
"""

PROGRESS_TABLES_CQL = [LESSON_PROGRESS_TABLE_CQL]


class ProgressField:
    """Names of the mutable progress columns."""

    SEGMENTS = "segments"
    UNIQUE_SECONDS = "unique_seconds"
    COMPLETED_AT = "completed_at"
    LAST_TICK_AT = "last_tick_at"

    ALL = (SEGMENTS, UNIQUE_SECONDS, COMPLETED_AT, LAST_TICK_AT)


@dataclass
class LessonProgress:
    """Watch-time progress of one user on one lesson.

    Attributes:
        user_id: Learner id (identity provider subject)
        lesson_id: Lesson id
        org_id: Tenant of the lesson, copied at creation
        segments: Canonical watched segments
        unique_seconds: Cached coverage of ``segments``; None on legacy rows
        completed_at: Set once when the threshold is first reached
        last_tick_at: Arrival time of the latest accepted heartbeat
        created_at: First heartbeat time
    """

    user_id: str
    lesson_id: str
    org_id: str
    segments: list[Segment] = field(default_factory=list)
    unique_seconds: int | None = 0
    completed_at: datetime | None = None
    last_tick_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @classmethod
    def from_row(cls, row: Any) -> "LessonProgress":
        """Create LessonProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            lesson_id=row.lesson_id,
            org_id=row.org_id,
            segments=coerce_segments(list(row.segments or [])),
            unique_seconds=row.unique_seconds,
            completed_at=ensure_utc_aware(row.completed_at),
            last_tick_at=ensure_utc_aware(row.last_tick_at),
            created_at=ensure_utc_aware(row.created_at),
        )

    def column_value(self, name: str) -> Any:
        """Value bound for a column when persisting."""
        if name == ProgressField.SEGMENTS:
            return [(float(start), float(end)) for start, end in self.segments]
        return getattr(self, name)

    def __repr__(self) -> str:
        return (
            f"<LessonProgress user={self.user_id} lesson={self.lesson_id} "
            f"unique={self.unique_seconds}s completed={self.is_completed}>"
        )


@dataclass(frozen=True)
class ProgressActivity:
    """Slim projection of a progress row used by the daily rollup."""

    user_id: str
    lesson_id: str
    org_id: str
    unique_seconds: int
    completed_at: datetime | None
    last_tick_at: datetime | None

    @classmethod
    def from_row(cls, row: Any) -> "ProgressActivity":
        """Create from Cassandra row."""
        return cls(
            user_id=row.user_id,
            lesson_id=row.lesson_id,
            org_id=row.org_id,
            unique_seconds=max(row.unique_seconds or 0, 0),
            completed_at=ensure_utc_aware(row.completed_at),
            last_tick_at=ensure_utc_aware(row.last_tick_at),
        )

    @classmethod
    def from_progress(cls, progress: LessonProgress) -> "ProgressActivity":
        return cls(
            user_id=progress.user_id,
            lesson_id=progress.lesson_id,
            org_id=progress.org_id,
            unique_seconds=max(progress.unique_seconds or 0, 0),
            completed_at=progress.completed_at,
            last_tick_at=progress.last_tick_at,
        )
