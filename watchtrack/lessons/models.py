"""Lesson read model.

Lessons are authored in the CMS and synced into this table by the content
sync job; this service only reads them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from watchtrack.core.dates import ensure_utc_aware


# Partition key: lesson_id (lookups are always by id)
LESSONS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lessons (
    lesson_id TEXT,
    org_id TEXT,
    title TEXT,
    duration_s INT,
    completion_threshold DOUBLE,
    updated_at TIMESTAMP,
    PRIMARY KEY (lesson_id)
)
"""

LESSONS_TABLES_CQL = [LESSONS_TABLE_CQL]


@dataclass(frozen=True)
class Lesson:
    """A lesson video as seen by watch-time tracking.

    Attributes:
        lesson_id: Lesson identifier (CMS document id)
        org_id: Owning organization (tenant)
        duration_s: Video length in seconds, 0 when unknown
        completion_threshold: Fraction that must be watched, None for default
        title: Display title
    """

    lesson_id: str
    org_id: str
    duration_s: int = 0
    completion_threshold: float | None = None
    title: str | None = None
    updated_at: datetime | None = None

    @property
    def has_known_duration(self) -> bool:
        return self.duration_s > 0

    def threshold_or(self, default: float) -> float:
        """Completion threshold for this lesson, falling back to ``default``."""
        if self.completion_threshold is None or not 0 < self.completion_threshold <= 1:
            return default
        return self.completion_threshold

    @classmethod
    def from_row(cls, row: Any) -> "Lesson":
        """Create Lesson instance from Cassandra row."""
        return cls(
            lesson_id=row.lesson_id,
            org_id=row.org_id,
            duration_s=max(row.duration_s or 0, 0),
            completion_threshold=row.completion_threshold,
            title=row.title,
            updated_at=ensure_utc_aware(row.updated_at),
        )
