"""Daily lesson analytics models and CQL table definitions.

Tables:
- lesson_daily_summary: one row per (org, day, lesson), written only by the
  daily rollup. The newest ``day`` in the table is the rollup watermark.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any

from watchtrack.core.dates import as_date, ensure_utc_aware


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition key: org_id (reports are always per organization)
# Clustering: day DESC so the first row of each partition is its latest day
LESSON_DAILY_SUMMARY_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lesson_daily_summary (
    org_id TEXT,
    day DATE,
    lesson_id TEXT,
    viewers INT,
    unique_seconds_sum BIGINT,
    avg_percent DOUBLE,
    completes INT,
    updated_at TIMESTAMP,
    PRIMARY KEY ((org_id), day, lesson_id)
) WITH CLUSTERING ORDER BY (day DESC, lesson_id ASC)
"""

ANALYTICS_TABLES_CQL = [LESSON_DAILY_SUMMARY_TABLE_CQL]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class DailyLessonSummary:
    """Aggregated activity of one lesson in one organization on one UTC day.

    Attributes:
        org_id: Organization
        lesson_id: Lesson
        day: UTC calendar day
        viewers: Learners whose last heartbeat fell on ``day``
        unique_seconds_sum: Their unique seconds, clipped to the duration
        avg_percent: Mean watched fraction (0-1) over known-duration views
        completes: Completions stamped on ``day``
    """

    org_id: str
    lesson_id: str
    day: date
    viewers: int = 0
    unique_seconds_sum: int = 0
    avg_percent: float = 0.0
    completes: int = 0
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[date, str, str]:
        return (self.day, self.org_id, self.lesson_id)

    @classmethod
    def from_row(cls, row: Any) -> "DailyLessonSummary":
        """Create DailyLessonSummary instance from Cassandra row."""
        return cls(
            org_id=row.org_id,
            lesson_id=row.lesson_id,
            day=as_date(row.day),
            viewers=row.viewers or 0,
            unique_seconds_sum=row.unique_seconds_sum or 0,
            avg_percent=row.avg_percent or 0.0,
            completes=row.completes or 0,
            updated_at=ensure_utc_aware(row.updated_at),
        )


@dataclass(frozen=True)
class RollupResult:
    """What one rollup run attempted and what it wrote.

    Both ranges are inclusive ISO dates. The attempted range is None when
    there was nothing pending; the processed range is None when no rows were
    written.
    """

    attempted_range_start: date | None = None
    attempted_range_end: date | None = None
    first_processed_date: date | None = None
    last_processed_date: date | None = None
    processed_day_count: int = 0
    upserted_row_count: int = 0

    @property
    def is_noop(self) -> bool:
        return self.attempted_range_start is None

    def to_dict(self) -> dict[str, Any]:
        return {
            key: value.isoformat() if isinstance(value, date) else value
            for key, value in asdict(self).items()
        }
