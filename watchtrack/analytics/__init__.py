"""Daily lesson analytics: rollup job, summary storage and queries."""

from .models import ANALYTICS_TABLES_CQL, DailyLessonSummary, RollupResult
from .repository import SummaryRepository
from .rollup import (
    DailyRollupService,
    RollupError,
    RollupScheduler,
    aggregate_daily,
    earliest_activity_day,
)


__all__ = [
    "ANALYTICS_TABLES_CQL",
    "DailyLessonSummary",
    "DailyRollupService",
    "RollupError",
    "RollupResult",
    "RollupScheduler",
    "SummaryRepository",
    "aggregate_daily",
    "earliest_activity_day",
]
