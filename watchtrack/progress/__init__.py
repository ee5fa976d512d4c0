"""Watch-time progress: segment arithmetic, heartbeat reconciliation, queries."""

from .models import PROGRESS_TABLES_CQL, LessonProgress, ProgressActivity
from .repository import ProgressRepository
from .segments import (
    coerce_segments,
    completion_ratio,
    furthest_point,
    merge_segments,
    unique_seconds,
)
from .service import (
    HeartbeatResult,
    LessonNotFoundError,
    ProgressError,
    ProgressPolicy,
    ProgressService,
    TenantMismatchError,
)


__all__ = [
    "PROGRESS_TABLES_CQL",
    "HeartbeatResult",
    "LessonNotFoundError",
    "LessonProgress",
    "ProgressActivity",
    "ProgressError",
    "ProgressPolicy",
    "ProgressRepository",
    "ProgressService",
    "TenantMismatchError",
    "coerce_segments",
    "completion_ratio",
    "furthest_point",
    "merge_segments",
    "unique_seconds",
]
