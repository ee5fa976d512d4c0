"""Daily analytics rollup.

Turns per-learner progress into ``lesson_daily_summary`` rows, one per
(org, lesson, UTC day). The newest summarized day is the watermark: each
run covers the days after it up to yesterday, so closed days are never
reopened and no day is skipped.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from itertools import groupby
from typing import TYPE_CHECKING

import structlog

from watchtrack.core.context import JobContext
from watchtrack.core.dates import utc_day

from .models import DailyLessonSummary, RollupResult


if TYPE_CHECKING:
    from watchtrack.lessons import Lesson, LessonRepository
    from watchtrack.progress import ProgressActivity, ProgressRepository

    from .repository import SummaryRepository


logger = structlog.get_logger(__name__)


class RollupError(Exception):
    """A rollup run failed; days after the last fully written one stay open."""

    def __init__(self, message: str, code: str = "rollup_failed"):
        self.message = message
        self.code = code
        super().__init__(message)


# ==============================================================================
# Aggregation
# ==============================================================================


def earliest_activity_day(activity: Iterable[ProgressActivity]) -> date | None:
    """Earliest UTC day of any last tick or completion."""
    days = [
        utc_day(moment)
        for item in activity
        for moment in (item.last_tick_at, item.completed_at)
        if moment is not None
    ]
    return min(days, default=None)


@dataclass
class _Bucket:
    viewers: set[str] = field(default_factory=set)
    unique_seconds_sum: int = 0
    percents: list[float] = field(default_factory=list)
    completes: int = 0


def aggregate_daily(
    activity: Iterable[ProgressActivity],
    lessons: dict[str, Lesson],
    start: date,
    end_exclusive: date,
) -> list[DailyLessonSummary]:
    """Group progress activity into daily summaries for ``[start, end_exclusive)``.

    A learner counts as a viewer on the day of their last heartbeat when they
    have watched anything. Unique seconds are clipped to the lesson duration
    when it is known; views of unknown-duration lessons are left out of the
    average. Completions count on the day they were stamped. Missing lessons
    are treated as unknown duration.

    Returns rows sorted by (day, org, lesson).
    """
    buckets: dict[tuple[date, str, str], _Bucket] = defaultdict(_Bucket)

    for item in activity:
        lesson = lessons.get(item.lesson_id)
        duration = lesson.duration_s if lesson is not None else 0

        if item.last_tick_at is not None and item.unique_seconds > 0:
            day = utc_day(item.last_tick_at)
            if start <= day < end_exclusive:
                bucket = buckets[(day, item.org_id, item.lesson_id)]
                bucket.viewers.add(item.user_id)

                watched = item.unique_seconds
                if duration > 0:
                    watched = min(watched, duration)
                    bucket.percents.append(min(1.0, max(0.0, watched / duration)))
                bucket.unique_seconds_sum += watched

        if item.completed_at is not None:
            day = utc_day(item.completed_at)
            if start <= day < end_exclusive:
                buckets[(day, item.org_id, item.lesson_id)].completes += 1

    summaries = [
        DailyLessonSummary(
            org_id=org_id,
            lesson_id=lesson_id,
            day=day,
            viewers=len(bucket.viewers),
            unique_seconds_sum=bucket.unique_seconds_sum,
            avg_percent=(
                sum(bucket.percents) / len(bucket.percents) if bucket.percents else 0.0
            ),
            completes=bucket.completes,
        )
        for (day, org_id, lesson_id), bucket in buckets.items()
    ]
    summaries.sort(key=lambda s: s.key)
    return summaries


def group_by_day(
    summaries: Iterable[DailyLessonSummary],
) -> list[tuple[date, list[DailyLessonSummary]]]:
    """Split summaries into per-day groups, oldest day first."""
    ordered = sorted(summaries, key=lambda s: s.key)
    return [(day, list(group)) for day, group in groupby(ordered, key=lambda s: s.day)]


# ==============================================================================
# Rollup Service
# ==============================================================================


def utc_today() -> date:
    return datetime.now(UTC).date()


class DailyRollupService:
    """Runs the watermark-driven daily rollup."""

    def __init__(
        self,
        progress: ProgressRepository,
        lessons: LessonRepository,
        summaries: SummaryRepository,
        today: Callable[[], date] = utc_today,
    ) -> None:
        """Initialize rollup service.

        Args:
            progress: Source of progress activity
            lessons: Lesson durations
            summaries: Summary table (also holds the watermark)
            today: Current UTC day; the rollup stops before it
        """
        self.progress = progress
        self.lessons = lessons
        self.summaries = summaries
        self.today = today

    async def run(self) -> RollupResult:
        """Summarize every fully elapsed day after the watermark.

        Raises:
            RollupError: If reading, aggregating or writing fails. Days are
                written oldest first and each one completely or not at all,
                so the next run resumes at the first day that did not land.
        """
        end_exclusive = self.today()

        try:
            last_summary_day = await self.summaries.latest_day()
            activity = await self.progress.scan_activity()
        except Exception as e:
            logger.exception("rollup_read_failed")
            raise RollupError(f"Failed to read rollup inputs: {e}") from e

        earliest = earliest_activity_day(activity)
        if earliest is None:
            logger.info("rollup_no_activity")
            return RollupResult()

        start = earliest
        if last_summary_day is not None:
            start = max(last_summary_day + timedelta(days=1), earliest)

        if start >= end_exclusive:
            logger.info(
                "rollup_up_to_date",
                last_summary_day=last_summary_day.isoformat() if last_summary_day else None,
            )
            return RollupResult()

        attempted_end = end_exclusive - timedelta(days=1)
        logger.info(
            "rollup_starting",
            range_start=start.isoformat(),
            range_end=attempted_end.isoformat(),
            progress_rows=len(activity),
        )

        written = 0
        processed_days: list[date] = []
        try:
            lesson_ids = {item.lesson_id for item in activity}
            lessons = await self.lessons.get_lessons(lesson_ids)
            rows = aggregate_daily(activity, lessons, start, end_exclusive)
            for day, day_rows in group_by_day(rows):
                written += await self.summaries.upsert_day(day, day_rows)
                processed_days.append(day)
        except Exception as e:
            logger.exception(
                "rollup_failed",
                range_start=start.isoformat(),
                range_end=attempted_end.isoformat(),
                last_written_day=(
                    processed_days[-1].isoformat() if processed_days else None
                ),
                rows_written=written,
            )
            raise RollupError(f"Rollup failed: {e}") from e

        result = RollupResult(
            attempted_range_start=start,
            attempted_range_end=attempted_end,
            first_processed_date=processed_days[0] if processed_days else None,
            last_processed_date=processed_days[-1] if processed_days else None,
            processed_day_count=len(processed_days),
            upserted_row_count=written,
        )

        logger.info("rollup_completed", **result.to_dict())
        return result


# ==============================================================================
# Scheduler
# ==============================================================================


class RollupScheduler:
    """Background loop running the rollup every ``interval_seconds``.

    Failures are logged and the loop keeps going; the watermark makes the
    next run pick up the same days.
    """

    def __init__(self, rollup: DailyRollupService, interval_seconds: int = 3600) -> None:
        self.rollup = rollup
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None
        self.last_result: RollupResult | None = None
        self.last_run_at: datetime | None = None

    async def start(self) -> None:
        """Start the background rollup worker."""
        if self._running:
            logger.warning("rollup_scheduler_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._worker_loop(), name="rollup_scheduler")
        logger.info("rollup_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background worker."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        logger.info("rollup_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> RollupResult | None:
        """Run one rollup, logging instead of raising on failure."""
        with JobContext("rollup"):
            try:
                self.last_result = await self.rollup.run()
            except RollupError:
                logger.warning("rollup_scheduled_run_failed")
                return None
            finally:
                self.last_run_at = datetime.now(UTC)
        return self.last_result

    async def _worker_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("rollup_scheduler_error")

            await asyncio.sleep(self.interval_seconds)
