"""Cassandra persistence for daily lesson summaries."""

import math
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

import structlog
from cassandra.query import BatchStatement, BatchType

from watchtrack.core.dates import as_date

from .models import DailyLessonSummary


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = structlog.get_logger(__name__)

# Keeps a logged batch well under the server's batch_size_fail_threshold_in_kb
DEFAULT_MAX_BATCH_ROWS = 100


class SummaryRepository:
    """Reads and upserts ``lesson_daily_summary`` rows."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        max_batch_rows: int = DEFAULT_MAX_BATCH_ROWS,
    ):
        """Initialize with Cassandra session.

        Args:
            session: Cassandra session with ``aexecute``
            keyspace: Keyspace holding ``lesson_daily_summary``
            max_batch_rows: Most rows sent in one logged batch
        """
        self.session = session
        self.keyspace = keyspace
        self.max_batch_rows = max(1, max_batch_rows)
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Newest day of every org partition (clustering is day DESC)
        self._latest_days = self.session.prepare(f"""
            SELECT org_id, day FROM {self.keyspace}.lesson_daily_summary
            PER PARTITION LIMIT 1
        """)  # noqa: S608

        self._upsert_summary = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_daily_summary
            (org_id, day, lesson_id, viewers, unique_seconds_sum, avg_percent,
             completes, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)  # noqa: S608

        self._delete_day = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.lesson_daily_summary
            WHERE org_id = ? AND day = ?
        """)  # noqa: S608

        self._list_for_org = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_daily_summary
            WHERE org_id = ? AND day >= ? AND day <= ?
        """)  # noqa: S608

    async def latest_day(self) -> date | None:
        """Newest summarized day across all organizations (the watermark)."""
        rows = await self.session.aexecute(self._latest_days)
        latest: date | None = None
        async for row in rows:
            day = as_date(row.day)
            if day is not None and (latest is None or day > latest):
                latest = day
        return latest

    async def upsert_day(self, day: date, summaries: list[DailyLessonSummary]) -> int:
        """Write every summary of one day, in logged batches of ``max_batch_rows``.

        A day is either fully written or absent: when a later batch fails,
        the rows the earlier batches wrote are deleted again before the
        error propagates, so the watermark never lands on a partial day.
        """
        if not summaries:
            return 0
        if any(summary.day != day for summary in summaries):
            msg = f"Summaries for other days passed to upsert_day({day})"
            raise ValueError(msg)

        rows = sorted(summaries, key=lambda s: (s.org_id, s.lesson_id))
        now = datetime.now(UTC)
        written_orgs: set[str] = set()

        for offset in range(0, len(rows), self.max_batch_rows):
            chunk = rows[offset : offset + self.max_batch_rows]
            try:
                await self.session.aexecute(self._batch(chunk, now))
            except Exception:
                if written_orgs:
                    await self._discard_day(day, written_orgs)
                raise
            written_orgs.update(summary.org_id for summary in chunk)

        logger.debug(
            "daily_summaries_upserted",
            day=day.isoformat(),
            rows=len(rows),
            batches=math.ceil(len(rows) / self.max_batch_rows),
        )
        return len(rows)

    def _batch(self, chunk: list[DailyLessonSummary], now: datetime) -> BatchStatement:
        batch = BatchStatement(batch_type=BatchType.LOGGED)
        for summary in chunk:
            batch.add(
                self._upsert_summary,
                (
                    summary.org_id,
                    summary.day,
                    summary.lesson_id,
                    summary.viewers,
                    summary.unique_seconds_sum,
                    summary.avg_percent,
                    summary.completes,
                    now,
                ),
            )
        return batch

    async def _discard_day(self, day: date, org_ids: set[str]) -> None:
        logger.warning(
            "daily_summaries_rollback", day=day.isoformat(), orgs=len(org_ids)
        )
        for org_id in sorted(org_ids):
            try:
                await self.session.aexecute(self._delete_day, [org_id, day])
            except Exception:
                # Caller re-raises the write error; this one is only logged
                logger.exception(
                    "daily_summaries_rollback_failed",
                    org_id=org_id,
                    day=day.isoformat(),
                )

    async def list_for_org(
        self,
        org_id: str,
        start: date,
        end: date,
        lesson_id: str | None = None,
    ) -> list[DailyLessonSummary]:
        """Summaries of an organization for days in ``[start, end]``.

        Ordered by day ascending, then lesson.
        """
        rows = await self.session.aexecute(self._list_for_org, [org_id, start, end])
        summaries = [DailyLessonSummary.from_row(row) async for row in rows]
        if lesson_id is not None:
            summaries = [s for s in summaries if s.lesson_id == lesson_id]
        return sorted(summaries, key=lambda s: (s.day, s.lesson_id))
