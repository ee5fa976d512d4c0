"""Cassandra persistence for lesson progress."""

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from .models import LessonProgress, ProgressActivity, ProgressField


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from cassandra.query import PreparedStatement


logger = structlog.get_logger(__name__)


class ProgressRepository:
    """Reads and writes ``lesson_progress`` rows.

    Updates only touch the columns that changed, so a heartbeat that merely
    refreshes ``last_tick_at`` does not rewrite the segment list.
    """

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._update_statements: dict[tuple[str, ...], PreparedStatement] = {}
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lesson_progress
            WHERE user_id = ? AND lesson_id = ?
        """)  # noqa: S608

        self._insert_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lesson_progress
            (user_id, lesson_id, org_id, segments, unique_seconds,
             completed_at, last_tick_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """)  # noqa: S608

        self._scan_activity = self.session.prepare(f"""
            SELECT user_id, lesson_id, org_id, unique_seconds,
                   completed_at, last_tick_at
            FROM {self.keyspace}.lesson_progress
        """)  # noqa: S608

    def _update_statement(self, columns: tuple[str, ...]) -> "PreparedStatement":
        statement = self._update_statements.get(columns)
        if statement is None:
            assignments = ", ".join(f"{column} = ?" for column in columns)
            statement = self.session.prepare(
                f"UPDATE {self.keyspace}.lesson_progress SET {assignments} "  # noqa: S608
                "WHERE user_id = ? AND lesson_id = ?"
            )
            self._update_statements[columns] = statement
        return statement

    async def get(self, user_id: str, lesson_id: str) -> LessonProgress | None:
        """Get the progress row for a user and lesson."""
        result = await self.session.aexecute(self._get_progress, [user_id, lesson_id])
        row = result.one()
        return LessonProgress.from_row(row) if row else None

    async def insert(self, progress: LessonProgress) -> None:
        """Write a new progress row in full."""
        await self.session.aexecute(
            self._insert_progress,
            [
                progress.user_id,
                progress.lesson_id,
                progress.org_id,
                progress.column_value(ProgressField.SEGMENTS),
                progress.unique_seconds,
                progress.completed_at,
                progress.last_tick_at,
                progress.created_at,
            ],
        )

    async def update(self, progress: LessonProgress, fields: Iterable[str]) -> None:
        """Write only the given columns of an existing row."""
        changed = set(fields)
        unknown = changed.difference(ProgressField.ALL)
        if unknown:
            msg = f"Not a mutable progress column: {sorted(unknown)}"
            raise ValueError(msg)

        # Fixed column order keeps the prepared statement cache small
        columns = tuple(name for name in ProgressField.ALL if name in changed)
        if not columns:
            return

        await self.session.aexecute(
            self._update_statement(columns),
            [
                *(progress.column_value(column) for column in columns),
                progress.user_id,
                progress.lesson_id,
            ],
        )

    async def scan_activity(self) -> list[ProgressActivity]:
        """Read the activity projection of every progress row.

        Full-table scan. Pages are fetched with ``async for`` so the event
        loop keeps serving heartbeats while the rollup reads.
        """
        rows = await self.session.aexecute(self._scan_activity)
        activity = [ProgressActivity.from_row(row) async for row in rows]
        logger.debug("progress_activity_scanned", rows=len(activity))
        return activity
