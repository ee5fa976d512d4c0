"""Read access to lessons stored in Cassandra."""

import asyncio
from typing import TYPE_CHECKING

import structlog

from .models import Lesson


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = structlog.get_logger(__name__)


class LessonRepository:
    """Looks up lessons by id."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_lesson = self.session.prepare(f"""
            SELECT lesson_id, org_id, title, duration_s, completion_threshold,
                   updated_at
            FROM {self.keyspace}.lessons
            WHERE lesson_id = ?
        """)  # noqa: S608

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        """Get a lesson by id, or None if it does not exist."""
        result = await self.session.aexecute(self._get_lesson, [lesson_id])
        row = result.one()
        return Lesson.from_row(row) if row else None

    async def get_lessons(self, lesson_ids: set[str]) -> dict[str, Lesson]:
        """Get several lessons at once, keyed by id. Missing ids are omitted.

        Lookups are issued concurrently, one query per lesson.
        """
        ordered = sorted(lesson_ids)
        found = await asyncio.gather(*(self.get_lesson(i) for i in ordered))

        lessons: dict[str, Lesson] = {}
        for lesson_id, lesson in zip(ordered, found, strict=True):
            if lesson is not None:
                lessons[lesson_id] = lesson
            else:
                logger.debug("lesson_not_found", lesson_id=lesson_id)
        return lessons
