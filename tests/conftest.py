"""Shared fixtures: in-memory repositories, a controllable clock, API client."""

import os


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("TELEMETRY_ENABLED", "false")

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from watchtrack.analytics.models import DailyLessonSummary
from watchtrack.analytics.rollup import DailyRollupService
from watchtrack.auth.security import create_identity_token
from watchtrack.config import get_settings
from watchtrack.lessons import Lesson
from watchtrack.progress.models import LessonProgress, ProgressActivity
from watchtrack.progress.service import ProgressPolicy, ProgressService


ORG_ID = "org-acme"
OTHER_ORG_ID = "org-globex"
USER_ID = "user-1"


# ==============================================================================
# Fakes
# ==============================================================================


class AsyncRows(list):
    """Query result the way ``aexecute`` returns it: iterable with ``async for``."""

    async def __aiter__(self):
        for row in list(self):
            yield row

    def one(self):
        return self[0] if self else None


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 8, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeLessonRepository:
    def __init__(self, lessons: list[Lesson] | None = None) -> None:
        self.lessons = {lesson.lesson_id: lesson for lesson in lessons or []}
        self.error: Exception | None = None

    def add(self, lesson: Lesson) -> Lesson:
        self.lessons[lesson.lesson_id] = lesson
        return lesson

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        if self.error:
            raise self.error
        return self.lessons.get(lesson_id)

    async def get_lessons(self, lesson_ids: set[str]) -> dict[str, Lesson]:
        return {i: self.lessons[i] for i in lesson_ids if i in self.lessons}


class FakeProgressRepository:
    """Stores copies, like a real store would."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], LessonProgress] = {}
        self.inserts: list[LessonProgress] = []
        self.updates: list[tuple[str, ...]] = []

    @staticmethod
    def _copy(progress: LessonProgress) -> LessonProgress:
        return replace(progress, segments=list(progress.segments))

    def put(self, progress: LessonProgress) -> None:
        self.rows[(progress.user_id, progress.lesson_id)] = self._copy(progress)

    async def get(self, user_id: str, lesson_id: str) -> LessonProgress | None:
        row = self.rows.get((user_id, lesson_id))
        return self._copy(row) if row else None

    async def insert(self, progress: LessonProgress) -> None:
        self.inserts.append(self._copy(progress))
        self.put(progress)

    async def update(self, progress: LessonProgress, fields) -> None:
        columns = tuple(fields)
        self.updates.append(columns)
        stored = self.rows[(progress.user_id, progress.lesson_id)]
        for column in columns:
            value = getattr(progress, column)
            setattr(stored, column, list(value) if column == "segments" else value)

    async def scan_activity(self) -> list[ProgressActivity]:
        return [ProgressActivity.from_progress(row) for row in self.rows.values()]


class FakeSummaryRepository:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, date, str], DailyLessonSummary] = {}
        self.upsert_calls = 0
        self.error: Exception | None = None
        self.failing_days: set[date] = set()

    async def latest_day(self) -> date | None:
        return max((key[1] for key in self.rows), default=None)

    async def upsert_day(self, day: date, summaries: list[DailyLessonSummary]) -> int:
        self.upsert_calls += 1
        if self.error or day in self.failing_days:
            raise self.error or RuntimeError(f"write timeout on {day}")
        for summary in summaries:
            self.rows[(summary.org_id, summary.day, summary.lesson_id)] = replace(summary)
        return len(summaries)

    async def list_for_org(
        self, org_id: str, start: date, end: date, lesson_id: str | None = None
    ) -> list[DailyLessonSummary]:
        rows = [
            row
            for (org, day, lesson), row in self.rows.items()
            if org == org_id
            and start <= day <= end
            and (lesson_id is None or lesson == lesson_id)
        ]
        return sorted(rows, key=lambda r: (r.day, r.lesson_id))


class RecordingEmitter:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[dict[str, Any]] = []
        self.fail = fail

    def track(self, event, distinct_id: str, org_id: str | None = None, **props) -> bool:
        if self.fail:
            msg = "telemetry down"
            raise RuntimeError(msg)
        self.events.append(
            {"event": getattr(event, "value", event), "distinct_id": distinct_id,
             "org_id": org_id, **props}
        )
        return True

    @property
    def names(self) -> list[str]:
        return [e["event"] for e in self.events]


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lesson() -> Lesson:
    return Lesson(lesson_id="lesson-intro", org_id=ORG_ID, duration_s=120, title="Intro")


@pytest.fixture
def lesson_repo(lesson: Lesson) -> FakeLessonRepository:
    return FakeLessonRepository([lesson])


@pytest.fixture
def progress_repo() -> FakeProgressRepository:
    return FakeProgressRepository()


@pytest.fixture
def summary_repo() -> FakeSummaryRepository:
    return FakeSummaryRepository()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def progress_service(lesson_repo, progress_repo, emitter, clock) -> ProgressService:
    return ProgressService(
        lessons=lesson_repo,
        progress=progress_repo,
        policy=ProgressPolicy(),
        emitter=emitter,
        clock=clock,
    )


@pytest.fixture
def rollup_today() -> date:
    return date(2025, 3, 10)


@pytest.fixture
def rollup_service(progress_repo, lesson_repo, summary_repo, rollup_today):
    return DailyRollupService(
        progress=progress_repo,
        lessons=lesson_repo,
        summaries=summary_repo,
        today=lambda: rollup_today,
    )


@pytest.fixture
def app(progress_service, rollup_service, summary_repo):
    """Application wired to the in-memory fakes (lifespan is not run)."""
    from watchtrack.main import create_app

    application = create_app()
    application.state.progress_service = progress_service
    application.state.rollup_service = rollup_service
    application.state.summary_repository = summary_repo
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def make_token() -> Callable[..., str]:
    def _make(user_id: str = USER_ID, org_id: str = ORG_ID, role: str = "learner") -> str:
        return create_identity_token(user_id, org_id, role=role, settings=get_settings())

    return _make


@pytest.fixture
def auth_headers(make_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}
