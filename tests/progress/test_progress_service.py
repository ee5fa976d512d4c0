"""Tests for heartbeat reconciliation and progress queries.

Tests cover:
- Record creation and the first heartbeat
- Segment growth, idempotence and monotonic unique seconds
- Completion threshold and sticky completion
- Implausible jumps and stale heartbeats
- Legacy rows (non-canonical segments, missing cached total)
- Telemetry events, including a failing emitter
- Lesson lookup and tenant checks
"""

from datetime import timedelta

import pytest

from tests.conftest import ORG_ID, OTHER_ORG_ID, USER_ID, RecordingEmitter
from watchtrack.lessons import Lesson
from watchtrack.progress.models import LessonProgress
from watchtrack.progress.service import (
    LessonNotFoundError,
    ProgressService,
    TenantMismatchError,
)


async def beat(service: ProgressService, lesson: Lesson, t: float, clock=None, step=5):
    if clock is not None:
        clock.advance(step)
    return await service.record_heartbeat(USER_ID, lesson, t, provider="youtube")


class TestFirstHeartbeat:
    """Tests for record creation."""

    @pytest.mark.asyncio
    async def test_creates_record(self, progress_service, progress_repo, lesson, clock):
        """First heartbeat inserts a full record with the lesson's org."""
        result = await beat(progress_service, lesson, 10)

        assert result.created is True
        assert result.unique_seconds == 2
        assert result.completed is False
        assert len(progress_repo.inserts) == 1
        assert progress_repo.updates == []

        stored = progress_repo.rows[(USER_ID, lesson.lesson_id)]
        assert stored.org_id == ORG_ID
        assert stored.segments == [(8.0, 10.0)]
        assert stored.unique_seconds == 2
        assert stored.last_tick_at == clock.now
        assert stored.created_at == clock.now
        assert stored.completed_at is None

    @pytest.mark.asyncio
    async def test_zero_position_creates_empty_record(self, progress_service, progress_repo, lesson):
        result = await beat(progress_service, lesson, 0)

        assert result.unique_seconds == 0
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == []

    @pytest.mark.asyncio
    async def test_negative_position_is_clamped(self, progress_service, progress_repo, lesson):
        result = await beat(progress_service, lesson, -30)

        assert result.unique_seconds == 0
        assert result.extended is False
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == []


class TestSegmentGrowth:
    """Tests for unique seconds over heartbeat sequences."""

    @pytest.mark.asyncio
    async def test_five_heartbeat_scenario(self, progress_service, progress_repo, lesson, clock):
        """t = 10, 40, 70, 100, 119 five seconds apart on a 120s lesson.

        Each report credits the two seconds before it, so coverage is five
        disjoint two-second segments and the lesson is not completed.
        """
        results = [await beat(progress_service, lesson, t, clock) for t in (10, 40, 70, 100, 119)]

        assert [r.unique_seconds for r in results] == [2, 4, 6, 8, 10]
        assert all(r.completed is False for r in results)
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [
            (8.0, 10.0),
            (38.0, 40.0),
            (68.0, 70.0),
            (98.0, 100.0),
            (117.0, 119.0),
        ]

    @pytest.mark.asyncio
    async def test_contiguous_polling_counts_each_second_once(
        self, progress_service, progress_repo, lesson, clock
    ):
        """Reports every 2s build one continuous segment."""
        for t in range(2, 62, 2):
            result = await beat(progress_service, lesson, t, clock, step=2)

        assert result.unique_seconds == 60
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [(0.0, 60.0)]

    @pytest.mark.asyncio
    async def test_duplicate_replay_is_idempotent(self, progress_service, progress_repo, lesson, clock):
        """Sending the same t twice leaves unique seconds unchanged."""
        first = await beat(progress_service, lesson, 30, clock)
        second = await beat(progress_service, lesson, 30, clock)

        assert second.unique_seconds == first.unique_seconds
        assert second.extended is False
        # Only the tick time is written on a no-op heartbeat
        assert progress_repo.updates == [("last_tick_at",)]

    @pytest.mark.asyncio
    async def test_smaller_position_is_noop(self, progress_service, progress_repo, lesson, clock):
        await beat(progress_service, lesson, 50, clock)
        result = await beat(progress_service, lesson, 20, clock)

        assert result.unique_seconds == 2
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [(48.0, 50.0)]

    @pytest.mark.asyncio
    async def test_unique_seconds_never_decrease(self, progress_service, lesson, clock):
        """Non-decreasing reports give non-decreasing unique seconds."""
        positions = [0, 3, 3, 7, 20, 20, 25, 26, 90, 119, 119, 400, 9000, 9000]
        previous = 0
        for t in positions:
            result = await beat(progress_service, lesson, t, clock, step=3)
            assert result.unique_seconds >= previous
            previous = result.unique_seconds

    @pytest.mark.asyncio
    async def test_position_past_duration_is_clipped(self, progress_service, progress_repo, lesson, clock):
        await beat(progress_service, lesson, 118, clock)
        result = await beat(progress_service, lesson, 125, clock)

        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [(116.0, 120.0)]
        assert result.unique_seconds == 4

    @pytest.mark.asyncio
    async def test_unknown_duration_never_completes(self, progress_service, lesson_repo, clock):
        open_ended = lesson_repo.add(Lesson(lesson_id="live", org_id=ORG_ID, duration_s=0))

        for t in range(2, 202, 2):
            result = await beat(progress_service, open_ended, t, clock, step=2)

        assert result.unique_seconds == 200
        assert result.completed is False


class TestCompletion:
    """Tests for the completion threshold."""

    @pytest.mark.asyncio
    async def test_completes_once_threshold_crossed(self, progress_service, progress_repo, lesson, clock):
        """120s lesson at 0.92 needs 110.4s: 110 is short, 112 completes."""
        for t in range(2, 112, 2):
            result = await beat(progress_service, lesson, t, clock, step=2)
        assert result.unique_seconds == 110
        assert result.completed is False

        result = await beat(progress_service, lesson, 112, clock, step=2)
        assert result.unique_seconds == 112
        assert result.completed is True
        assert result.newly_completed is True
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].completed_at == clock.now

    @pytest.mark.asyncio
    async def test_completion_is_sticky(self, progress_service, progress_repo, lesson, clock):
        """Later heartbeats never clear or move completed_at."""
        for t in range(2, 116, 2):
            await beat(progress_service, lesson, t, clock, step=2)
        completed_at = progress_repo.rows[(USER_ID, lesson.lesson_id)].completed_at
        assert completed_at is not None

        for t in (1, 0, 50, 100_000, 119, -4):
            result = await beat(progress_service, lesson, t, clock)
            assert result.completed is True
            assert result.newly_completed is False

        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].completed_at == completed_at

    @pytest.mark.asyncio
    async def test_lesson_threshold_overrides_default(self, progress_service, lesson_repo, clock):
        half = lesson_repo.add(
            Lesson(lesson_id="short", org_id=ORG_ID, duration_s=20, completion_threshold=0.5)
        )
        for t in (2, 4, 6, 8):
            result = await beat(progress_service, half, t, clock, step=2)
        assert result.completed is False

        result = await beat(progress_service, half, 10, clock, step=2)
        assert result.completed is True


class TestPlausibility:
    """Tests for implausible jumps and stale heartbeats."""

    @pytest.mark.asyncio
    async def test_implausible_jump_rejected(self, progress_service, progress_repo, lesson_repo, clock):
        """A 9970s jump from 30 adds nothing and is not an error."""
        long_lesson = lesson_repo.add(Lesson(lesson_id="long", org_id=ORG_ID, duration_s=20_000))
        for t in range(2, 32, 2):
            await beat(progress_service, long_lesson, t, clock, step=2)

        before = progress_repo.rows[(USER_ID, "long")]
        assert before.segments == [(0.0, 30.0)]

        result = await beat(progress_service, long_lesson, 10_000, clock)

        assert result.jump_rejected is True
        assert result.unique_seconds == 30
        after = progress_repo.rows[(USER_ID, "long")]
        assert after.segments == [(0.0, 30.0)]
        assert after.unique_seconds == 30
        assert progress_repo.updates[-1] == ("last_tick_at",)

    @pytest.mark.asyncio
    async def test_jump_at_the_limit_is_accepted(self, progress_service, lesson_repo, clock):
        long_lesson = lesson_repo.add(Lesson(lesson_id="long", org_id=ORG_ID, duration_s=20_000))
        result = await beat(progress_service, long_lesson, 7200, clock)

        assert result.jump_rejected is False
        assert result.unique_seconds == 2

    @pytest.mark.asyncio
    async def test_stale_heartbeat_returns_cached_state(
        self, progress_service, progress_repo, emitter, lesson, clock
    ):
        """Arriving well before the last accepted tick changes nothing."""
        await beat(progress_service, lesson, 40, clock)
        events_before = len(emitter.events)

        clock.advance(-10)
        result = await beat(progress_service, lesson, 90)

        assert result.accepted is False
        assert result.unique_seconds == 2
        assert progress_repo.updates == []
        assert len(emitter.events) == events_before
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [(38.0, 40.0)]

    @pytest.mark.asyncio
    async def test_small_clock_skew_is_tolerated(self, progress_service, lesson, clock):
        await beat(progress_service, lesson, 40, clock)

        clock.advance(-3)
        result = await beat(progress_service, lesson, 42)

        assert result.accepted is True
        assert result.unique_seconds == 4


class TestLegacyRows:
    """Tests for rows written by older versions."""

    @pytest.mark.asyncio
    async def test_non_canonical_segments_are_repaired(self, progress_service, progress_repo, lesson, clock):
        progress_repo.put(
            LessonProgress(
                user_id=USER_ID,
                lesson_id=lesson.lesson_id,
                org_id=ORG_ID,
                segments=[(5.0, 20.0), (0.0, 10.0)],
                unique_seconds=25,
                last_tick_at=clock.now - timedelta(minutes=1),
            )
        )

        result = await beat(progress_service, lesson, 15, clock)

        assert result.unique_seconds == 20
        assert "segments" in result.changed_fields
        assert "unique_seconds" in result.changed_fields
        assert progress_repo.rows[(USER_ID, lesson.lesson_id)].segments == [(0.0, 20.0)]

    @pytest.mark.asyncio
    async def test_missing_cached_total_is_computed(self, progress_service, progress_repo, lesson, clock):
        progress_repo.put(
            LessonProgress(
                user_id=USER_ID,
                lesson_id=lesson.lesson_id,
                org_id=ORG_ID,
                segments=[(0.0, 30.0)],
                unique_seconds=None,
            )
        )

        result = await beat(progress_service, lesson, 10, clock)

        assert result.unique_seconds == 30
        assert progress_repo.updates == [("unique_seconds", "last_tick_at")]


class TestTelemetry:
    """Tests for analytics events."""

    @pytest.mark.asyncio
    async def test_first_heartbeat_events(self, progress_service, emitter, lesson):
        await beat(progress_service, lesson, 10)

        assert emitter.names == ["lesson_view_start", "lesson_progress_tick"]
        tick = emitter.events[1]
        assert tick["distinct_id"] == USER_ID
        assert tick["org_id"] == ORG_ID
        assert tick["lesson_id"] == lesson.lesson_id
        assert tick["unique_seconds"] == 2
        assert tick["completed"] is False
        assert tick["provider"] == "youtube"

    @pytest.mark.asyncio
    async def test_completion_event(self, progress_service, emitter, lesson, clock):
        for t in range(2, 114, 2):
            await beat(progress_service, lesson, t, clock, step=2)

        assert emitter.names.count("lesson_view_complete") == 1
        assert emitter.names[-2:] == ["lesson_progress_tick", "lesson_view_complete"]

    @pytest.mark.asyncio
    async def test_failing_emitter_does_not_fail_heartbeat(
        self, lesson_repo, progress_repo, lesson, clock
    ):
        service = ProgressService(
            lessons=lesson_repo,
            progress=progress_repo,
            emitter=RecordingEmitter(fail=True),
            clock=clock,
        )

        result = await service.record_heartbeat(USER_ID, lesson, 10)

        assert result.unique_seconds == 2
        assert (USER_ID, lesson.lesson_id) in progress_repo.rows

    @pytest.mark.asyncio
    async def test_no_emitter(self, lesson_repo, progress_repo, lesson, clock):
        service = ProgressService(lessons=lesson_repo, progress=progress_repo, clock=clock)
        result = await service.record_heartbeat(USER_ID, lesson, 10)
        assert result.unique_seconds == 2


class TestLessonAccess:
    """Tests for resolve_lesson."""

    @pytest.mark.asyncio
    async def test_returns_lesson_of_same_org(self, progress_service, lesson):
        assert await progress_service.resolve_lesson(lesson.lesson_id, ORG_ID) == lesson

    @pytest.mark.asyncio
    async def test_missing_lesson(self, progress_service):
        with pytest.raises(LessonNotFoundError) as exc_info:
            await progress_service.resolve_lesson("nope", ORG_ID)
        assert exc_info.value.code == "lesson_not_found"

    @pytest.mark.asyncio
    async def test_other_org(self, progress_service, lesson):
        with pytest.raises(TenantMismatchError) as exc_info:
            await progress_service.resolve_lesson(lesson.lesson_id, OTHER_ORG_ID)
        assert exc_info.value.code == "forbidden"


class TestGetProgress:
    """Tests for get_progress."""

    @pytest.mark.asyncio
    async def test_never_watched(self, progress_service, lesson):
        snapshot = await progress_service.get_progress(USER_ID, lesson)

        assert snapshot.unique_seconds == 0
        assert snapshot.completed is False
        assert snapshot.ratio == 0.0
        assert snapshot.resume_position == 0.0
        assert snapshot.segments == []

    @pytest.mark.asyncio
    async def test_in_progress(self, progress_service, lesson, clock):
        for t in range(2, 48, 2):
            await beat(progress_service, lesson, t, clock, step=2)

        snapshot = await progress_service.get_progress(USER_ID, lesson)

        assert snapshot.unique_seconds == 46
        assert snapshot.resume_position == 46.0
        assert snapshot.ratio == pytest.approx(46 / (120 * 0.92))
        assert snapshot.segments == [(0.0, 46.0)]
        assert snapshot.last_tick_at == clock.now

    @pytest.mark.asyncio
    async def test_completed_ratio_is_one(self, progress_service, lesson, clock):
        for t in range(2, 114, 2):
            await beat(progress_service, lesson, t, clock, step=2)

        snapshot = await progress_service.get_progress(USER_ID, lesson)

        assert snapshot.completed is True
        assert snapshot.ratio == 1.0
        assert snapshot.completed_at is not None
