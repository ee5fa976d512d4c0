"""Watch-time progress service layer.

Business logic for:
- Heartbeat reconciliation (segments, unique seconds, completion)
- Progress queries for a learner and lesson
- Lesson lookup with tenant checks
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from watchtrack.telemetry import EventName

from .models import LessonProgress, ProgressField
from .segments import (
    Segment,
    completion_ratio,
    furthest_point,
    merge_segments,
    unique_seconds,
)


if TYPE_CHECKING:
    from watchtrack.config import Settings
    from watchtrack.lessons import Lesson, LessonRepository
    from watchtrack.telemetry import TelemetryEmitter

    from .repository import ProgressRepository


logger = structlog.get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class LessonNotFoundError(ProgressError):
    """Lesson does not exist."""

    def __init__(self, message: str = "Lesson not found"):
        super().__init__(message, "lesson_not_found")


class TenantMismatchError(ProgressError):
    """Lesson belongs to a different organization than the caller."""

    def __init__(self, message: str = "Lesson belongs to another organization"):
        super().__init__(message, "forbidden")


# ==============================================================================
# Policy and results
# ==============================================================================


@dataclass(frozen=True)
class ProgressPolicy:
    """Tunable heartbeat policy.

    Attributes:
        completion_threshold: Default fraction of the duration to complete
        segment_padding_seconds: Span inferred as watched before each report
        backdate_tolerance_seconds: Allowed clock skew before a tick is stale
        max_jump_seconds: Largest forward jump accepted as playback
    """

    completion_threshold: float = 0.92
    segment_padding_seconds: float = 2.0
    backdate_tolerance_seconds: float = 5.0
    max_jump_seconds: float = 7200.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ProgressPolicy":
        return cls(
            completion_threshold=settings.progress_completion_threshold,
            segment_padding_seconds=settings.progress_segment_padding_seconds,
            backdate_tolerance_seconds=settings.progress_backdate_tolerance_seconds,
            max_jump_seconds=settings.progress_max_jump_seconds,
        )


@dataclass(frozen=True)
class HeartbeatResult:
    """Outcome of one heartbeat.

    ``unique_seconds`` and ``completed`` reflect the persisted state after
    the call. ``accepted`` is False for stale heartbeats, which change
    nothing.
    """

    unique_seconds: int
    completed: bool
    accepted: bool = True
    created: bool = False
    extended: bool = False
    jump_rejected: bool = False
    newly_completed: bool = False
    changed_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read view of a learner's progress on a lesson."""

    lesson_id: str
    duration_s: int
    unique_seconds: int
    completed: bool
    completed_at: datetime | None
    ratio: float
    resume_position: float
    last_tick_at: datetime | None
    segments: list[Segment] = field(default_factory=list)


def utc_now() -> datetime:
    return datetime.now(UTC)


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for watch-time progress tracking."""

    def __init__(
        self,
        lessons: "LessonRepository",
        progress: "ProgressRepository",
        policy: ProgressPolicy | None = None,
        emitter: "TelemetryEmitter | None" = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize with repositories.

        Args:
            lessons: Lesson read model
            progress: Progress store
            policy: Heartbeat policy (defaults when omitted)
            emitter: Telemetry emitter; events are skipped when None
            clock: Source of the current UTC time
        """
        self.lessons = lessons
        self.progress = progress
        self.policy = policy or ProgressPolicy()
        self.emitter = emitter
        self.clock = clock

    # ==========================================================================
    # Lesson access
    # ==========================================================================

    async def resolve_lesson(self, lesson_id: str, org_id: str) -> "Lesson":
        """Load a lesson the caller's organization may track.

        Raises:
            LessonNotFoundError: If the lesson does not exist
            TenantMismatchError: If it belongs to another organization
        """
        lesson = await self.lessons.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError

        if lesson.org_id != org_id:
            logger.warning(
                "lesson_tenant_mismatch",
                lesson_id=lesson_id,
                lesson_org_id=lesson.org_id,
                caller_org_id=org_id,
            )
            raise TenantMismatchError

        return lesson

    # ==========================================================================
    # Heartbeats
    # ==========================================================================

    async def record_heartbeat(
        self,
        user_id: str,
        lesson: "Lesson",
        t: float,
        provider: str | None = None,
    ) -> HeartbeatResult:
        """Fold one playback-position report into the learner's progress.

        Args:
            user_id: Learner id
            lesson: Lesson already checked against the caller's tenant
            t: Reported playback position in seconds
            provider: Playback backend, recorded on telemetry only

        Returns:
            HeartbeatResult with the persisted unique seconds and completion
        """
        now = self.clock()
        duration = lesson.duration_s
        threshold = lesson.threshold_or(self.policy.completion_threshold)

        progress = await self.progress.get(user_id, lesson.lesson_id)
        created = progress is None
        if progress is None:
            progress = LessonProgress(
                user_id=user_id,
                lesson_id=lesson.lesson_id,
                org_id=lesson.org_id,
                created_at=now,
            )

        # Compares arrival time, not the reported position
        tolerance = timedelta(seconds=self.policy.backdate_tolerance_seconds)
        if progress.last_tick_at is not None and now < progress.last_tick_at - tolerance:
            logger.info(
                "heartbeat_stale",
                lesson_id=lesson.lesson_id,
                last_tick_at=progress.last_tick_at.isoformat(),
            )
            return HeartbeatResult(
                unique_seconds=progress.unique_seconds or 0,
                completed=progress.is_completed,
                accepted=False,
            )

        stored = progress.segments
        segments = merge_segments(stored)
        previous_max = furthest_point(segments)

        position = max(0.0, float(t))
        extended = False
        jump_rejected = False

        if position > previous_max:
            jump = position - previous_max
            if jump > self.policy.max_jump_seconds:
                jump_rejected = True
                logger.info(
                    "heartbeat_jump_rejected",
                    lesson_id=lesson.lesson_id,
                    previous_max=previous_max,
                    position=position,
                    jump=jump,
                )
            else:
                end = min(position, duration) if duration > 0 else position
                start = max(0.0, end - self.policy.segment_padding_seconds)
                if end > start:
                    extended_segments = merge_segments([*segments, (start, end)])
                    extended = extended_segments != segments
                    segments = extended_segments

        segments_changed = segments != stored

        if segments_changed or progress.unique_seconds is None:
            new_unique = round(unique_seconds(segments, duration))
        else:
            new_unique = progress.unique_seconds

        newly_completed = (
            not progress.is_completed
            and duration > 0
            and new_unique / duration >= threshold
        )

        changed: list[str] = []
        if segments_changed:
            progress.segments = segments
            changed.append(ProgressField.SEGMENTS)
        if new_unique != progress.unique_seconds:
            progress.unique_seconds = new_unique
            changed.append(ProgressField.UNIQUE_SECONDS)
        if newly_completed:
            progress.completed_at = now
            changed.append(ProgressField.COMPLETED_AT)
        if progress.last_tick_at != now:
            progress.last_tick_at = now
            changed.append(ProgressField.LAST_TICK_AT)

        if created:
            await self.progress.insert(progress)
        elif changed:
            await self.progress.update(progress, changed)

        result = HeartbeatResult(
            unique_seconds=new_unique,
            completed=progress.is_completed,
            created=created,
            extended=extended,
            jump_rejected=jump_rejected,
            newly_completed=newly_completed,
            changed_fields=tuple(changed),
        )

        logger.debug(
            "heartbeat_recorded",
            lesson_id=lesson.lesson_id,
            position=position,
            unique_seconds=new_unique,
            completed=result.completed,
            changed=result.changed_fields,
        )
        if newly_completed:
            logger.info(
                "lesson_completed",
                lesson_id=lesson.lesson_id,
                unique_seconds=new_unique,
                duration_s=duration,
            )

        self._emit_heartbeat_events(progress, lesson, result, position, provider)
        return result

    def _emit_heartbeat_events(
        self,
        progress: LessonProgress,
        lesson: "Lesson",
        result: HeartbeatResult,
        position: float,
        provider: str | None,
    ) -> None:
        if self.emitter is None:
            return

        common: dict[str, Any] = {
            "lesson_id": lesson.lesson_id,
            "provider": provider,
            "duration_s": lesson.duration_s,
        }

        try:
            if result.created:
                self.emitter.track(
                    EventName.LESSON_VIEW_START,
                    progress.user_id,
                    org_id=progress.org_id,
                    **common,
                )

            self.emitter.track(
                EventName.LESSON_PROGRESS_TICK,
                progress.user_id,
                org_id=progress.org_id,
                position=position,
                unique_seconds=result.unique_seconds,
                completed=result.completed,
                **common,
            )

            if result.newly_completed:
                self.emitter.track(
                    EventName.LESSON_VIEW_COMPLETE,
                    progress.user_id,
                    org_id=progress.org_id,
                    unique_seconds=result.unique_seconds,
                    **common,
                )
        except Exception:
            logger.exception("telemetry_emit_failed", lesson_id=lesson.lesson_id)

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def get_progress(self, user_id: str, lesson: "Lesson") -> ProgressSnapshot:
        """Current progress of a learner on a lesson (zeros if never watched)."""
        threshold = lesson.threshold_or(self.policy.completion_threshold)
        progress = await self.progress.get(user_id, lesson.lesson_id)

        if progress is None:
            return ProgressSnapshot(
                lesson_id=lesson.lesson_id,
                duration_s=lesson.duration_s,
                unique_seconds=0,
                completed=False,
                completed_at=None,
                ratio=0.0,
                resume_position=0.0,
                last_tick_at=None,
            )

        segments = merge_segments(progress.segments)
        unique = progress.unique_seconds
        if unique is None:
            unique = round(unique_seconds(segments, lesson.duration_s))

        ratio = completion_ratio(unique, lesson.duration_s, threshold)
        if progress.is_completed:
            ratio = 1.0

        resume = furthest_point(segments)
        if lesson.has_known_duration:
            resume = min(resume, float(lesson.duration_s))

        return ProgressSnapshot(
            lesson_id=lesson.lesson_id,
            duration_s=lesson.duration_s,
            unique_seconds=unique,
            completed=progress.is_completed,
            completed_at=progress.completed_at,
            ratio=ratio,
            resume_position=resume,
            last_tick_at=progress.last_tick_at,
            segments=segments,
        )
