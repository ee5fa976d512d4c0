"""Pydantic schemas for watch-time progress.

The heartbeat wire format is camelCase (``lessonId``, ``uniqueSeconds``) to
match the player clients.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .service import HeartbeatResult, ProgressSnapshot


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoProvider(str, Enum):
    """Supported playback backends."""

    YOUTUBE = "youtube"
    CLOUDFLARE = "cloudflare"


# ==============================================================================
# Heartbeat Schemas
# ==============================================================================


class HeartbeatRequest(CamelModel):
    """One playback-position report, sent every few seconds while playing."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    lesson_id: str = Field(..., min_length=1, max_length=200, strict=True)
    provider: VideoProvider
    t: float = Field(
        ..., strict=True, allow_inf_nan=False, description="Playback position (s)"
    )

    @field_validator("lesson_id")
    @classmethod
    def lesson_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "lessonId must not be blank"
            raise ValueError(msg)
        return v


class HeartbeatResponse(CamelModel):
    """Heartbeat outcome."""

    ok: Literal[True] = True
    unique_seconds: int
    completed: bool

    @classmethod
    def from_result(cls, result: HeartbeatResult) -> "HeartbeatResponse":
        return cls(unique_seconds=result.unique_seconds, completed=result.completed)


# ==============================================================================
# Progress Query Schemas
# ==============================================================================


class LessonProgressResponse(CamelModel):
    """Caller's progress on one lesson."""

    ok: Literal[True] = True
    lesson_id: str
    duration_s: int
    unique_seconds: int
    completed: bool
    completed_at: datetime | None = None
    ratio: float = Field(description="Progress toward completion, 0-1")
    resume_position: float = Field(description="Furthest point reached (s)")
    last_tick_at: datetime | None = None
    segments: list[tuple[float, float]] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot) -> "LessonProgressResponse":
        return cls(
            lesson_id=snapshot.lesson_id,
            duration_s=snapshot.duration_s,
            unique_seconds=snapshot.unique_seconds,
            completed=snapshot.completed,
            completed_at=snapshot.completed_at,
            ratio=round(snapshot.ratio, 4),
            resume_position=snapshot.resume_position,
            last_tick_at=snapshot.last_tick_at,
            segments=list(snapshot.segments),
        )
