"""Pydantic schemas for the rollup job and daily analytics queries."""

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from .models import DailyLessonSummary, RollupResult


class RollupResultSchema(BaseModel):
    """Date ranges are inclusive ISO dates."""

    attempted_range_start: date | None = None
    attempted_range_end: date | None = None
    first_processed_date: date | None = None
    last_processed_date: date | None = None
    processed_day_count: int = 0
    upserted_row_count: int = 0

    @classmethod
    def from_result(cls, result: RollupResult) -> "RollupResultSchema":
        return cls(**result.to_dict())


class SummarizeResponse(BaseModel):
    """Response of the rollup trigger."""

    ok: Literal[True] = True
    request_id: str
    result: RollupResultSchema


class DailyLessonSummaryResponse(BaseModel):
    org_id: str
    lesson_id: str
    day: date
    viewers: int
    unique_seconds_sum: int
    avg_percent: float = Field(description="Mean watched fraction, 0-1")
    completes: int

    @classmethod
    def from_entity(cls, entity: DailyLessonSummary) -> "DailyLessonSummaryResponse":
        return cls(
            org_id=entity.org_id,
            lesson_id=entity.lesson_id,
            day=entity.day,
            viewers=entity.viewers,
            unique_seconds_sum=entity.unique_seconds_sum,
            avg_percent=round(entity.avg_percent, 4),
            completes=entity.completes,
        )


class DailyLessonSummaryListResponse(BaseModel):
    ok: Literal[True] = True
    start: date
    end: date
    items: list[DailyLessonSummaryResponse]
    total: int
