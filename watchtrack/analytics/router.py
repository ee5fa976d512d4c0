"""Analytics API endpoints.

Provides routes for:
- Rollup trigger, called by a scheduler or an operator
- Organization daily lesson analytics (admins only)
"""

from datetime import UTC, date, datetime, timedelta

from fastapi import APIRouter, HTTPException, Query, status

from watchtrack.auth import AdminPrincipal, JobsApiKey
from watchtrack.core.context import get_request_id

from .dependencies import RollupServiceDep, SummaryRepositoryDep
from .rollup import RollupError
from .schemas import (
    DailyLessonSummaryListResponse,
    DailyLessonSummaryResponse,
    RollupResultSchema,
    SummarizeResponse,
)


jobs_router = APIRouter(prefix="/v1/jobs", tags=["jobs"])
router = APIRouter(prefix="/v1/admin/analytics", tags=["analytics"])

DEFAULT_RANGE_DAYS = 30
MAX_RANGE_DAYS = 366


# ==============================================================================
# Rollup Job
# ==============================================================================


@jobs_router.api_route(
    "/summarize",
    methods=["GET", "POST"],
    response_model=SummarizeResponse,
    dependencies=[JobsApiKey],
    summary="Run the daily analytics rollup",
)
async def summarize(rollup_service: RollupServiceDep) -> SummarizeResponse:
    """Summarize every fully elapsed day not summarized yet.

    Idempotent: a second call right after the first writes nothing.
    """
    try:
        result = await rollup_service.run()
    except RollupError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": e.code, "message": "Failed to summarize progress"},
        ) from e

    return SummarizeResponse(
        request_id=get_request_id(),
        result=RollupResultSchema.from_result(result),
    )


# ==============================================================================
# Daily Analytics
# ==============================================================================


@router.get(
    "/lessons/daily",
    response_model=DailyLessonSummaryListResponse,
    summary="Daily lesson analytics for my organization",
)
async def list_daily_lesson_summaries(
    admin: AdminPrincipal,
    summaries: SummaryRepositoryDep,
    start: date | None = Query(None, description="First day (default: 30 days ago)"),
    end: date | None = Query(None, description="Last day (default: today)"),
    lesson_id: str | None = Query(None, min_length=1, alias="lessonId"),
) -> DailyLessonSummaryListResponse:
    """Summary rows of the caller's organization, oldest day first."""
    end = end or datetime.now(UTC).date()
    start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)

    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_payload", "message": "start must not be after end"},
        )
    if (end - start).days >= MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "invalid_payload",
                "message": f"Range is limited to {MAX_RANGE_DAYS} days",
            },
        )

    rows = await summaries.list_for_org(admin.org_id, start, end, lesson_id=lesson_id)
    items = [DailyLessonSummaryResponse.from_entity(row) for row in rows]
    return DailyLessonSummaryListResponse(start=start, end=end, items=items, total=len(items))
