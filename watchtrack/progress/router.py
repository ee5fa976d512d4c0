"""Watch-time progress API endpoints.

Provides routes for:
- Heartbeat ingestion (sent by the player every few seconds)
- Progress queries for the current learner
"""

from fastapi import APIRouter, Path, status

from watchtrack.auth import CurrentPrincipal

from .dependencies import ProgressServiceDep, handle_progress_error
from .schemas import HeartbeatRequest, HeartbeatResponse, LessonProgressResponse
from .service import ProgressError


router = APIRouter(prefix="/v1/progress", tags=["progress"])


@router.post(
    "/heartbeat",
    response_model=HeartbeatResponse,
    status_code=status.HTTP_200_OK,
    summary="Record a playback heartbeat",
)
async def record_heartbeat(
    data: HeartbeatRequest,
    progress_service: ProgressServiceDep,
    principal: CurrentPrincipal,
) -> HeartbeatResponse:
    """Fold the reported playback position into the caller's progress.

    Stale, duplicate and implausible heartbeats are not errors: they return
    the current state unchanged.
    """
    try:
        lesson = await progress_service.resolve_lesson(data.lesson_id, principal.org_id)
        result = await progress_service.record_heartbeat(
            user_id=principal.user_id,
            lesson=lesson,
            t=data.t,
            provider=data.provider.value,
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return HeartbeatResponse.from_result(result)


@router.get(
    "/lessons/{lesson_id}",
    response_model=LessonProgressResponse,
    summary="Get my progress on a lesson",
)
async def get_lesson_progress(
    progress_service: ProgressServiceDep,
    principal: CurrentPrincipal,
    lesson_id: str = Path(..., min_length=1, max_length=200),
) -> LessonProgressResponse:
    """Unique seconds, completion and resume position for the caller."""
    try:
        lesson = await progress_service.resolve_lesson(lesson_id, principal.org_id)
        snapshot = await progress_service.get_progress(principal.user_id, lesson)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    return LessonProgressResponse.from_snapshot(snapshot)
