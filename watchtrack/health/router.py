"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import ORJSONResponse

from watchtrack.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness probe - 503 until the database-backed services are up."""
    settings = get_settings()
    state = request.app.state

    database_ready = getattr(state, "progress_service", None) is not None
    emitter = getattr(state, "telemetry_emitter", None)
    scheduler = getattr(state, "rollup_scheduler", None)

    telemetry: dict[str, Any] = {"enabled": settings.telemetry_enabled}
    if emitter is not None:
        stats = emitter.get_stats()
        telemetry.update(
            running=stats["running"],
            sink=stats["sink"],
            queue_length=stats["queue_length"],
            events_dropped=stats["events_dropped"],
        )

    body = {
        "status": "ready" if database_ready else "not_ready",
        "environment": settings.environment,
        "debug": settings.debug,
        "checks": {
            "database": database_ready,
            "telemetry": telemetry,
            "rollup_scheduler": scheduler is not None and scheduler.is_running,
        },
    }
    return ORJSONResponse(
        status_code=status.HTTP_200_OK
        if database_ready
        else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
