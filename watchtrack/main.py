"""watchtrack API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from watchtrack.analytics.repository import SummaryRepository
from watchtrack.analytics.rollup import DailyRollupService, RollupScheduler
from watchtrack.analytics.router import jobs_router
from watchtrack.analytics.router import router as analytics_router
from watchtrack.config import Settings, get_settings
from watchtrack.core.context import get_request_id
from watchtrack.core.database import init_async_cassandra, shutdown_async_cassandra
from watchtrack.core.logging import configure_structlog, get_logger
from watchtrack.core.middleware import RequestContextMiddleware
from watchtrack.core.redis import init_redis, shutdown_redis
from watchtrack.health import router as health_router
from watchtrack.lessons import LessonRepository
from watchtrack.progress.repository import ProgressRepository
from watchtrack.progress.router import router as progress_router
from watchtrack.progress.service import ProgressPolicy, ProgressService
from watchtrack.telemetry import PostHogSink, TelemetryEmitter, set_telemetry_emitter


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)

REQUEST_ID_HEADER = RequestContextMiddleware.REQUEST_ID_HEADER

# Stable error codes for statuses raised without an explicit code
ERROR_CODES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "invalid_payload",
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    status.HTTP_503_SERVICE_UNAVAILABLE: "service_unavailable",
}


# Application state for dependency injection
class AppState:
    """Application state container."""

    cassandra_session: Any = None
    progress_service: ProgressService | None = None
    rollup_service: DailyRollupService | None = None
    summary_repository: SummaryRepository | None = None
    telemetry_emitter: TelemetryEmitter | None = None
    posthog_sink: PostHogSink | None = None
    rollup_scheduler: RollupScheduler | None = None


app_state = AppState()


def build_telemetry_emitter(
    settings: Settings, redis_client: Any = None
) -> TelemetryEmitter | None:
    """Emitter for product analytics, or None when telemetry is disabled.

    Without a PostHog key events are still counted in Redis.
    """
    if not settings.telemetry_enabled:
        return None

    sink = None
    if settings.posthog_configured:
        sink = PostHogSink(
            api_key=settings.posthog_api_key or "",
            host=settings.posthog_host,
            timeout=settings.telemetry_timeout_seconds,
        )

    return TelemetryEmitter(
        sink=sink,
        redis=redis_client,
        queue_size=settings.telemetry_queue_size,
        batch_size=settings.telemetry_batch_size,
        flush_interval=settings.telemetry_flush_interval_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - only backs telemetry counters)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - telemetry counters disabled",
        )

    # Telemetry (independent of database)
    emitter = build_telemetry_emitter(settings, redis_client)
    if emitter is not None:
        await emitter.start()
        set_telemetry_emitter(emitter)
        app_state.telemetry_emitter = emitter
        app_state.posthog_sink = emitter.sink
        app.state.telemetry_emitter = emitter

    # Initialize Cassandra (async)
    try:
        app_state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        keyspace = settings.cassandra_keyspace
        lessons = LessonRepository(app_state.cassandra_session, keyspace)
        progress = ProgressRepository(app_state.cassandra_session, keyspace)
        summaries = SummaryRepository(
            app_state.cassandra_session,
            keyspace,
            max_batch_rows=settings.rollup_max_batch_rows,
        )

        app_state.progress_service = ProgressService(
            lessons=lessons,
            progress=progress,
            policy=ProgressPolicy.from_settings(settings),
            emitter=emitter,
        )
        app.state.progress_service = app_state.progress_service
        logger.info("progress_service_initialized")

        app_state.rollup_service = DailyRollupService(
            progress=progress,
            lessons=lessons,
            summaries=summaries,
        )
        app_state.summary_repository = summaries
        app.state.rollup_service = app_state.rollup_service
        app.state.summary_repository = summaries
        logger.info("rollup_service_initialized")

        if settings.rollup_scheduler_enabled:
            app_state.rollup_scheduler = RollupScheduler(
                app_state.rollup_service,
                interval_seconds=settings.rollup_interval_seconds,
            )
            await app_state.rollup_scheduler.start()
            app.state.rollup_scheduler = app_state.rollup_scheduler
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if app_state.rollup_scheduler is not None:
        await app_state.rollup_scheduler.stop()
        app_state.rollup_scheduler = None
    if app_state.telemetry_emitter is not None:
        await app_state.telemetry_emitter.stop()
        set_telemetry_emitter(None)
        app_state.telemetry_emitter = None
    if app_state.posthog_sink is not None:
        await app_state.posthog_sink.aclose()
        app_state.posthog_sink = None
    await shutdown_redis()
    await shutdown_async_cassandra()


def _get_request_id_safe(request: Request) -> str:
    """Get request_id from request state or context."""
    request_id = getattr(request.state, "request_id", None)
    return request_id or get_request_id()


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
) -> ORJSONResponse:
    """Render the JSON error body shared by every endpoint."""
    request_id = _get_request_id_safe(request)
    content: dict[str, Any] = {
        "ok": False,
        "error": code,
        "message": message,
        "request_id": request_id,
    }
    if details:
        content["details"] = details

    response_headers = dict(headers or {})
    if request_id:
        response_headers[REQUEST_ID_HEADER] = request_id

    return ORJSONResponse(
        status_code=status_code, content=content, headers=response_headers
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # debug=False keeps Starlette from rendering tracebacks in responses
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Watch-time progress tracking and lesson analytics API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        detail = exc.detail
        if isinstance(detail, dict):
            code = str(detail.get("code") or ERROR_CODES.get(exc.status_code, "error"))
            message = str(detail.get("message") or code)
        else:
            code = ERROR_CODES.get(exc.status_code, "error")
            message = (
                str(detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error"
            )

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            error=code,
            detail=message,
            path=request.url.path,
            method=request.method,
        )

        return error_response(
            request,
            exc.status_code,
            code,
            message,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Malformed payloads are a 400 with field details."""
        details = [
            {
                "field": ".".join(str(loc) for loc in err.get("loc", [])),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]

        logger.info(
            "validation_error",
            errors=details,
            path=request.url.path,
            method=request.method,
        )

        return error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "invalid_payload",
            "Invalid request payload",
            details=details,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler; details go to the log, never to the caller."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_error",
            "An unexpected error occurred. Please try again later.",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(progress_router)
    app.include_router(jobs_router)
    app.include_router(analytics_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "watchtrack API",
            "version": settings.app_version,
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (``watchtrack-api`` console script)."""
    uvicorn.run(
        "watchtrack.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
