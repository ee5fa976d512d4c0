"""Request context middleware.

Players send a heartbeat every few seconds per learner, which makes those
requests the bulk of the traffic. They are logged at debug unless they fail,
and every request is logged by its route template (``/v1/progress/lessons/
{lesson_id}``) rather than the concrete path.
"""

import logging
import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from watchtrack.core.context import clear_context, set_request_id


logger = structlog.get_logger(__name__)

HIGH_VOLUME_PATHS = ("/v1/progress/heartbeat",)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, logs each request once, and clears context.

    The id is taken from ``X-Request-ID`` when the caller (or a proxy)
    supplies one and echoed back on every response.
    """

    REQUEST_ID_HEADER = "X-Request-ID"

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
        high_volume_paths: tuple[str, ...] = HIGH_VOLUME_PATHS,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application.
            log_requests: Whether to log finished requests.
            exclude_paths: Path prefixes never logged (health checks).
            high_volume_paths: Paths logged at debug when successful.
        """
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = exclude_paths or ["/health"]
        self.high_volume_paths = high_volume_paths

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        request_id = set_request_id(request.headers.get(self.REQUEST_ID_HEADER))
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                method=request.method,
                route=self._route_of(request),
                error_type=type(e).__name__,
                duration_ms=self._elapsed_ms(started),
            )
            raise
        else:
            response.headers[self.REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                self._log_completed(request, response.status_code, started)
            return response
        finally:
            clear_context()

    def _log_completed(self, request: Request, status_code: int, started: float) -> None:
        path = request.url.path
        if any(path.startswith(excluded) for excluded in self.exclude_paths):
            return

        logger.log(
            self._level_for(path, status_code),
            "request_completed",
            method=request.method,
            route=self._route_of(request),
            status_code=status_code,
            duration_ms=self._elapsed_ms(started),
            client_ip=self._client_ip(request),
        )

    def _level_for(self, path: str, status_code: int) -> int:
        if status_code >= 500:
            return logging.ERROR
        if status_code >= 400:
            return logging.WARNING
        if path in self.high_volume_paths:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def _route_of(request: Request) -> str:
        route = request.scope.get("route")
        return getattr(route, "path", None) or request.url.path

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    @staticmethod
    def _client_ip(request: Request) -> str | None:
        """Client address, honoring reverse proxy headers."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        return request.client.host if request.client else None


__all__ = ["RequestContextMiddleware"]
