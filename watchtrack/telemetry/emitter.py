"""Fire-and-forget telemetry emitter with background delivery.

Heartbeat handlers call ``track`` and move on: the event goes on a bounded
asyncio.Queue with ``put_nowait`` and is dropped (with a warning) when the
queue is full. A background worker waits for the first pending event, drains
whatever else is already queued up to ``batch_size``, and hands the batch to
the sink. Delivery failures are counted and logged; the batch is discarded.
Optional Redis counters keep per-hour totals per event name.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from watchtrack.core.redis import telemetry_counter_key

from .models import EventName, TelemetryEvent, get_hour_bucket


if TYPE_CHECKING:
    from redis.asyncio import Redis


logger = structlog.get_logger(__name__)

COUNTER_TTL_SECONDS = 7200
STOP_TIMEOUT_SECONDS = 5.0


class EventSink(Protocol):
    async def send(self, events: list[TelemetryEvent]) -> None: ...


@dataclass
class TelemetryStats:
    emitted: int = 0
    dropped: int = 0
    delivered: int = 0
    delivery_failures: int = 0
    last_flush_at: datetime | None = None


# Global emitter instance for code paths without app state (scripts)
_telemetry_emitter: TelemetryEmitter | None = None


def get_telemetry_emitter() -> TelemetryEmitter | None:
    """Get global telemetry emitter instance."""
    return _telemetry_emitter


def set_telemetry_emitter(emitter: TelemetryEmitter | None) -> None:
    """Set global telemetry emitter instance."""
    global _telemetry_emitter  # noqa: PLW0603
    _telemetry_emitter = emitter


class TelemetryEmitter:
    """Non-blocking analytics emitter with a background worker."""

    def __init__(
        self,
        sink: EventSink | None = None,
        redis: Redis | None = None,
        queue_size: int = 10000,
        batch_size: int = 100,
        flush_interval: float = 1.0,
    ) -> None:
        """Initialize telemetry emitter.

        Args:
            sink: Delivery target; events are only counted when None
            redis: Optional Redis client for hourly counters
            queue_size: Pending events kept before new ones are dropped
            batch_size: Most events handed to the sink at once
            flush_interval: How long the idle worker waits before rechecking
        """
        self.sink = sink
        self.redis = redis
        self.queue_size = queue_size
        self.batch_size = max(1, batch_size)
        self.flush_interval = flush_interval

        self.stats = TelemetryStats()
        self._queue: asyncio.Queue[TelemetryEvent] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None
        self._stopping = False
        self._started_at: float | None = None

    # ==========================================================================
    # Producer side
    # ==========================================================================

    def emit(self, event: TelemetryEvent) -> bool:
        """Queue an event. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(
                "telemetry_queue_full",
                event_name=event.event,
                queue_size=self.queue_size,
                dropped_total=self.stats.dropped,
            )
            return False

        self.stats.emitted += 1
        return True

    def track(
        self,
        event: EventName | str,
        distinct_id: str,
        org_id: str | None = None,
        **properties: Any,
    ) -> bool:
        """Build and queue an event for a user."""
        return self.emit(
            TelemetryEvent.create(event, distinct_id, org_id=org_id, **properties)
        )

    # ==========================================================================
    # Worker lifecycle
    # ==========================================================================

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def queue_length(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the background worker."""
        if self.is_running:
            logger.warning("telemetry_emitter_already_running")
            return

        self._started_at = time.monotonic()
        self._stopping = False
        self._worker = asyncio.create_task(self._run(), name="telemetry_worker")
        logger.info(
            "telemetry_emitter_started",
            sink=type(self.sink).__name__ if self.sink else None,
            batch_size=self.batch_size,
        )

    async def stop(self) -> None:
        """Stop the worker, then deliver everything still queued."""
        worker, self._worker = self._worker, None
        if worker is None:
            return

        # The worker notices within flush_interval and finishes its batch
        self._stopping = True
        try:
            await asyncio.wait_for(worker, timeout=STOP_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("telemetry_worker_stop_timeout")
        except asyncio.CancelledError:
            pass

        await self.flush()
        self._started_at = None
        logger.info("telemetry_emitter_stopped", **asdict(self.stats))

    async def _run(self) -> None:
        while not self._stopping:
            batch = await self._next_batch()
            if not batch:
                continue
            try:
                await self._deliver(batch)
            except Exception:
                logger.exception("telemetry_worker_error", batch_size=len(batch))

    async def _next_batch(self) -> list[TelemetryEvent]:
        """Wait up to ``flush_interval`` for one event, then take what is ready."""
        try:
            first = await asyncio.wait_for(self._queue.get(), timeout=self.flush_interval)
        except TimeoutError:
            return []
        return [first, *self._drain(self.batch_size - 1)]

    def _drain(self, limit: int) -> list[TelemetryEvent]:
        events: list[TelemetryEvent] = []
        while len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return events

    # ==========================================================================
    # Delivery
    # ==========================================================================

    async def flush(self) -> int:
        """Deliver everything currently queued. Returns the number of events."""
        total = 0
        while batch := self._drain(self.batch_size):
            await self._deliver(batch)
            total += len(batch)
        return total

    async def _deliver(self, batch: list[TelemetryEvent]) -> None:
        if self.sink is not None:
            try:
                await self.sink.send(batch)
            except Exception:
                self.stats.delivery_failures += 1
                logger.exception("telemetry_delivery_error", batch_size=len(batch))
            else:
                self.stats.delivered += len(batch)

        if self.redis is not None:
            await self._count_in_redis(batch)

        self.stats.last_flush_at = datetime.now(UTC)

    async def _count_in_redis(self, batch: list[TelemetryEvent]) -> None:
        counts: dict[str, int] = {}
        for event in batch:
            key = telemetry_counter_key(get_hour_bucket(event.timestamp), event.event)
            counts[key] = counts.get(key, 0) + 1

        try:
            pipe = self.redis.pipeline()
            for key, count in counts.items():
                pipe.incrby(key, count)
                pipe.expire(key, COUNTER_TTL_SECONDS)
            await pipe.execute()
        except Exception:
            logger.exception("telemetry_redis_counter_error")

    def get_stats(self) -> dict[str, Any]:
        """Emitter statistics for the readiness probe."""
        return {
            "running": self.is_running,
            "sink": type(self.sink).__name__ if self.sink else None,
            "queue_length": self.queue_length,
            "queue_size": self.queue_size,
            "events_emitted": self.stats.emitted,
            "events_delivered": self.stats.delivered,
            "events_dropped": self.stats.dropped,
            "delivery_failures": self.stats.delivery_failures,
            "last_flush_at": self.stats.last_flush_at,
            "uptime_seconds": (
                time.monotonic() - self._started_at if self._started_at else 0.0
            ),
        }
