"""Product analytics events (PostHog) emitted by watch-time tracking."""

from .emitter import (
    EventSink,
    TelemetryEmitter,
    get_telemetry_emitter,
    set_telemetry_emitter,
)
from .models import EventName, TelemetryEvent
from .sink import PostHogSink, TelemetryDeliveryError


__all__ = [
    "EventName",
    "EventSink",
    "PostHogSink",
    "TelemetryDeliveryError",
    "TelemetryEmitter",
    "TelemetryEvent",
    "get_telemetry_emitter",
    "set_telemetry_emitter",
]
