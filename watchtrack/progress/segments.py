"""Watched-interval arithmetic.

A segment is a half-open ``(start, end)`` span of video, in seconds, that the
learner has watched. A canonical segment list is sorted by start and fully
merged: no two segments overlap or touch.
"""

import math
from collections.abc import Iterable, Mapping
from typing import Any


Segment = tuple[float, float]


def merge_segments(segments: Iterable[Segment]) -> list[Segment]:
    """Collapse segments into their canonical form.

    Segments that overlap or touch (``next.start == current.end``) are merged.
    Input must already be well formed (finite, ``start < end``); use
    ``coerce_segments`` on anything read from storage or a client.
    """
    ordered = sorted(segments)
    if not ordered:
        return []

    merged: list[Segment] = []
    current_start, current_end = ordered[0]

    for next_start, next_end in ordered[1:]:
        if next_start <= current_end:
            current_end = max(current_end, next_end)
            continue

        merged.append((current_start, current_end))
        current_start, current_end = next_start, next_end

    merged.append((current_start, current_end))
    return merged


def unique_seconds(segments: Iterable[Segment], duration_s: float) -> float:
    """Total coverage of canonical segments, clipped to the lesson duration.

    A duration of 0 means the length is unknown, so nothing is clipped.
    """
    if duration_s <= 0:
        return float(sum(end - start for start, end in segments))

    return float(
        sum(max(0.0, min(end, duration_s) - start) for start, end in segments)
    )


def furthest_point(segments: Iterable[Segment]) -> float:
    """Largest end across segments (0 when empty)."""
    return max((end for _, end in segments), default=0.0)


def completion_ratio(
    unique: float,
    duration_s: float,
    threshold: float,
) -> float:
    """Progress toward the completion threshold, in ``[0, 1]``.

    Reaches 1 once ``threshold * duration_s`` seconds have been watched. An
    unknown duration always yields 0.
    """
    if duration_s <= 0 or threshold <= 0:
        return 0.0

    required = duration_s * threshold
    watched = max(0.0, min(unique, duration_s))
    return max(0.0, min(1.0, watched / required))


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _pair_from(entry: Any) -> tuple[Any, Any] | None:
    if isinstance(entry, Mapping):
        start = entry.get("start", entry.get("s"))
        end = entry.get("end", entry.get("e"))
        return start, end
    if isinstance(entry, (list, tuple)) and len(entry) >= 2:
        return entry[0], entry[1]
    return None


def coerce_segments(value: Any) -> list[Segment]:
    """Read segments from stored or legacy data.

    Accepts ``[start, end]`` pairs as well as mappings keyed ``start``/``end``
    or ``s``/``e``. Non-numeric and non-finite entries are dropped, inverted
    pairs are swapped, negatives are clamped to 0 and zero-length spans are
    discarded. The result is not merged.
    """
    if not isinstance(value, (list, tuple)):
        return []

    segments: list[Segment] = []
    for entry in value:
        pair = _pair_from(entry)
        if pair is None:
            continue

        start, end = _as_number(pair[0]), _as_number(pair[1])
        if start is None or end is None:
            continue

        lower = max(0.0, min(start, end))
        upper = max(0.0, max(start, end))
        if upper <= lower:
            continue

        segments.append((lower, upper))

    return segments
