"""Discrete navigation events and their voice wording.

The voice subsystem consumes these idempotently; :class:`AnnouncementTracker`
makes sure the same step, proximity bucket or arrival is never emitted twice
for one route.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from .route import Route, clean_instruction

DEFAULT_PROXIMITY_BUCKETS_M: tuple[int, ...] = (200, 100)


class EventKind(str, Enum):
    STEP_ADVANCED = "step_advanced"
    PROXIMITY_ALERT = "proximity_alert"
    ARRIVED = "arrived"
    OFF_ROUTE = "off_route"
    ROUTE_RECALCULATED = "route_recalculated"


@dataclass(frozen=True)
class NavigationEvent:
    kind: EventKind
    step_index: int | None = None
    bucket_m: int | None = None
    instruction: str | None = None

    def to_dict(self) -> dict:
        return {
            "event": self.kind.value,
            "step_index": self.step_index,
            "bucket_m": self.bucket_m,
            "instruction": self.instruction,
        }


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{int(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    minutes = math.ceil(seconds / 60)
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60} h {minutes % 60:02d} min"


def proximity_bucket(distance_m: float, buckets: Sequence[int]) -> int | None:
    """Smallest bucket the distance falls under, if any."""

    matching = [b for b in buckets if distance_m <= b]
    return min(matching) if matching else None


def announcement_text(event: NavigationEvent, route: Route) -> str:
    """Sentence handed to the text-to-speech collaborator."""

    if event.kind is EventKind.ARRIVED:
        return "You have arrived at your destination"
    if event.kind is EventKind.OFF_ROUTE:
        return "You are off the route"
    if event.kind is EventKind.ROUTE_RECALCULATED:
        return "Route recalculated"

    step = route.step_at(event.step_index if event.step_index is not None else -1)
    instruction = event.instruction or (step.plain_instruction if step else "")
    if event.kind is EventKind.PROXIMITY_ALERT and event.bucket_m is not None:
        if event.bucket_m <= 100:
            return f"Prepare to {_lower_first(instruction)}"
        return f"In {format_distance(event.bucket_m)}, {_lower_first(instruction)}"
    if step is not None:
        return f"In {format_distance(step.distance_m)}, {_lower_first(instruction)}"
    return instruction


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:] if text else text


@dataclass
class AnnouncementTracker:
    """Last-announced markers; only :meth:`reset` clears them."""

    buckets: tuple[int, ...] = DEFAULT_PROXIMITY_BUCKETS_M
    _announced_steps: set[int] = field(default_factory=set)
    _announced_buckets: set[tuple[int, int]] = field(default_factory=set)
    _arrived: bool = False

    def reset(self) -> None:
        self._announced_steps.clear()
        self._announced_buckets.clear()
        self._arrived = False

    def step_advanced(self, step_index: int, route: Route) -> NavigationEvent | None:
        if step_index in self._announced_steps:
            return None
        self._announced_steps.add(step_index)
        step = route.steps[step_index]
        return NavigationEvent(
            kind=EventKind.STEP_ADVANCED,
            step_index=step_index,
            instruction=clean_instruction(step.instruction),
        )

    def proximity(
        self, step_index: int, distance_m: float, route: Route
    ) -> NavigationEvent | None:
        """Alert for the maneuver at the end of ``step_index``."""

        bucket = proximity_bucket(distance_m, self.buckets)
        if bucket is None or (step_index, bucket) in self._announced_buckets:
            return None
        self._announced_buckets.add((step_index, bucket))
        # The maneuver performed at the end of this step is the next one's.
        upcoming = route.step_at(step_index + 1)
        text = upcoming.plain_instruction if upcoming else ""
        return NavigationEvent(
            kind=EventKind.PROXIMITY_ALERT,
            step_index=step_index,
            bucket_m=bucket,
            instruction=text,
        )

    def arrived(self) -> NavigationEvent | None:
        if self._arrived:
            return None
        self._arrived = True
        return NavigationEvent(kind=EventKind.ARRIVED)
