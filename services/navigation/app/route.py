"""Immutable route model produced by the route planner."""

from __future__ import annotations

import html
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


class RouteInvariantError(ValueError):
    """A route or tracker input violates the planner contract."""


def clean_instruction(text: str) -> str:
    """Strip markup from a planner instruction.

    Directions providers return text such as ``"Turn <b>right</b>&nbsp;onto
    Main St"``; voice and display collaborators need plain text.
    """

    # Block-level tags separate phrases, so they become spaces.
    without_tags = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", html.unescape(without_tags).replace("\xa0", " ")).strip()


@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude pair in degrees."""

    lat: float
    lon: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lon)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lon <= 180.0
        )

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Coordinate":
        # Google payloads use "lng"; stored routes use "lon".
        return Coordinate(float(d["lat"]), float(d.get("lon", d.get("lng"))))


def require_valid(coordinate: Coordinate, what: str = "coordinate") -> Coordinate:
    if not coordinate.is_valid():
        raise RouteInvariantError(f"{what} is not a valid coordinate: {coordinate}")
    return coordinate


def _dedupe(points: Iterable[Coordinate]) -> tuple[Coordinate, ...]:
    result: list[Coordinate] = []
    for point in points:
        if not result or result[-1] != point:
            result.append(point)
    return tuple(result)


@dataclass(frozen=True)
class Step:
    """One maneuver of a route."""

    start: Coordinate
    end: Coordinate
    distance_m: float
    duration_s: float
    instruction: str = ""
    points: tuple[Coordinate, ...] = ()
    maneuver: str | None = None      # opaque; used for icon/voice selection

    @property
    def path(self) -> tuple[Coordinate, ...]:
        """Full geometry of the step from start to end."""

        return _dedupe((self.start, *self.points, self.end))

    @property
    def plain_instruction(self) -> str:
        return clean_instruction(self.instruction)

    def validate(self) -> None:
        require_valid(self.start, "step start")
        require_valid(self.end, "step end")
        for point in self.points:
            require_valid(point, "step point")
        if not (math.isfinite(self.distance_m) and self.distance_m >= 0):
            raise RouteInvariantError(f"step distance must be >= 0: {self.distance_m}")
        if not (math.isfinite(self.duration_s) and self.duration_s >= 0):
            raise RouteInvariantError(f"step duration must be >= 0: {self.duration_s}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "instruction": self.instruction,
            "points": [p.to_dict() for p in self.points],
            "maneuver": self.maneuver,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Step":
        return Step(
            start=Coordinate.from_dict(d["start"]),
            end=Coordinate.from_dict(d["end"]),
            distance_m=float(d["distance_m"]),
            duration_s=float(d["duration_s"]),
            instruction=d.get("instruction", ""),
            points=tuple(Coordinate.from_dict(p) for p in d.get("points", [])),
            maneuver=d.get("maneuver"),
        )


@dataclass(frozen=True)
class Route:
    """Ordered, non-empty sequence of steps plus the full polyline.

    Build instances with :meth:`from_steps`; the constructor validates but does
    not fill defaults.
    """

    steps: tuple[Step, ...]
    polyline: tuple[Coordinate, ...]
    origin: Coordinate
    destination: Coordinate
    total_distance_m: float
    total_duration_s: float
    mode: str = "driving"
    summary: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.steps:
            raise RouteInvariantError("route must contain at least one step")
        for step in self.steps:
            step.validate()
        require_valid(self.origin, "route origin")
        require_valid(self.destination, "route destination")
        for point in self.polyline:
            require_valid(point, "polyline point")

    @classmethod
    def from_steps(
        cls,
        steps: Sequence[Step],
        *,
        polyline: Sequence[Coordinate] | None = None,
        origin: Coordinate | None = None,
        destination: Coordinate | None = None,
        mode: str = "driving",
        summary: str | None = None,
    ) -> "Route":
        if not steps:
            raise RouteInvariantError("route must contain at least one step")
        steps = tuple(steps)
        if not polyline:
            polyline = _dedupe(p for step in steps for p in step.path)
        return cls(
            steps=steps,
            polyline=tuple(polyline),
            origin=origin or steps[0].start,
            destination=destination or steps[-1].end,
            total_distance_m=sum(step.distance_m for step in steps),
            total_duration_s=sum(step.duration_s for step in steps),
            mode=mode,
            summary=summary,
        )

    @property
    def last_index(self) -> int:
        return len(self.steps) - 1

    def step_at(self, index: int) -> Step | None:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "summary": self.summary,
            "origin": self.origin.to_dict(),
            "destination": self.destination.to_dict(),
            "total_distance_m": self.total_distance_m,
            "total_duration_s": self.total_duration_s,
            "steps": [s.to_dict() for s in self.steps],
            "polyline": [p.to_dict() for p in self.polyline],
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Route":
        return Route.from_steps(
            [Step.from_dict(s) for s in d["steps"]],
            polyline=[Coordinate.from_dict(p) for p in d.get("polyline", [])],
            origin=Coordinate.from_dict(d["origin"]) if d.get("origin") else None,
            destination=(
                Coordinate.from_dict(d["destination"]) if d.get("destination") else None
            ),
            mode=d.get("mode", "driving"),
            summary=d.get("summary"),
        )
