from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from .announcements import NavigationEvent
from .orchestrator import NavigationUpdate
from .route import Coordinate, Route, Step
from .session import LocationFix, NavigationSnapshot


class Point(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)

    @classmethod
    def from_coordinate(cls, coordinate: Coordinate) -> "Point":
        return cls(lat=coordinate.lat, lon=coordinate.lon)


class StepIn(BaseModel):
    start: Point
    end: Point
    distance_m: float = Field(ge=0)
    duration_s: float = Field(ge=0)
    instruction: str = ""
    points: list[Point] = []
    maneuver: str | None = None

    def to_step(self) -> Step:
        return Step(
            start=self.start.to_coordinate(),
            end=self.end.to_coordinate(),
            distance_m=self.distance_m,
            duration_s=self.duration_s,
            instruction=self.instruction,
            points=tuple(p.to_coordinate() for p in self.points),
            maneuver=self.maneuver,
        )


class RouteIn(BaseModel):
    steps: list[StepIn] = Field(min_length=1)
    polyline: list[Point] = []
    mode: str = "driving"
    summary: str | None = None

    def to_route(self) -> Route:
        return Route.from_steps(
            [s.to_step() for s in self.steps],
            polyline=[p.to_coordinate() for p in self.polyline],
            mode=self.mode,
            summary=self.summary,
        )


class StartRequest(BaseModel):
    user_id: str | None = None
    group_session_id: str | None = None
    route: RouteIn | None = None
    origin: Point | None = None
    destination: Point | None = None
    mode: str = "car"


class FixRequest(BaseModel):
    lat: float
    lon: float
    speed_kmh: float = 0.0
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_fix(self) -> LocationFix:
        return LocationFix(
            coordinate=Coordinate(self.lat, self.lon),
            timestamp=self.timestamp or datetime.now(timezone.utc),
            speed_kmh=self.speed_kmh,
        )


class RecalculateRequest(BaseModel):
    origin: Point | None = None


class StepOut(BaseModel):
    instruction: str
    distance_m: float
    duration_s: float
    maneuver: str | None = None
    end: Point

    @classmethod
    def from_step(cls, step: Step) -> "StepOut":
        return cls(
            instruction=step.plain_instruction,
            distance_m=step.distance_m,
            duration_s=step.duration_s,
            maneuver=step.maneuver,
            end=Point.from_coordinate(step.end),
        )


class EventOut(BaseModel):
    event: str
    step_index: int | None = None
    bucket_m: int | None = None
    instruction: str | None = None

    @classmethod
    def from_event(cls, event: NavigationEvent) -> "EventOut":
        return cls(**event.to_dict())


class ErrorOut(BaseModel):
    kind: str
    message: str
    terminal: bool


class SessionOut(BaseModel):
    session_id: str
    status: str
    user_id: str | None = None
    group_session_id: str | None = None
    current_step_index: int
    step_count: int
    current_step: StepOut
    next_step: StepOut | None = None
    distance_to_step_end_m: float | None = None
    remaining_distance_m: float | None = None
    remaining_duration_s: float | None = None
    eta: datetime | None = None
    off_route: bool
    distance_traveled_m: float
    elapsed_s: float
    started_at: datetime | None = None
    ended_at: datetime | None = None
    last_location: Point | None = None

    @classmethod
    def from_snapshot(cls, snap: NavigationSnapshot) -> "SessionOut":
        return cls(
            session_id=snap.session_id,
            status=snap.status.value,
            user_id=snap.user_id,
            group_session_id=snap.group_session_id,
            current_step_index=snap.current_step_index,
            step_count=snap.step_count,
            current_step=StepOut.from_step(snap.current_step),
            next_step=StepOut.from_step(snap.next_step) if snap.next_step else None,
            distance_to_step_end_m=snap.distance_to_step_end_m,
            remaining_distance_m=snap.remaining_distance_m,
            remaining_duration_s=snap.remaining_duration_s,
            eta=snap.eta,
            off_route=snap.off_route,
            distance_traveled_m=snap.distance_traveled_m,
            elapsed_s=snap.elapsed_s,
            started_at=snap.started_at,
            ended_at=snap.ended_at,
            last_location=(
                Point.from_coordinate(snap.last_location) if snap.last_location else None
            ),
        )


class UpdateOut(BaseModel):
    session: SessionOut
    accepted: bool
    advisory: str | None = None
    events: list[EventOut] = []
    error: ErrorOut | None = None

    @classmethod
    def from_update(cls, update: NavigationUpdate) -> "UpdateOut":
        error = update.error
        return cls(
            session=SessionOut.from_snapshot(update.snapshot),
            accepted=update.accepted,
            advisory=update.advisory.value if update.advisory else None,
            events=[EventOut.from_event(e) for e in update.events],
            error=(
                ErrorOut(kind=error.kind.value, message=error.message, terminal=error.terminal)
                if error
                else None
            ),
        )
