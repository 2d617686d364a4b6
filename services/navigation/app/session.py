"""Navigation session lifecycle.

A :class:`NavigationSession` is a frozen value. Every command below returns a
:class:`Transition` carrying the next session value; rejected commands carry
the unchanged session and an :class:`Advisory` instead of raising. Only
broken route contracts raise (:class:`RouteInvariantError`).

    planning --start--> navigating <--pause/resume--> paused
    navigating --arrival--> completed
    planning|navigating|paused --stop--> cancelled
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from .geodesy import distance_meters, distance_to_path_meters
from .route import Coordinate, Route, RouteInvariantError, Step
from .tracker import (
    DEFAULT_CONFIG,
    Progress,
    TrackingConfig,
    compute_progress,
    determine_current_step,
)


class NavigationStatus(str, Enum):
    PLANNING = "planning"
    NAVIGATING = "navigating"
    PAUSED = "paused"
    OFF_ROUTE = "off_route"      # reported to observers only, never stored
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (NavigationStatus.COMPLETED, NavigationStatus.CANCELLED)


class Advisory(str, Enum):
    """Why a fix or command left the session untouched."""

    INVALID_FIX = "invalid_fix"
    OUT_OF_ORDER_FIX = "out_of_order_fix"
    IMPLAUSIBLE_JUMP = "implausible_jump"
    UNMAPPED_FIX = "unmapped_fix"
    NOT_NAVIGATING = "not_navigating"
    ILLEGAL_TRANSITION = "illegal_transition"
    SESSION_CLOSED = "session_closed"


@dataclass(frozen=True)
class LocationFix:
    coordinate: Coordinate
    timestamp: datetime
    speed_kmh: float = 0.0

    def is_valid(self) -> bool:
        return (
            self.coordinate.is_valid()
            and math.isfinite(self.speed_kmh)
            and self.speed_kmh >= 0
            and self.timestamp.tzinfo is not None
        )


@dataclass(frozen=True)
class SessionLimits:
    """Sanity limits for discarding GPS glitches."""

    max_plausible_speed_kmh: float = 250.0
    max_mapping_distance_m: float = 2_000.0


DEFAULT_LIMITS = SessionLimits()


@dataclass(frozen=True)
class NavigationSession:
    id: str
    route: Route
    status: NavigationStatus = NavigationStatus.PLANNING
    user_id: str | None = None
    group_session_id: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    current_step_index: int = 0
    distance_traveled_m: float = 0.0
    elapsed_s: float = 0.0
    off_route: bool = False
    last_location: Coordinate | None = None
    last_fix_at: datetime | None = None
    progress: Progress | None = None
    # Set on resume: the next fix re-anchors movement without counting it.
    reanchor: bool = False

    @property
    def current_step(self) -> Step:
        return self.route.steps[self.current_step_index]

    @property
    def next_step(self) -> Step | None:
        return self.route.step_at(self.current_step_index + 1)

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == self.route.last_index

    @property
    def effective_status(self) -> NavigationStatus:
        if self.status is NavigationStatus.NAVIGATING and self.off_route:
            return NavigationStatus.OFF_ROUTE
        return self.status

    def with_changes(self, **changes) -> "NavigationSession":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class Transition:
    session: NavigationSession
    accepted: bool
    advisory: Advisory | None = None
    previous_step_index: int | None = None

    @property
    def step_changed(self) -> bool:
        return (
            self.accepted
            and self.previous_step_index is not None
            and self.previous_step_index != self.session.current_step_index
        )


@dataclass(frozen=True)
class NavigationSnapshot:
    """Read-only view handed to observers and collaborators."""

    session_id: str
    status: NavigationStatus
    user_id: str | None
    group_session_id: str | None
    current_step_index: int
    step_count: int
    current_step: Step
    next_step: Step | None
    distance_to_step_end_m: float | None
    remaining_distance_m: float | None
    remaining_duration_s: float | None
    eta: datetime | None
    off_route: bool
    distance_traveled_m: float
    elapsed_s: float
    started_at: datetime | None
    ended_at: datetime | None
    last_location: Coordinate | None


def _accept(session: NavigationSession, previous: NavigationSession) -> Transition:
    return Transition(
        session=session,
        accepted=True,
        previous_step_index=previous.current_step_index,
    )


def _reject(session: NavigationSession, advisory: Advisory) -> Transition:
    return Transition(session=session, accepted=False, advisory=advisory)


def _closed_or_illegal(session: NavigationSession) -> Transition:
    if session.status.is_terminal:
        return _reject(session, Advisory.SESSION_CLOSED)
    return _reject(session, Advisory.ILLEGAL_TRANSITION)


def plan_session(
    route: Route,
    *,
    user_id: str | None = None,
    group_session_id: str | None = None,
    session_id: str | None = None,
) -> NavigationSession:
    if not isinstance(route, Route):
        raise RouteInvariantError("a planned Route is required to create a session")
    return NavigationSession(
        id=session_id or str(uuid4()),
        route=route,
        user_id=user_id,
        group_session_id=group_session_id,
    )


def start(
    session: NavigationSession,
    now: datetime | None = None,
    config: TrackingConfig = DEFAULT_CONFIG,
) -> Transition:
    if session.status is not NavigationStatus.PLANNING:
        return _closed_or_illegal(session)
    now = now or datetime.now(timezone.utc)
    progress = compute_progress(session.route.origin, session.route, 0, 0.0, config, now)
    return _accept(
        session.with_changes(
            status=NavigationStatus.NAVIGATING,
            started_at=now,
            current_step_index=0,
            progress=progress,
        ),
        session,
    )


def _is_unmapped(
    session: NavigationSession,
    location: Coordinate,
    config: TrackingConfig,
    limits: SessionLimits,
) -> bool:
    steps = session.route.steps
    first = session.current_step_index
    last = min(len(steps), first + 1 + config.lookahead_steps)
    return all(
        distance_to_path_meters(location, step.path) > limits.max_mapping_distance_m
        for step in steps[first:last]
    )


def apply_fix(
    session: NavigationSession,
    fix: LocationFix,
    config: TrackingConfig = DEFAULT_CONFIG,
    limits: SessionLimits = DEFAULT_LIMITS,
) -> Transition:
    """Advance the session with one location fix."""

    if session.status is not NavigationStatus.NAVIGATING:
        if session.status.is_terminal:
            return _reject(session, Advisory.SESSION_CLOSED)
        return _reject(session, Advisory.NOT_NAVIGATING)
    if not fix.is_valid():
        return _reject(session, Advisory.INVALID_FIX)

    delta_s = 0.0
    moved_m = 0.0
    if session.last_fix_at is not None:
        delta_s = (fix.timestamp - session.last_fix_at).total_seconds()
        if delta_s < 0:
            return _reject(session, Advisory.OUT_OF_ORDER_FIX)
    if session.reanchor:
        delta_s = 0.0
    elif session.last_location is not None:
        moved_m = distance_meters(session.last_location, fix.coordinate)
        max_m = limits.max_plausible_speed_kmh / 3.6 * max(delta_s, 1.0)
        if moved_m > max_m:
            return _reject(session, Advisory.IMPLAUSIBLE_JUMP)
    if _is_unmapped(session, fix.coordinate, config, limits):
        return _reject(session, Advisory.UNMAPPED_FIX)

    route = session.route
    index = determine_current_step(
        fix.coordinate, route.steps, session.current_step_index, config
    )
    progress = compute_progress(
        fix.coordinate, route, index, fix.speed_kmh, config, fix.timestamp
    )
    changes: dict = dict(
        current_step_index=index,
        progress=progress,
        off_route=progress.off_route,
        last_location=fix.coordinate,
        last_fix_at=fix.timestamp,
        distance_traveled_m=session.distance_traveled_m + moved_m,
        elapsed_s=session.elapsed_s + delta_s,
        reanchor=False,
    )
    if (
        index == route.last_index
        and progress.distance_to_destination_m < config.arrival_threshold_m
    ):
        changes.update(
            status=NavigationStatus.COMPLETED,
            ended_at=fix.timestamp,
            off_route=False,
        )
    return _accept(session.with_changes(**changes), session)


def pause(session: NavigationSession, now: datetime | None = None) -> Transition:
    if session.status is not NavigationStatus.NAVIGATING:
        return _closed_or_illegal(session)
    return _accept(session.with_changes(status=NavigationStatus.PAUSED), session)


def resume(session: NavigationSession, now: datetime | None = None) -> Transition:
    if session.status is not NavigationStatus.PAUSED:
        return _closed_or_illegal(session)
    # Whatever was ridden while paused is not part of the trip.
    return _accept(
        session.with_changes(status=NavigationStatus.NAVIGATING, reanchor=True),
        session,
    )


def stop(session: NavigationSession, now: datetime | None = None) -> Transition:
    if session.status.is_terminal:
        return _reject(session, Advisory.SESSION_CLOSED)
    return _accept(
        session.with_changes(
            status=NavigationStatus.CANCELLED,
            ended_at=now or datetime.now(timezone.utc),
            off_route=False,
        ),
        session,
    )


def recalculate(
    session: NavigationSession,
    new_route: Route,
    now: datetime | None = None,
    config: TrackingConfig = DEFAULT_CONFIG,
) -> Transition:
    """Swap in a freshly planned route; journey counters are kept."""

    if session.status not in (NavigationStatus.NAVIGATING, NavigationStatus.PAUSED):
        return _closed_or_illegal(session)
    if not isinstance(new_route, Route):
        raise RouteInvariantError("recalculation requires a planned Route")
    now = now or datetime.now(timezone.utc)
    location = session.last_location or new_route.origin
    progress = compute_progress(location, new_route, 0, 0.0, config, now)
    return _accept(
        session.with_changes(
            route=new_route,
            current_step_index=0,
            off_route=False,
            progress=progress,
        ),
        session,
    )


def snapshot(session: NavigationSession) -> NavigationSnapshot:
    progress = session.progress
    return NavigationSnapshot(
        session_id=session.id,
        status=session.effective_status,
        user_id=session.user_id,
        group_session_id=session.group_session_id,
        current_step_index=session.current_step_index,
        step_count=len(session.route.steps),
        current_step=session.current_step,
        next_step=session.next_step,
        distance_to_step_end_m=progress.distance_to_step_end_m if progress else None,
        remaining_distance_m=progress.remaining_distance_m if progress else None,
        remaining_duration_s=progress.remaining_duration_s if progress else None,
        eta=progress.eta if progress else None,
        off_route=session.off_route,
        distance_traveled_m=session.distance_traveled_m,
        elapsed_s=session.elapsed_s,
        started_at=session.started_at,
        ended_at=session.ended_at,
        last_location=session.last_location,
    )
