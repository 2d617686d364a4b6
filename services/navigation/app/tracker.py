"""Where is the rider relative to the route.

Every function here is a pure computation over its arguments: the caller
threads the step index from one fix to the next. Malformed input (empty step
list, index out of range, non-finite coordinates) raises
:class:`RouteInvariantError` because it means the planner contract is broken.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from .geodesy import distance_meters, distance_to_path_meters
from .route import Coordinate, Route, RouteInvariantError, Step, require_valid


@dataclass(frozen=True)
class TrackingConfig:
    arrival_threshold_m: float = 30.0      # step end / destination reached
    off_route_threshold_m: float = 50.0
    next_turn_alert_m: float = 200.0
    step_switch_margin_m: float = 15.0     # "closer to a later step" margin
    lookahead_steps: int = 3
    eta_min_speed_kmh: float = 5.0         # below this speed is GPS noise
    eta_correction_factor: float = 1.15    # traffic lights, junctions


DEFAULT_CONFIG = TrackingConfig()


@dataclass(frozen=True)
class Progress:
    """Everything derived from one fix against the route."""

    step_index: int
    distance_to_step_end_m: float
    remaining_distance_m: float
    remaining_duration_s: float
    eta: datetime
    off_route: bool
    near_next_turn: bool
    distance_to_destination_m: float


def _check_steps(steps: Sequence[Step]) -> None:
    if not steps:
        raise RouteInvariantError("steps must not be empty")


def _check_index(steps: Sequence[Step], index: int) -> None:
    if not 0 <= index < len(steps):
        raise RouteInvariantError(
            f"step index {index} out of range for {len(steps)} steps"
        )


def determine_current_step(
    current_location: Coordinate,
    steps: Sequence[Step],
    last_step_index: int,
    config: TrackingConfig = DEFAULT_CONFIG,
) -> int:
    """Return the step the rider is on, never less than ``last_step_index``.

    The rider moves on from the current step when the fix is within the
    arrival threshold of its end, or when the fix sits closer, by more than
    ``step_switch_margin_m``, to the path of one of the next
    ``lookahead_steps`` steps than to the current step's path. At most one step
    is advanced per fix.
    """

    _check_steps(steps)
    _check_index(steps, last_step_index)
    require_valid(current_location, "current location")

    if last_step_index == len(steps) - 1:
        return last_step_index

    current = steps[last_step_index]
    if distance_meters(current_location, current.end) < config.arrival_threshold_m:
        return last_step_index + 1

    current_path_distance = distance_to_path_meters(current_location, current.path)
    lookahead_end = min(len(steps), last_step_index + 1 + config.lookahead_steps)
    for later in steps[last_step_index + 1 : lookahead_end]:
        later_distance = distance_to_path_meters(current_location, later.path)
        if later_distance + config.step_switch_margin_m < current_path_distance:
            return last_step_index + 1
    return last_step_index


def calculate_distance_to_step_end(
    current_location: Coordinate, current_step: Step
) -> float:
    require_valid(current_location, "current location")
    return distance_meters(current_location, current_step.end)


def calculate_remaining_distance(
    current_location: Coordinate, steps: Sequence[Step], current_step_index: int
) -> float:
    """Distance to the end of the current step plus every later step's length."""

    _check_steps(steps)
    _check_index(steps, current_step_index)
    total = calculate_distance_to_step_end(current_location, steps[current_step_index])
    for step in steps[current_step_index + 1 :]:
        total += step.distance_m
    return total


def calculate_remaining_duration(
    steps: Sequence[Step], current_step_index: int
) -> float:
    """Scheduled seconds from the current step (inclusive) to the end."""

    _check_steps(steps)
    _check_index(steps, current_step_index)
    return sum(step.duration_s for step in steps[current_step_index:])


def calculate_eta(
    remaining_distance_m: float,
    current_speed_kmh: float,
    remaining_duration_s: float,
    config: TrackingConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> datetime:
    """Estimated time of arrival.

    At or above ``eta_min_speed_kmh`` the estimate follows the rider's actual
    speed, stretched by ``eta_correction_factor``. Below it the rider is
    treated as stopped and the planner schedule is used instead.
    """

    now = now or datetime.now(timezone.utc)
    if remaining_distance_m <= 0:
        return now
    if current_speed_kmh >= config.eta_min_speed_kmh:
        speed_mps = current_speed_kmh / 3.6
        seconds = remaining_distance_m / speed_mps * config.eta_correction_factor
    else:
        seconds = max(0.0, remaining_duration_s)
    return now + timedelta(seconds=seconds)


def is_off_route(
    current_location: Coordinate,
    current_step: Step,
    config: TrackingConfig = DEFAULT_CONFIG,
) -> bool:
    """Single-fix check; debouncing belongs to the orchestrator."""

    require_valid(current_location, "current location")
    distance = distance_to_path_meters(current_location, current_step.path)
    return distance > config.off_route_threshold_m


def is_near_next_turn(
    current_location: Coordinate,
    next_step: Step,
    config: TrackingConfig = DEFAULT_CONFIG,
    threshold_m: float | None = None,
) -> bool:
    require_valid(current_location, "current location")
    threshold = config.next_turn_alert_m if threshold_m is None else threshold_m
    return distance_meters(current_location, next_step.start) <= threshold


def compute_progress(
    current_location: Coordinate,
    route: Route,
    step_index: int,
    current_speed_kmh: float = 0.0,
    config: TrackingConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> Progress:
    """Run every tracker computation for one fix at a known step index."""

    steps = route.steps
    _check_index(steps, step_index)
    step = steps[step_index]
    remaining_distance = calculate_remaining_distance(current_location, steps, step_index)
    remaining_duration = calculate_remaining_duration(steps, step_index)
    next_step = route.step_at(step_index + 1)
    return Progress(
        step_index=step_index,
        distance_to_step_end_m=calculate_distance_to_step_end(current_location, step),
        remaining_distance_m=remaining_distance,
        remaining_duration_s=remaining_duration,
        eta=calculate_eta(
            remaining_distance, current_speed_kmh, remaining_duration, config, now
        ),
        off_route=is_off_route(current_location, step, config),
        near_next_turn=(
            next_step is not None
            and is_near_next_turn(current_location, next_step, config)
        ),
        distance_to_destination_m=distance_meters(current_location, route.destination),
    )
