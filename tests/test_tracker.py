from datetime import timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from helpers import T0, equator_route

from services.navigation.app.route import Coordinate, Route, RouteInvariantError
from services.navigation.app.tracker import (
    DEFAULT_CONFIG,
    calculate_distance_to_step_end,
    calculate_eta,
    calculate_remaining_distance,
    calculate_remaining_duration,
    compute_progress,
    determine_current_step,
    is_near_next_turn,
    is_off_route,
)


def test_fix_near_step_end_advances(two_step_route: Route) -> None:
    steps = two_step_route.steps
    index = determine_current_step(Coordinate(0, 0.00099), steps, 0)
    assert index == 1
    remaining = calculate_remaining_distance(Coordinate(0, 0.00099), steps, index)
    assert remaining == pytest.approx(111, abs=2)
    assert calculate_remaining_duration(steps, index) == 20


def test_fix_mid_step_stays(two_step_route: Route) -> None:
    assert determine_current_step(Coordinate(0, 0.0005), two_step_route.steps, 0) == 0


def test_index_never_moves_backwards(two_step_route: Route) -> None:
    assert determine_current_step(Coordinate(0, 0), two_step_route.steps, 1) == 1


def test_last_step_is_final(two_step_route: Route) -> None:
    assert determine_current_step(Coordinate(0, 0.002), two_step_route.steps, 1) == 1


def test_closer_to_later_step_advances_by_one() -> None:
    steps = equator_route(count=4).steps
    # Well inside step 2 but far from the end of step 0.
    index = determine_current_step(Coordinate(0, 0.0125), steps, 0)
    assert index == 1


def test_out_of_range_index_is_rejected(two_step_route: Route) -> None:
    with pytest.raises(RouteInvariantError):
        determine_current_step(Coordinate(0, 0), two_step_route.steps, 2)


def test_empty_steps_are_rejected() -> None:
    with pytest.raises(RouteInvariantError):
        determine_current_step(Coordinate(0, 0), [], 0)
    with pytest.raises(RouteInvariantError):
        calculate_remaining_duration([], 0)


def test_invalid_location_is_rejected(two_step_route: Route) -> None:
    with pytest.raises(RouteInvariantError):
        determine_current_step(Coordinate(float("nan"), 0), two_step_route.steps, 0)


def test_remaining_distance_at_step_start_equals_sum(route: Route) -> None:
    steps = route.steps
    for i, step in enumerate(steps):
        expected = sum(s.distance_m for s in steps[i:])
        assert calculate_remaining_distance(step.start, steps, i) == pytest.approx(expected)


def test_remaining_duration_sums_from_current_step(route: Route) -> None:
    assert calculate_remaining_duration(route.steps, 0) == 180
    assert calculate_remaining_duration(route.steps, 2) == 60


def test_distance_to_step_end(two_step_route: Route) -> None:
    step = two_step_route.steps[0]
    assert calculate_distance_to_step_end(step.end, step) == 0


def test_eta_uses_speed_above_threshold() -> None:
    eta = calculate_eta(1000, 36, 999, now=T0)
    expected = 100 * DEFAULT_CONFIG.eta_correction_factor
    assert (eta - T0).total_seconds() == pytest.approx(expected)


def test_eta_falls_back_to_schedule_when_slow() -> None:
    assert calculate_eta(1000, 2, 300, now=T0) == T0 + timedelta(seconds=300)


def test_eta_is_now_when_arrived() -> None:
    assert calculate_eta(0, 50, 300, now=T0) == T0


def test_off_route_threshold(two_step_route: Route) -> None:
    step = two_step_route.steps[0]
    # 0.0003 deg of latitude is about 33 m, 0.0006 about 67 m.
    assert not is_off_route(Coordinate(0.0003, 0.0005), step)
    assert is_off_route(Coordinate(0.0006, 0.0005), step)


def test_near_next_turn(route: Route) -> None:
    next_step = route.steps[1]
    assert is_near_next_turn(Coordinate(0, 0.0040), next_step)
    assert not is_near_next_turn(Coordinate(0, 0.001), next_step)
    assert is_near_next_turn(Coordinate(0, 0.001), next_step, threshold_m=500)


def test_compute_progress_combines_measurements(route: Route) -> None:
    progress = compute_progress(Coordinate(0, 0.0045), route, 0, 0.0, now=T0)
    assert progress.step_index == 0
    assert progress.distance_to_step_end_m == pytest.approx(55.6, abs=0.5)
    assert progress.near_next_turn
    assert not progress.off_route
    assert progress.eta == T0 + timedelta(seconds=180)


def test_progress_does_not_depend_on_wall_clock(route: Route) -> None:
    first = compute_progress(Coordinate(0, 0.0045), route, 0, 40.0, now=T0)
    second = compute_progress(Coordinate(0, 0.0045), route, 0, 40.0, now=T0)
    assert first == second
    assert not hasattr(first, "eta_seconds")


@given(
    st.lists(st.floats(min_value=0, max_value=0.015), min_size=1, max_size=30),
    st.floats(min_value=-0.0002, max_value=0.0002),
)
def test_index_is_monotonic_and_remaining_non_negative(lons, lat) -> None:
    route = equator_route()
    index = 0
    for lon in lons:
        location = Coordinate(lat, lon)
        new_index = determine_current_step(location, route.steps, index)
        assert index <= new_index <= index + 1
        assert new_index <= route.last_index
        index = new_index
        assert calculate_remaining_distance(location, route.steps, index) >= 0
        assert calculate_remaining_duration(route.steps, index) >= 0
