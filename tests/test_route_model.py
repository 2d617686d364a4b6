import pytest

from helpers import make_step

from services.navigation.app.route import (
    Coordinate,
    Route,
    RouteInvariantError,
    Step,
    clean_instruction,
)


def test_clean_instruction_strips_markup() -> None:
    raw = 'Turn <b>right</b>&nbsp;onto <b>Main St</b><div style="x">Destination on the left</div>'
    assert clean_instruction(raw) == "Turn right onto Main St Destination on the left"


def test_from_steps_fills_totals_and_endpoints(two_step_route: Route) -> None:
    route = two_step_route
    assert route.origin == Coordinate(0, 0)
    assert route.destination == Coordinate(0, 0.002)
    assert route.total_duration_s == 40
    assert route.total_distance_m == pytest.approx(sum(s.distance_m for s in route.steps))
    assert route.polyline == (Coordinate(0, 0), Coordinate(0, 0.001), Coordinate(0, 0.002))
    assert route.steps[1].plain_instruction == "Continue straight"


def test_empty_route_is_rejected() -> None:
    with pytest.raises(RouteInvariantError):
        Route.from_steps([])


def test_negative_distance_is_rejected() -> None:
    step = Step(Coordinate(0, 0), Coordinate(0, 1), distance_m=-1, duration_s=1)
    with pytest.raises(RouteInvariantError):
        Route.from_steps([step])


def test_invalid_coordinate_is_rejected() -> None:
    step = Step(Coordinate(91, 0), Coordinate(0, 1), distance_m=1, duration_s=1)
    with pytest.raises(RouteInvariantError):
        Route.from_steps([step])


def test_route_invariant_error_is_a_value_error() -> None:
    assert issubclass(RouteInvariantError, ValueError)


def test_from_dict_accepts_google_lng_keys() -> None:
    route = Route.from_dict(
        {
            "steps": [
                {
                    "start": {"lat": 0, "lng": 0},
                    "end": {"lat": 0, "lng": 0.001},
                    "distance_m": 111,
                    "duration_s": 20,
                }
            ]
        }
    )
    assert route.destination == Coordinate(0, 0.001)
    assert Route.from_dict(route.to_dict()) == route


def test_step_path_skips_repeated_points() -> None:
    a, b = Coordinate(0, 0), Coordinate(0, 0.001)
    step = make_step(a, b)
    assert Step(a, b, step.distance_m, 1, points=(a, b)).path == (a, b)
