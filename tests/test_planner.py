from typing import Any

import pytest
from googlemaps.convert import encode_polyline
from googlemaps.exceptions import ApiError

from services.navigation.app import deps, planner
from services.navigation.app.route import Coordinate


def _step(start, end, via, meters, seconds, html, maneuver=None) -> dict[str, Any]:
    payload = {
        "start_location": {"lat": start[0], "lng": start[1]},
        "end_location": {"lat": end[0], "lng": end[1]},
        "distance": {"value": meters},
        "duration": {"value": seconds},
        "html_instructions": html,
        "polyline": {"points": encode_polyline([start, *via, end])},
    }
    if maneuver:
        payload["maneuver"] = maneuver
    return payload


DIRECTIONS = [
    {
        "summary": "Tverskaya",
        "overview_polyline": {
            "points": encode_polyline([(55.75, 37.61), (55.751, 37.612), (55.752, 37.612)])
        },
        "legs": [
            {
                "start_location": {"lat": 55.75, "lng": 37.61},
                "end_location": {"lat": 55.752, "lng": 37.612},
                "steps": [
                    _step((55.75, 37.61), (55.751, 37.612), [(55.7505, 37.611)], 160, 30, "Head <b>northeast</b>"),
                    _step((55.751, 37.612), (55.752, 37.612), [], 111, 20, "Turn <b>left</b>", "turn-left"),
                ],
            }
        ],
    }
]


class FakeClient:
    def __init__(self, response: Any = DIRECTIONS, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.kwargs: dict[str, Any] = {}

    def directions(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


class PlannerSettings(deps.Settings):
    google_maps_api_key = "test-key"
    avoid_tolls = True
    avoid_ferries = True


def test_directions_response_becomes_route() -> None:
    client = FakeClient()
    route_planner = planner.GoogleDirectionsPlanner(PlannerSettings(), client=client)
    route = route_planner.compute_route(
        Coordinate(55.75, 37.61), Coordinate(55.752, 37.612), "bike"
    )

    assert client.kwargs["mode"] == "bicycling"
    assert client.kwargs["avoid"] == ["tolls", "ferries"]
    assert client.kwargs["origin"] == "55.75,37.61"
    assert client.kwargs["language"] == "ru"

    assert route.mode == "bicycling"
    assert route.summary == "Tverskaya"
    assert len(route.steps) == 2
    assert route.total_distance_m == 271
    assert route.total_duration_s == 50
    first, second = route.steps
    assert len(first.points) == 1
    assert first.points[0].lat == pytest.approx(55.7505)
    assert first.points[0].lon == pytest.approx(37.611)
    assert first.plain_instruction == "Head northeast"
    assert second.maneuver == "turn-left"
    assert second.points == ()
    assert route.destination == Coordinate(55.752, 37.612)
    assert len(route.polyline) == 3


def test_api_error_becomes_planning_error() -> None:
    client = FakeClient(error=ApiError("OVER_QUERY_LIMIT"))
    route_planner = planner.GoogleDirectionsPlanner(PlannerSettings(), client=client)
    with pytest.raises(planner.PlanningError):
        route_planner.compute_route(Coordinate(0, 0), Coordinate(0, 1))


def test_empty_response_becomes_planning_error() -> None:
    route_planner = planner.GoogleDirectionsPlanner(PlannerSettings(), client=FakeClient([]))
    with pytest.raises(planner.PlanningError):
        route_planner.compute_route(Coordinate(0, 0), Coordinate(0, 1))


def test_missing_key_disables_planner(monkeypatch: pytest.MonkeyPatch) -> None:
    class NoKey(deps.Settings):
        google_maps_api_key = None

    monkeypatch.setattr(deps, "get_settings", lambda: NoKey())
    planner.get_planner.cache_clear()
    try:
        assert planner.get_planner() is None
    finally:
        planner.get_planner.cache_clear()
    with pytest.raises(planner.PlanningError):
        planner.GoogleDirectionsPlanner(NoKey())
