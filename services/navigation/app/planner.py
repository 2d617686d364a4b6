"""Route planning through the Google Maps Directions API."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Protocol

import googlemaps
from googlemaps.convert import decode_polyline
from googlemaps.exceptions import ApiError, Timeout, TransportError
from opentelemetry import trace

from . import deps
from .route import Coordinate, Route, RouteInvariantError, Step

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_MODE_MAPPING = {
    "car": "driving",
    "bike": "bicycling",
    "walk": "walking",
}
_AVOID_OPTIONS = ("tolls", "highways", "ferries")


class PlanningError(Exception):
    """The route could not be planned (network failure or no route)."""


class RoutePlanner(Protocol):
    def compute_route(
        self, origin: Coordinate, destination: Coordinate, mode: str = "driving"
    ) -> Route: ...


def travel_mode(mode: str) -> str:
    return _MODE_MAPPING.get(mode, mode)


def _latlng(coordinate: Coordinate) -> str:
    return f"{coordinate.lat},{coordinate.lon}"


def _step_from_payload(payload: dict[str, Any]) -> Step:
    encoded = payload.get("polyline", {}).get("points")
    points = tuple(
        Coordinate(float(p["lat"]), float(p["lng"]))
        for p in (decode_polyline(encoded) if encoded else [])
    )
    start = Coordinate.from_dict(payload["start_location"])
    end = Coordinate.from_dict(payload["end_location"])
    # Decoded geometry repeats the endpoints; keep only the interior.
    interior = points[1:-1]
    return Step(
        start=start,
        end=end,
        distance_m=float(payload.get("distance", {}).get("value", 0)),
        duration_s=float(payload.get("duration", {}).get("value", 0)),
        instruction=payload.get("html_instructions", ""),
        points=interior,
        maneuver=payload.get("maneuver"),
    )


def route_from_directions(
    response: list[dict[str, Any]], mode: str = "driving"
) -> Route:
    """Build a :class:`Route` from a Directions API response."""

    if not response:
        raise PlanningError("Google Maps returned no routes")
    payload = response[0]
    legs = payload.get("legs", [])
    steps = [_step_from_payload(step) for leg in legs for step in leg.get("steps", [])]
    if not steps:
        raise PlanningError("Google Maps returned a route without steps")
    overview = payload.get("overview_polyline", {}).get("points")
    polyline = (
        [Coordinate(float(p["lat"]), float(p["lng"])) for p in decode_polyline(overview)]
        if overview
        else None
    )
    try:
        return Route.from_steps(
            steps,
            polyline=polyline,
            origin=Coordinate.from_dict(legs[0]["start_location"]),
            destination=Coordinate.from_dict(legs[-1]["end_location"]),
            mode=mode,
            summary=payload.get("summary"),
        )
    except (KeyError, RouteInvariantError) as exc:
        raise PlanningError(f"Google Maps returned a malformed route: {exc}") from exc


class GoogleDirectionsPlanner:
    """Wrapper around ``googlemaps.Client.directions`` with service settings."""

    def __init__(self, settings: deps.Settings, client: Any | None = None) -> None:
        if client is None:
            if not settings.google_maps_api_key:
                raise PlanningError("Google Maps API key is missing")
            client = googlemaps.Client(
                key=settings.google_maps_api_key,
                timeout=settings.google_maps_timeout,
            )
        self._client = client
        self._language = settings.google_maps_language
        self._region = settings.google_maps_region
        self._avoid = [
            option
            for option, enabled in zip(
                _AVOID_OPTIONS,
                (settings.avoid_tolls, settings.avoid_highways, settings.avoid_ferries),
            )
            if enabled
        ]

    def compute_route(
        self, origin: Coordinate, destination: Coordinate, mode: str = "driving"
    ) -> Route:
        directions_mode = travel_mode(mode)
        with tracer.start_as_current_span("maps.directions"):
            try:
                response = self._client.directions(
                    origin=_latlng(origin),
                    destination=_latlng(destination),
                    mode=directions_mode,
                    avoid=self._avoid or None,
                    language=self._language,
                    region=self._region,
                )
            except (ApiError, Timeout, TransportError, ValueError) as exc:
                logger.warning("Directions request failed: %s", exc)
                raise PlanningError("Google Maps returned an error") from exc
        route = route_from_directions(response, directions_mode)
        logger.info(
            "Planned route: %d steps, %.0f m", len(route.steps), route.total_distance_m
        )
        return route


@lru_cache
def get_planner() -> GoogleDirectionsPlanner | None:
    """Return a cached planner, or ``None`` when no API key is configured."""

    settings = deps.get_settings()
    if not settings.google_maps_api_key:
        return None
    try:
        return GoogleDirectionsPlanner(settings)
    except (PlanningError, ValueError) as exc:
        logger.error("Failed to initialise Google Maps: %s", exc)
        return None
