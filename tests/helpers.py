"""Route and fix builders shared by the navigation tests."""

from datetime import datetime, timedelta, timezone

from services.navigation.app.geodesy import distance_meters
from services.navigation.app.route import Coordinate, Route, Step
from services.navigation.app.session import LocationFix

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_step(
    start: Coordinate,
    end: Coordinate,
    duration_s: float = 20.0,
    instruction: str = "",
) -> Step:
    return Step(
        start=start,
        end=end,
        distance_m=distance_meters(start, end),
        duration_s=duration_s,
        instruction=instruction,
    )


def equator_route(
    count: int = 3, spacing_deg: float = 0.005, duration_s: float = 60.0
) -> Route:
    """Straight eastbound route along the equator."""

    points = [Coordinate(0.0, i * spacing_deg) for i in range(count + 1)]
    steps = [
        make_step(a, b, duration_s, instruction=f"Turn <b>right</b> onto Road {i + 1}")
        for i, (a, b) in enumerate(zip(points, points[1:]))
    ]
    return Route.from_steps(steps)


def fix_at(lon: float, seconds: float, lat: float = 0.0, speed_kmh: float = 30.0) -> LocationFix:
    return LocationFix(
        coordinate=Coordinate(lat, lon),
        timestamp=T0 + timedelta(seconds=seconds),
        speed_kmh=speed_kmh,
    )
