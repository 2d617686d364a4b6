from services.navigation.app.announcements import (
    AnnouncementTracker,
    EventKind,
    NavigationEvent,
    announcement_text,
    format_distance,
    format_duration,
    proximity_bucket,
)
from services.navigation.app.route import Route


def test_format_distance() -> None:
    assert format_distance(350.7) == "350 m"
    assert format_distance(1234) == "1.2 km"


def test_format_duration() -> None:
    assert format_duration(59) == "1 min"
    assert format_duration(12 * 60) == "12 min"
    assert format_duration(65 * 60) == "1 h 05 min"


def test_proximity_bucket_picks_smallest_matching() -> None:
    assert proximity_bucket(250, (200, 100)) is None
    assert proximity_bucket(150, (200, 100)) == 200
    assert proximity_bucket(80, (200, 100)) == 100


def test_step_is_announced_once(route: Route) -> None:
    tracker = AnnouncementTracker()
    event = tracker.step_advanced(1, route)
    assert event is not None
    assert event.instruction == "Turn right onto Road 2"
    assert tracker.step_advanced(1, route) is None


def test_each_bucket_fires_once_per_step(route: Route) -> None:
    tracker = AnnouncementTracker()
    first = tracker.proximity(0, 180, route)
    assert first is not None and first.bucket_m == 200
    assert tracker.proximity(0, 150, route) is None
    closer = tracker.proximity(0, 90, route)
    assert closer is not None and closer.bucket_m == 100
    assert tracker.proximity(0, 40, route) is None
    assert tracker.proximity(1, 150, route) is not None


def test_arrival_once_until_reset(route: Route) -> None:
    tracker = AnnouncementTracker()
    assert tracker.arrived() is not None
    assert tracker.arrived() is None
    tracker.step_advanced(0, route)
    tracker.reset()
    assert tracker.arrived() is not None
    assert tracker.step_advanced(0, route) is not None


def test_announcement_texts(route: Route) -> None:
    tracker = AnnouncementTracker()
    far = tracker.proximity(0, 180, route)
    near = tracker.proximity(0, 90, route)
    assert announcement_text(far, route) == "In 200 m, turn right onto Road 2"
    assert announcement_text(near, route) == "Prepare to turn right onto Road 2"
    assert (
        announcement_text(NavigationEvent(kind=EventKind.ARRIVED), route)
        == "You have arrived at your destination"
    )
    step = tracker.step_advanced(0, route)
    assert announcement_text(step, route) == "In 555 m, turn right onto Road 1"
