from datetime import datetime

import pytest

from helpers import T0, equator_route, fix_at

from services.navigation.app import session as nav
from services.navigation.app.route import Coordinate, Route, RouteInvariantError
from services.navigation.app.session import Advisory, LocationFix, NavigationStatus


def _started(route: Route) -> nav.NavigationSession:
    return nav.start(nav.plan_session(route, user_id="u1"), T0).session


def test_plan_requires_a_route() -> None:
    with pytest.raises(RouteInvariantError):
        nav.plan_session(None)  # type: ignore[arg-type]


def test_start_moves_to_navigating(route: Route) -> None:
    planned = nav.plan_session(route, user_id="u1", group_session_id="g1")
    assert planned.status is NavigationStatus.PLANNING
    transition = nav.start(planned, T0)
    session = transition.session
    assert transition.accepted
    assert session.status is NavigationStatus.NAVIGATING
    assert session.started_at == T0
    assert session.current_step_index == 0
    assert session.progress is not None
    assert session.progress.remaining_distance_m == pytest.approx(route.total_distance_m)


def test_start_twice_is_illegal(route: Route) -> None:
    transition = nav.start(_started(route), T0)
    assert not transition.accepted
    assert transition.advisory is Advisory.ILLEGAL_TRANSITION


def test_fix_before_start_is_ignored(route: Route) -> None:
    planned = nav.plan_session(route)
    transition = nav.apply_fix(planned, fix_at(0.001, 1))
    assert transition.advisory is Advisory.NOT_NAVIGATING
    assert transition.session is planned


def test_fixes_accumulate_distance_and_time(route: Route) -> None:
    session = _started(route)
    session = nav.apply_fix(session, fix_at(0.001, 10)).session
    transition = nav.apply_fix(session, fix_at(0.002, 20))
    session = transition.session
    assert transition.accepted
    assert session.distance_traveled_m == pytest.approx(111.2, abs=0.5)
    assert session.elapsed_s == 10
    assert session.last_location == Coordinate(0, 0.002)


def test_out_of_order_fix_is_rejected(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.001, 10)).session
    transition = nav.apply_fix(session, fix_at(0.0005, 5))
    assert transition.advisory is Advisory.OUT_OF_ORDER_FIX
    assert transition.session is session


def test_naive_timestamp_is_invalid(route: Route) -> None:
    fix = LocationFix(Coordinate(0, 0.001), datetime(2024, 6, 1, 12, 0, 10))
    transition = nav.apply_fix(_started(route), fix)
    assert transition.advisory is Advisory.INVALID_FIX


def test_implausible_jump_is_rejected(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.0, 1)).session
    transition = nav.apply_fix(session, fix_at(0.014, 2))
    assert transition.advisory is Advisory.IMPLAUSIBLE_JUMP


def test_fix_far_from_route_is_unmapped(route: Route) -> None:
    transition = nav.apply_fix(_started(route), fix_at(0.001, 1, lat=1.0))
    assert transition.advisory is Advisory.UNMAPPED_FIX


def test_off_route_is_a_flag_not_a_status(route: Route) -> None:
    session = _started(route)
    session = nav.apply_fix(session, fix_at(0.002, 10, lat=0.0006)).session
    assert session.off_route
    assert session.status is NavigationStatus.NAVIGATING
    assert session.effective_status is NavigationStatus.OFF_ROUTE
    session = nav.apply_fix(session, fix_at(0.0025, 20)).session
    assert session.effective_status is NavigationStatus.NAVIGATING


def test_arrival_completes_session(two_step_route: Route) -> None:
    session = _started(two_step_route)
    transition = nav.apply_fix(session, fix_at(0.0015, 10))
    assert transition.step_changed
    session = transition.session
    assert session.current_step_index == 1
    session = nav.apply_fix(session, fix_at(0.00199, 20)).session
    assert session.status is NavigationStatus.COMPLETED
    assert session.ended_at == fix_at(0, 20).timestamp

    after = nav.apply_fix(session, fix_at(0.002, 30))
    assert after.advisory is Advisory.SESSION_CLOSED


def test_pause_resume_keeps_progress(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.003, 20)).session
    paused = nav.pause(session).session
    assert paused.status is NavigationStatus.PAUSED
    assert nav.apply_fix(paused, fix_at(0.004, 30)).advisory is Advisory.NOT_NAVIGATING
    resumed = nav.resume(paused).session
    assert resumed.status is NavigationStatus.NAVIGATING
    assert resumed.current_step_index == session.current_step_index
    assert resumed.distance_traveled_m == session.distance_traveled_m
    assert resumed.route is session.route


def test_distance_ridden_while_paused_is_not_counted(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.001, 10)).session
    before = session.distance_traveled_m
    session = nav.resume(nav.pause(session).session).session
    session = nav.apply_fix(session, fix_at(0.004, 600)).session
    assert session.distance_traveled_m == before
    assert session.elapsed_s == 0
    session = nav.apply_fix(session, fix_at(0.0045, 610)).session
    assert session.distance_traveled_m == pytest.approx(before + 55.6, abs=0.5)


def test_illegal_pause_and_resume(route: Route) -> None:
    planned = nav.plan_session(route)
    assert nav.pause(planned).advisory is Advisory.ILLEGAL_TRANSITION
    assert nav.resume(_started(route)).advisory is Advisory.ILLEGAL_TRANSITION


def test_stop_from_any_live_state(route: Route) -> None:
    for session in (
        nav.plan_session(route),
        _started(route),
        nav.pause(_started(route)).session,
    ):
        stopped = nav.stop(session, T0).session
        assert stopped.status is NavigationStatus.CANCELLED
        assert stopped.ended_at == T0
        assert nav.stop(stopped).advisory is Advisory.SESSION_CLOSED


def test_recalculation_keeps_journey_counters(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.001, 10)).session
    session = nav.apply_fix(session, fix_at(0.006, 40)).session
    assert session.current_step_index == 1
    new_route = equator_route(count=2, spacing_deg=0.004)
    transition = nav.recalculate(session, new_route, T0)
    recalculated = transition.session
    assert transition.accepted
    assert recalculated.route is new_route
    assert recalculated.current_step_index == 0
    assert recalculated.distance_traveled_m == session.distance_traveled_m
    assert recalculated.elapsed_s == session.elapsed_s
    assert not recalculated.off_route


def test_recalculation_after_stop_is_rejected(route: Route) -> None:
    stopped = nav.stop(_started(route)).session
    transition = nav.recalculate(stopped, equator_route(count=1))
    assert transition.advisory is Advisory.SESSION_CLOSED
    assert transition.session.route is route


def test_snapshot_reports_progress(route: Route) -> None:
    session = nav.apply_fix(_started(route), fix_at(0.0045, 30)).session
    snap = nav.snapshot(session)
    assert snap.session_id == session.id
    assert snap.status is NavigationStatus.NAVIGATING
    assert snap.step_count == 3
    assert snap.current_step is route.steps[0]
    assert snap.next_step is route.steps[1]
    assert snap.distance_to_step_end_m == pytest.approx(55.6, abs=0.5)
    assert snap.user_id == "u1"
