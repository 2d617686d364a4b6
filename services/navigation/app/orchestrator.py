"""Runtime driver for one navigation session.

The orchestrator is the only place where the session value is replaced. It
serializes commands and location fixes with an ``asyncio.Lock``, turns
accepted transitions into voice events and group progress updates, and asks
the route planner for a new route when the rider leaves the current one.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterable, Awaitable, Callable, Protocol

from src.common.logging import get_logger
from src.common.metrics import (
    ACTIVE_SESSIONS,
    FIX_PROCESSING_SECONDS,
    FIXES_PROCESSED,
    ROUTE_RECALCULATIONS,
)

from . import session as state
from .announcements import (
    DEFAULT_PROXIMITY_BUCKETS_M,
    AnnouncementTracker,
    EventKind,
    NavigationEvent,
    announcement_text,
)
from .planner import PlanningError, RoutePlanner
from .route import Coordinate
from .session import (
    DEFAULT_LIMITS,
    Advisory,
    LocationFix,
    NavigationSession,
    NavigationSnapshot,
    NavigationStatus,
    SessionLimits,
    Transition,
)
from .tracker import DEFAULT_CONFIG, TrackingConfig


class LocationSourceError(Exception):
    """The GPS source could not deliver a fix (permission, hardware, timeout)."""


class ErrorKind(str, Enum):
    PLANNING_FAILED = "planning_failed"
    LOCATION_UNAVAILABLE = "location_unavailable"
    LOCATION_LOST = "location_lost"


@dataclass(frozen=True)
class NavigationError:
    kind: ErrorKind
    message: str
    terminal: bool = False


@dataclass(frozen=True)
class NavigationUpdate:
    """What observers receive after every command or fix."""

    snapshot: NavigationSnapshot
    accepted: bool = True
    events: tuple[NavigationEvent, ...] = ()
    advisory: Advisory | None = None
    error: NavigationError | None = None


class ProgressPublisher(Protocol):
    async def publish_progress(
        self,
        session_id: str,
        group_session_id: str,
        step_index: int,
        location: Coordinate,
        eta_seconds: int,
        remaining_distance_m: float,
    ) -> None: ...


class AnnouncementSink(Protocol):
    async def announce(
        self, session_id: str, event: NavigationEvent, text: str
    ) -> None: ...


class SessionStore(Protocol):
    async def save(self, session: NavigationSession) -> None: ...


@dataclass(frozen=True)
class OrchestratorOptions:
    config: TrackingConfig = DEFAULT_CONFIG
    limits: SessionLimits = DEFAULT_LIMITS
    off_route_confirmations: int = 3
    auto_recalculate: bool = True
    publish_min_delta_m: float = 25.0
    location_timeout_s: float = 60.0
    # None disables the background location watchdog.
    location_check_interval_s: float | None = None
    proximity_buckets_m: tuple[int, ...] = DEFAULT_PROXIMITY_BUCKETS_M


DEFAULT_OPTIONS = OrchestratorOptions()


@dataclass
class _Published:
    step_index: int | None = None
    status: NavigationStatus | None = None
    remaining_distance_m: float | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NavigationOrchestrator:
    """Owns one :class:`NavigationSession` and its collaborators."""

    def __init__(
        self,
        session: NavigationSession,
        *,
        planner: RoutePlanner | None = None,
        publisher: ProgressPublisher | None = None,
        announcer: AnnouncementSink | None = None,
        store: SessionStore | None = None,
        options: OrchestratorOptions = DEFAULT_OPTIONS,
        service_name: str = "navigation",
        clock: Callable[[], datetime] = _utcnow,
        on_finished: Callable[[NavigationOrchestrator], Awaitable[None]] | None = None,
    ) -> None:
        self._session = session
        self._planner = planner
        self._publisher = publisher
        self._announcer = announcer
        self._store = store
        self._options = options
        self._service = service_name
        self._clock = clock
        self._on_finished = on_finished
        self._log = get_logger(__name__).bind(session_id=session.id)

        self._lock = asyncio.Lock()
        self._route_ready = asyncio.Event()
        self._route_ready.set()
        self._recalculations = 0
        self._queue: asyncio.Queue[LocationFix] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._watchdog: asyncio.Task[None] | None = None
        self._subscribers: list[asyncio.Queue[NavigationUpdate]] = []

        self._announcements = AnnouncementTracker(buckets=options.proximity_buckets_m)
        self._published = _Published()
        self._off_route_streak = 0
        self._last_fix_at: datetime | None = None
        # Last moment tracking (re)started: start, resume or a new route.
        self._tracking_since: datetime | None = None
        self._error: NavigationError | None = None
        self._counted_active = False

    # -- read side -----------------------------------------------------

    @property
    def session(self) -> NavigationSession:
        return self._session

    @property
    def error(self) -> NavigationError | None:
        return self._error

    def snapshot(self) -> NavigationSnapshot:
        snap = state.snapshot(self._session)
        # A single stray fix is not enough to tell observers we are lost.
        if snap.off_route and not self._off_route_confirmed:
            snap = dataclasses.replace(
                snap, status=NavigationStatus.NAVIGATING, off_route=False
            )
        return snap

    @property
    def _off_route_confirmed(self) -> bool:
        return self._off_route_streak >= self._options.off_route_confirmations

    def subscribe(self) -> asyncio.Queue[NavigationUpdate]:
        queue: asyncio.Queue[NavigationUpdate] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[NavigationUpdate]) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers.remove(queue)

    # -- commands ------------------------------------------------------

    async def start(self, now: datetime | None = None) -> NavigationUpdate:
        now = now or self._clock()
        async with self._lock:
            transition = state.start(self._session, now, self._options.config)
            events: list[NavigationEvent] = []
            if transition.accepted:
                self._track_active(True)
                self._tracking_since = now
                self._start_watchdog()
                first = self._announcements.step_advanced(0, transition.session.route)
                if first is not None:
                    events.append(first)
                self._log.info(
                    "navigation.started",
                    steps=len(transition.session.route.steps),
                    distance_m=transition.session.route.total_distance_m,
                )
            return await self._commit(transition, events, now=now)

    async def pause(self, now: datetime | None = None) -> NavigationUpdate:
        async with self._lock:
            transition = state.pause(self._session, now or self._clock())
            if transition.accepted:
                self._log.info("navigation.paused")
            return await self._commit(transition)

    async def resume(self, now: datetime | None = None) -> NavigationUpdate:
        now = now or self._clock()
        async with self._lock:
            transition = state.resume(self._session, now)
            if transition.accepted:
                self._off_route_streak = 0
                self._tracking_since = now
                self._log.info("navigation.resumed")
            return await self._commit(transition)

    async def stop(self, now: datetime | None = None) -> NavigationUpdate:
        async with self._lock:
            transition = state.stop(self._session, now or self._clock())
            if transition.accepted:
                self._log.info(
                    "navigation.stopped",
                    distance_traveled_m=transition.session.distance_traveled_m,
                )
            update = await self._commit(transition)
        await self._cancel_consumer()
        await self._cancel_watchdog()
        return update

    async def recalculate(
        self, origin: Coordinate | None = None, now: datetime | None = None
    ) -> NavigationUpdate:
        """Plan a new route from ``origin`` (default: last fix) to the destination.

        The planner runs outside the lock. Fixes submitted meanwhile stay
        queued and are applied to the new route once it is installed.
        """

        current = self._session
        if current.status not in (NavigationStatus.NAVIGATING, NavigationStatus.PAUSED):
            return self._reject(state.recalculate(current, current.route, now))
        if self._planner is None:
            return await self._fail_planning("no route planner configured")

        origin = origin or current.last_location or current.route.origin
        destination = current.route.destination
        self._recalculations += 1
        self._route_ready.clear()
        try:
            self._log.info("navigation.recalculating", origin=origin.to_dict())
            try:
                new_route = await asyncio.to_thread(
                    self._planner.compute_route, origin, destination, current.route.mode
                )
            except PlanningError as exc:
                ROUTE_RECALCULATIONS.labels(self._service, "failed").inc()
                self._log.warning("navigation.recalculation_failed", error=str(exc))
                return await self._fail_planning(str(exc))

            async with self._lock:
                # A stop issued while planning wins: the state machine rejects it.
                now = now or self._clock()
                transition = state.recalculate(
                    self._session, new_route, now, self._options.config
                )
                if not transition.accepted:
                    ROUTE_RECALCULATIONS.labels(self._service, "discarded").inc()
                    return self._reject(transition)
                ROUTE_RECALCULATIONS.labels(self._service, "succeeded").inc()
                self._announcements.reset()
                self._off_route_streak = 0
                self._tracking_since = now
                self._published = _Published()
                if self._error and self._error.kind is ErrorKind.PLANNING_FAILED:
                    self._error = None
                events = [NavigationEvent(kind=EventKind.ROUTE_RECALCULATED)]
                first = self._announcements.step_advanced(0, new_route)
                if first is not None:
                    events.append(first)
                self._log.info(
                    "navigation.recalculated",
                    steps=len(new_route.steps),
                    distance_m=new_route.total_distance_m,
                )
                return await self._commit(transition, events, force_publish=True, now=now)
        finally:
            # Queued fixes wait for the last overlapping recalculation.
            self._recalculations -= 1
            if not self._recalculations:
                self._route_ready.set()

    # -- location fixes --------------------------------------------------

    async def process_fix(self, fix: LocationFix) -> NavigationUpdate:
        """Apply one fix; triggers recalculation after confirmed off-route."""

        await self._route_ready.wait()
        started = time.perf_counter()
        needs_recalculation = False
        async with self._lock:
            current = self._session
            if self._last_fix_at is not None and fix.timestamp <= self._last_fix_at:
                FIXES_PROCESSED.labels(self._service, "dropped").inc()
                return self._reject(
                    state.Transition(current, False, Advisory.OUT_OF_ORDER_FIX)
                )

            transition = state.apply_fix(
                current, fix, self._options.config, self._options.limits
            )
            result = "accepted" if transition.accepted else transition.advisory.value
            FIXES_PROCESSED.labels(self._service, result).inc()
            if not transition.accepted:
                if transition.advisory is not Advisory.NOT_NAVIGATING:
                    self._log.debug("navigation.fix_rejected", advisory=result)
                return self._reject(transition)

            self._last_fix_at = fix.timestamp
            if self._error is not None and self._error.kind is not ErrorKind.PLANNING_FAILED:
                self._error = None
            events = self._events_for(transition)
            new = transition.session
            if new.off_route:
                self._off_route_streak += 1
                if self._off_route_streak == self._options.off_route_confirmations:
                    events.append(NavigationEvent(kind=EventKind.OFF_ROUTE))
                    self._log.info("navigation.off_route", location=fix.coordinate.to_dict())
                    needs_recalculation = (
                        self._options.auto_recalculate and self._planner is not None
                    )
            else:
                self._off_route_streak = 0
            if new.status is NavigationStatus.COMPLETED:
                self._log.info(
                    "navigation.arrived",
                    distance_traveled_m=new.distance_traveled_m,
                    elapsed_s=new.elapsed_s,
                )
            update = await self._commit(transition, events, now=fix.timestamp)
        FIX_PROCESSING_SECONDS.labels(self._service).observe(time.perf_counter() - started)

        if needs_recalculation:
            return await self.recalculate(fix.coordinate, now=fix.timestamp)
        return update

    async def submit(self, fix: LocationFix) -> None:
        """Queue a fix for the background consumer."""

        if self._session.status.is_terminal:
            return
        self._ensure_consumer()
        await self._queue.put(fix)

    async def consume(self, stream: AsyncIterable[Any]) -> None:
        """Feed fixes from an async location stream until it ends or stops."""

        try:
            async for item in stream:
                if self._session.status.is_terminal:
                    break
                if isinstance(item, LocationSourceError):
                    await self.report_location_error(item)
                    continue
                await self.process_fix(item)
        except LocationSourceError as exc:
            await self.report_location_error(exc)

    async def report_location_error(
        self, error: Exception, now: datetime | None = None
    ) -> NavigationUpdate:
        """Record a GPS failure; a long enough outage becomes terminal."""

        async with self._lock:
            self._log.warning("navigation.location_error", error=str(error))
            self._error = NavigationError(
                kind=ErrorKind.LOCATION_UNAVAILABLE, message=str(error)
            )
            self._check_location_timeout(now or self._clock())
            update = NavigationUpdate(snapshot=self.snapshot(), error=self._error)
            self._notify(update)
            return update

    async def check_location(self, now: datetime | None = None) -> NavigationError | None:
        async with self._lock:
            before = self._error
            self._check_location_timeout(now or self._clock())
            if self._error is not before:
                self._notify(NavigationUpdate(snapshot=self.snapshot(), error=self._error))
            return self._error

    async def drain(self) -> None:
        """Wait until every queued fix has been processed."""

        await self._queue.join()

    async def close(self) -> None:
        await self._cancel_consumer()
        await self._cancel_watchdog()
        self._track_active(False)
        self._subscribers.clear()

    # -- internals -------------------------------------------------------

    def _check_location_timeout(self, now: datetime) -> None:
        session = self._session
        if session.status is not NavigationStatus.NAVIGATING:
            return
        if self._error is not None and self._error.kind is ErrorKind.LOCATION_LOST:
            return
        # Time spent paused is not an outage.
        candidates = [
            moment
            for moment in (session.last_fix_at, self._tracking_since, session.started_at)
            if moment is not None
        ]
        if not candidates:
            return
        reference = max(candidates)
        silent_for = (now - reference).total_seconds()
        if silent_for >= self._options.location_timeout_s:
            self._error = NavigationError(
                kind=ErrorKind.LOCATION_LOST,
                message=f"no location fix for {int(silent_for)} s",
                terminal=True,
            )
            self._log.error("navigation.location_lost", silent_for_s=silent_for)

    def _events_for(self, transition: Transition) -> list[NavigationEvent]:
        new = transition.session
        route = new.route
        events: list[NavigationEvent] = []
        if transition.step_changed:
            advanced = self._announcements.step_advanced(new.current_step_index, route)
            if advanced is not None:
                events.append(advanced)
        progress = new.progress
        if (
            progress is not None
            and progress.near_next_turn
            and not new.off_route
            and new.status is NavigationStatus.NAVIGATING
        ):
            alert = self._announcements.proximity(
                new.current_step_index, progress.distance_to_step_end_m, route
            )
            if alert is not None:
                events.append(alert)
        if new.status is NavigationStatus.COMPLETED:
            arrived = self._announcements.arrived()
            if arrived is not None:
                events.append(arrived)
        return events

    def _reject(self, transition: Transition) -> NavigationUpdate:
        return NavigationUpdate(
            snapshot=self.snapshot(),
            accepted=False,
            advisory=transition.advisory,
            error=self._error,
        )

    async def _fail_planning(self, message: str) -> NavigationUpdate:
        async with self._lock:
            # A fresh run of off-route confirmations retries the planner.
            self._off_route_streak = 0
            self._error = NavigationError(kind=ErrorKind.PLANNING_FAILED, message=message)
            update = NavigationUpdate(
                snapshot=self.snapshot(), accepted=False, error=self._error
            )
            self._notify(update)
            return update

    async def _commit(
        self,
        transition: Transition,
        events: list[NavigationEvent] | None = None,
        *,
        force_publish: bool = False,
        now: datetime | None = None,
    ) -> NavigationUpdate:
        if not transition.accepted:
            return self._reject(transition)

        previous = self._session
        self._session = transition.session
        if self._session.status.is_terminal:
            self._track_active(False)
        status_changed = previous.status is not self._session.status
        if status_changed or transition.step_changed or force_publish:
            await self._save()
        await self._publish(now or self._clock(), force=force_publish)
        for event in events or ():
            await self._announce(event)

        update = NavigationUpdate(
            snapshot=self.snapshot(), events=tuple(events or ()), error=self._error
        )
        self._notify(update)
        if status_changed and self._session.status.is_terminal:
            await self._finished()
        return update

    async def _finished(self) -> None:
        if self._on_finished is None:
            return
        try:
            await self._on_finished(self)
        except Exception:  # noqa: BLE001
            self._log.exception("navigation.finish_hook_failed")

    async def _publish(self, now: datetime, *, force: bool) -> None:
        session = self._session
        progress = session.progress
        if (
            self._publisher is None
            or session.group_session_id is None
            or progress is None
        ):
            return
        last = self._published
        meaningful = (
            force
            or last.step_index != session.current_step_index
            or last.status is not session.effective_status
            or last.remaining_distance_m is None
            or abs(last.remaining_distance_m - progress.remaining_distance_m)
            >= self._options.publish_min_delta_m
        )
        if not meaningful:
            return
        location = session.last_location or session.route.origin
        eta_seconds = max(0, round((progress.eta - now).total_seconds()))
        try:
            await self._publisher.publish_progress(
                session.id,
                session.group_session_id,
                session.current_step_index,
                location,
                eta_seconds,
                progress.remaining_distance_m,
            )
        except Exception:  # noqa: BLE001
            self._log.exception("navigation.publish_failed")
            return
        self._published = _Published(
            step_index=session.current_step_index,
            status=session.effective_status,
            remaining_distance_m=progress.remaining_distance_m,
        )

    async def _announce(self, event: NavigationEvent) -> None:
        if self._announcer is None:
            return
        text = announcement_text(event, self._session.route)
        try:
            await self._announcer.announce(self._session.id, event, text)
        except Exception:  # noqa: BLE001
            self._log.exception("navigation.announce_failed", navigation_event=event.kind.value)

    async def _save(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(self._session)
        except Exception:  # noqa: BLE001
            self._log.exception("navigation.save_failed")

    def _notify(self, update: NavigationUpdate) -> None:
        for queue in self._subscribers:
            queue.put_nowait(update)

    def _track_active(self, active: bool) -> None:
        if active and not self._counted_active:
            ACTIVE_SESSIONS.labels(self._service).inc()
            self._counted_active = True
        elif not active and self._counted_active:
            ACTIVE_SESSIONS.labels(self._service).dec()
            self._counted_active = False

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume_queue())

    async def _consume_queue(self) -> None:
        while not self._session.status.is_terminal:
            fix = await self._queue.get()
            try:
                await self.process_fix(fix)
            except Exception:  # noqa: BLE001
                self._log.exception("navigation.fix_failed")
            finally:
                self._queue.task_done()
        self._discard_queued()

    async def _cancel_consumer(self) -> None:
        task = self._consumer
        self._consumer = None
        await _cancel(task)
        self._discard_queued()

    def _discard_queued(self) -> None:
        # Anything still queued will never be processed.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    def _start_watchdog(self) -> None:
        interval = self._options.location_check_interval_s
        if interval is None or self._watchdog is not None:
            return
        self._watchdog = asyncio.create_task(self._watch_location(interval))

    async def _watch_location(self, interval_s: float) -> None:
        while not self._session.status.is_terminal:
            await asyncio.sleep(interval_s)
            try:
                await self.check_location()
            except Exception:  # noqa: BLE001
                self._log.exception("navigation.location_check_failed")

    async def _cancel_watchdog(self) -> None:
        task = self._watchdog
        self._watchdog = None
        await _cancel(task)


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is None or task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
