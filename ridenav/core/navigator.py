"""Navigation engine: runs the state machine and drives its collaborators.

All messages (fixes, lifecycle requests, route results) are applied one at a
time under a single asyncio.Lock. Route fetches run as tasks outside the lock
and report back with the generation they were started for.
"""

import asyncio
import datetime
import logging
import uuid
from typing import Callable

from ridenav.config import settings
from ridenav.core.collaborators import DirectionsProvider, LocationProvider, NavigationObserver, SessionStore
from ridenav.core.errors import RouteFetchError, SessionStoreError
from ridenav.core.eta_calculator import EtaCalculator
from ridenav.core.models import Coordinate, Fix, ProgressSnapshot, RouteData, Session, SessionStatus
from ridenav.core.progress_tracker import ProgressTracker
from ridenav.core.states import (
    Acknowledged,
    Active,
    Arrived,
    EndRequested,
    Failed,
    Loading,
    NavEvent,
    NavigationPolicy,
    NavState,
    PauseRequested,
    PositionProcessed,
    Recalculating,
    RecalculateRequested,
    RerouteReady,
    ResumeRequested,
    RouteFailed,
    RouteRequest,
    SessionReady,
    StartRequested,
    Idle,
    state_name,
    transition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _check_route(route: RouteData) -> RouteData:
    if not route.steps:
        raise RouteFetchError("Directions provider returned a route with no steps", status="ZERO_RESULTS")
    return route


class NavigationEngine:
    """Single-writer owner of the current navigation session."""

    def __init__(
        self,
        directions: DirectionsProvider,
        location: LocationProvider,
        store: SessionStore | None = None,
        tracker: ProgressTracker | None = None,
        eta_calculator: EtaCalculator | None = None,
        policy: NavigationPolicy | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.directions = directions
        self.location = location
        self.store = store
        self.tracker = tracker or ProgressTracker()
        self.eta_calculator = eta_calculator or EtaCalculator(clock)
        self.policy = policy or NavigationPolicy.from_settings(settings)
        self._clock = clock

        self._state: NavState = Idle()
        self._lock = asyncio.Lock()
        self._fetch_task: asyncio.Task | None = None
        self._consuming = False
        self._observers: list[NavigationObserver] = []

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> NavState:
        return self._state

    @property
    def session(self) -> Session | None:
        return getattr(self._state, "session", None)

    @property
    def snapshot(self) -> ProgressSnapshot | None:
        return getattr(self._state, "snapshot", None)

    @property
    def is_consuming(self) -> bool:
        return self._consuming

    def subscribe(self, observer: NavigationObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: NavigationObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(
        self,
        origin: Coordinate,
        destination: Coordinate,
        destination_name: str | None = None,
        group_id: str | None = None,
        mode: str = "driving",
    ) -> Session | None:
        """Fetch a route and begin tracking.

        Returns the new session, or None if a newer start superseded this
        one while its route was in flight. Raises RouteFetchError if the
        route could not be fetched (the engine is then in Failed).
        """
        request = RouteRequest(origin, destination, destination_name, group_id, mode)
        async with self._lock:
            self._apply(StartRequested(request))
            generation = self._state.generation
            self._cancel_fetch()
            task = asyncio.create_task(self._fetch_route(origin, destination, mode))
            self._fetch_task = task
        logger.info("Navigation requested: %s -> %s (%s)", origin, destination, mode)
        await self._notify()
        return await self._finish_loading(task, generation, request)

    async def restore(self, session_id: str) -> Session | None:
        """Reload a persisted session and continue at its stored step."""
        if self.store is None:
            raise SessionStoreError("No session store configured")
        async with self._lock:
            current = self._state
            request = RouteRequest(
                Coordinate(0.0, 0.0), Coordinate(0.0, 0.0), restore_session_id=session_id,
            )
            self._apply(StartRequested(request))
            generation = self._state.generation
            self._cancel_fetch()
            task = asyncio.create_task(self.store.load(session_id))
            self._fetch_task = task
        logger.info("Restoring navigation session %s (was %s)", session_id, state_name(current))
        await self._notify()
        return await self._finish_loading(task, generation, request)

    async def resume_active(self) -> Session | None:
        """Restore whatever session the store reports as still running."""
        if self.store is None:
            return None
        try:
            active = await self.store.get_active()
        except Exception:
            logger.exception("Failed to look up active navigation session")
            return None
        if active is None:
            return None
        return await self.restore(active.id)

    async def pause(self) -> None:
        async with self._lock:
            self._apply(PauseRequested())
            await self._stop_stream()
            session, snapshot = self._state.session, self._state.snapshot
            await self._persist("update_status", session.id, SessionStatus.PAUSED)
            if snapshot is not None:
                await self._persist("save_progress", session.id, snapshot, session.distance_traveled_m)
        logger.info("Navigation paused at step %d", session.current_step_index)
        await self._notify()

    async def resume(self) -> None:
        async with self._lock:
            self._apply(ResumeRequested())
            session = self._state.session
            await self._persist("update_status", session.id, SessionStatus.ACTIVE)
            await self._start_stream()
        logger.info("Navigation resumed at step %d", session.current_step_index)
        await self._notify()

    async def recalculate(self) -> None:
        """Ask for a new route from the last known position."""
        async with self._lock:
            self._apply(RecalculateRequested())
            self._begin_reroute()
        await self._notify()

    async def end(self, completed: bool) -> None:
        """Stop navigating: Arrived if ``completed`` else Cancelled."""
        async with self._lock:
            session = self.session
            self._apply(EndRequested(completed))
            self._cancel_fetch()
            await self._stop_stream()
            if session is not None:
                status = SessionStatus.ARRIVED if completed else SessionStatus.CANCELLED
                await self._persist("update_status", session.id, status)
                await self._persist("delete_progress", session.id)
        logger.info("Navigation ended (%s)", state_name(self._state))
        await self._notify()

    async def acknowledge(self) -> None:
        """Release a finished session and return to Idle."""
        async with self._lock:
            self._apply(Acknowledged())
        await self._notify()

    async def wait_for_route(self) -> None:
        """Wait until no route fetch (start or reroute) is pending."""
        while self._fetch_task is not None and not self._fetch_task.done():
            await asyncio.wait([self._fetch_task])

    async def close(self) -> None:
        async with self._lock:
            self._cancel_fetch()
            await self._stop_stream()

    # ------------------------------------------------------------------
    # Position updates (LocationProvider callback)
    # ------------------------------------------------------------------

    async def update_position(self, fix: Fix) -> None:
        async with self._lock:
            if not self._consuming:
                logger.debug("Dropping fix received after the stream was stopped")
                return
            state = self._state
            if isinstance(state, Recalculating):
                self._state = transition(state, PositionProcessed(fix), self.policy)
                return
            if not isinstance(state, Active):
                logger.debug("Ignoring fix while %s", state_name(state))
                return

            session = state.session
            snapshot = self.tracker.build_snapshot(
                fix, session.steps, session.current_step_index, self.eta_calculator,
            )
            new_state = self._apply(PositionProcessed(fix, snapshot))

            if snapshot.step_index != session.current_step_index:
                logger.info("Advanced to step %d/%d", snapshot.step_index + 1, len(session.steps))

            if isinstance(new_state, Arrived):
                logger.info("Arrived at destination of session %s", session.id)
                await self._stop_stream()
                await self._persist("update_status", session.id, SessionStatus.ARRIVED)
                await self._persist("delete_progress", session.id)
            elif isinstance(new_state, Recalculating):
                logger.warning(
                    "Off route for %d consecutive fixes, recalculating", state.off_route_streak + 1,
                )
                await self._persist("update_status", session.id, SessionStatus.RECALCULATING)
                self._begin_reroute()
        await self._notify()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(self, event: NavEvent) -> NavState:
        self._state = transition(self._state, event, self.policy)
        return self._state

    async def _fetch_route(self, origin: Coordinate, destination: Coordinate, mode: str) -> RouteData:
        return _check_route(await self.directions.fetch_route(origin, destination, mode))

    def _cancel_fetch(self) -> None:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    async def _finish_loading(self, task: asyncio.Task, generation: int, request: RouteRequest) -> Session | None:
        await asyncio.wait([task])
        if task.cancelled():
            logger.info("Route request %d superseded", generation)
            return None

        error = task.exception()
        async with self._lock:
            if not isinstance(self._state, Loading) or self._state.generation != generation:
                logger.info("Discarding stale route result for request %d", generation)
                return None
            if self._fetch_task is task:
                self._fetch_task = None

            if error is None and task.result() is None:
                error = SessionStoreError(f"Navigation session {request.restore_session_id} not found")
            if error is not None:
                if not isinstance(error, (RouteFetchError, SessionStoreError)):
                    error = RouteFetchError(f"Failed to fetch route: {error}")
                self._apply(RouteFailed(generation, error))
                logger.error("Could not start navigation: %s", error)
            else:
                session = self._build_session(task.result(), request)
                snapshot = self.tracker.snapshot_at(
                    Fix(session.origin), session.steps, session.current_step_index, self.eta_calculator,
                )
                self._apply(SessionReady(generation, session, snapshot))
                session = self.session
                if request.restore_session_id is None:
                    await self._persist("save", session)
                else:
                    await self._persist("update_status", session.id, SessionStatus.ACTIVE)
                await self._start_stream()
                logger.info(
                    "Navigation session %s active: %d steps, %.0f m",
                    session.id, len(session.steps), session.total_distance_m,
                )

        await self._notify()
        if error is not None:
            raise error
        return session

    def _build_session(self, result: RouteData | Session, request: RouteRequest) -> Session:
        if isinstance(result, Session):
            return result
        now = self._clock()
        return Session(
            id=str(uuid.uuid4()),
            origin=request.origin,
            destination=request.destination,
            steps=result.steps,
            polyline=result.polyline,
            total_distance_m=result.total_distance_m,
            total_duration_s=result.total_duration_s,
            created_at=now,
            started_at=now,
            destination_name=request.destination_name,
            group_id=request.group_id,
            mode=request.mode,
        )

    def _begin_reroute(self) -> None:
        """Launch the reroute loop for the current Recalculating state. Lock held."""
        self._cancel_fetch()
        self._fetch_task = asyncio.create_task(self._reroute(self._state.generation))

    async def _reroute(self, generation: int) -> None:
        while True:
            state = self._state
            if not isinstance(state, Recalculating) or state.generation != generation:
                return
            session = state.session
            error: Exception | None = None
            route: RouteData | None = None
            try:
                route = await self._fetch_route(state.reroute_origin, session.destination, session.mode)
            except Exception as e:
                error = e

            async with self._lock:
                current = self._state
                if not isinstance(current, Recalculating) or current.generation != generation:
                    logger.info("Discarding stale reroute result for request %d", generation)
                    return
                if route is not None:
                    snapshot = self.tracker.snapshot_at(
                        Fix(current.reroute_origin), route.steps, 0, self.eta_calculator,
                    )
                    new_state = self._apply(RerouteReady(generation, route, snapshot))
                else:
                    logger.warning(
                        "Reroute attempt %d/%d failed: %s",
                        current.attempt + 1, self.policy.max_retries + 1, error,
                    )
                    new_state = self._apply(RouteFailed(generation, error))

                if isinstance(new_state, Active):
                    logger.info("Rerouted: %d steps, %.0f m", len(new_state.session.steps), new_state.session.total_distance_m)
                    await self._persist("save", new_state.session)
                    if new_state.snapshot is not None:
                        await self._persist(
                            "save_progress", new_state.session.id, new_state.snapshot,
                            new_state.session.distance_traveled_m,
                        )
                    # A reroute requested while paused finds the stream stopped
                    await self._start_stream()
                elif isinstance(new_state, Failed):
                    logger.error("Giving up on rerouting: %s", new_state.error)
                    await self._stop_stream()
                    await self._persist("update_status", session.id, SessionStatus.ERROR)
                else:
                    generation = new_state.generation
                    delay = self.policy.backoff_for(new_state.attempt)

            await self._notify()
            if not isinstance(new_state, Recalculating):
                return
            await asyncio.sleep(delay)

    async def _start_stream(self) -> None:
        if self._consuming:
            return
        self._consuming = True
        try:
            await self.location.start(self.update_position)
        except Exception:
            self._consuming = False
            logger.exception("Failed to start location updates")

    async def _stop_stream(self) -> None:
        if not self._consuming:
            return
        self._consuming = False
        try:
            await self.location.stop()
        except Exception:
            logger.exception("Failed to stop location updates")

    async def _persist(self, method: str, *args) -> None:
        if self.store is None:
            return
        try:
            await getattr(self.store, method)(*args)
        except Exception:
            logger.exception("Session store %s failed", method)

    async def _notify(self) -> None:
        state = self._state
        for observer in list(self._observers):
            try:
                await observer.on_update(state)
            except Exception:
                logger.exception("Navigation observer %r failed", observer)
