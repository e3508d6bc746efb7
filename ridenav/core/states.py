"""Navigation lifecycle as a closed set of states and a pure transition function.

    Idle -> Loading -> Active <-> Paused
                         |  ^
                         v  |
                    Recalculating
    Active/Paused/Recalculating -> Arrived | Cancelled | Failed

Every state carries a ``generation``. Starting a route fetch bumps it, and a
route result whose generation differs from the current one is stale and is
ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

from ridenav.config import Settings
from ridenav.core import geo
from ridenav.core.errors import RecalculationError, StateTransitionError
from ridenav.core.models import Coordinate, Fix, ProgressSnapshot, RouteData, Session, SessionStatus


@dataclass(frozen=True)
class NavigationPolicy:
    off_route_debounce_fixes: int = 3
    arrival_threshold_m: float = 30.0
    max_retries: int = 3
    backoff_seconds: tuple[float, ...] = (2.0, 4.0, 8.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> NavigationPolicy:
        return cls(
            off_route_debounce_fixes=settings.off_route_debounce_fixes,
            arrival_threshold_m=settings.arrival_threshold_m,
            max_retries=settings.recalculation_max_retries,
            backoff_seconds=tuple(settings.recalculation_backoff_seconds),
        )

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds)) - 1]


@dataclass(frozen=True)
class RouteRequest:
    origin: Coordinate
    destination: Coordinate
    destination_name: str | None = None
    group_id: str | None = None
    mode: str = "driving"
    restore_session_id: str | None = None


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    generation: int = 0


@dataclass(frozen=True)
class Loading:
    request: RouteRequest
    generation: int = 0


@dataclass(frozen=True)
class Active:
    session: Session
    snapshot: ProgressSnapshot | None = None
    last_fix: Fix | None = None
    off_route_streak: int = 0
    generation: int = 0


@dataclass(frozen=True)
class Paused:
    session: Session
    snapshot: ProgressSnapshot | None = None
    last_fix: Fix | None = None
    generation: int = 0


@dataclass(frozen=True)
class Recalculating:
    session: Session
    snapshot: ProgressSnapshot | None = None
    last_fix: Fix | None = None
    attempt: int = 0
    generation: int = 0

    @property
    def reroute_origin(self) -> Coordinate:
        if self.last_fix is not None:
            return self.last_fix.coordinate
        if self.snapshot is not None:
            return self.snapshot.location
        return self.session.origin


@dataclass(frozen=True)
class Arrived:
    session: Session
    snapshot: ProgressSnapshot | None = None
    generation: int = 0


@dataclass(frozen=True)
class Cancelled:
    session_id: str | None = None
    generation: int = 0


@dataclass(frozen=True)
class Failed:
    error: Exception
    session: Session | None = None
    generation: int = 0


NavState = Union[Idle, Loading, Active, Paused, Recalculating, Arrived, Cancelled, Failed]

TERMINAL_STATES = (Arrived, Cancelled, Failed)


def state_name(state: NavState) -> str:
    return type(state).__name__.lower()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StartRequested:
    request: RouteRequest


@dataclass(frozen=True)
class SessionReady:
    generation: int
    session: Session
    snapshot: ProgressSnapshot | None = None


@dataclass(frozen=True)
class RerouteReady:
    generation: int
    route: RouteData
    snapshot: ProgressSnapshot | None = None


@dataclass(frozen=True)
class RouteFailed:
    generation: int
    error: Exception


@dataclass(frozen=True)
class PositionProcessed:
    fix: Fix
    snapshot: ProgressSnapshot | None = None


@dataclass(frozen=True)
class PauseRequested:
    pass


@dataclass(frozen=True)
class ResumeRequested:
    pass


@dataclass(frozen=True)
class RecalculateRequested:
    pass


@dataclass(frozen=True)
class EndRequested:
    completed: bool


@dataclass(frozen=True)
class Acknowledged:
    pass


NavEvent = Union[
    StartRequested, SessionReady, RerouteReady, RouteFailed, PositionProcessed,
    PauseRequested, ResumeRequested, RecalculateRequested, EndRequested, Acknowledged,
]


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------

def transition(state: NavState, event: NavEvent, policy: NavigationPolicy = NavigationPolicy()) -> NavState:
    """Return the state that follows ``state`` after ``event``.

    Raises StateTransitionError for operations the current state does not
    accept. Route results for another generation return ``state`` as is.
    """
    if isinstance(event, StartRequested):
        if isinstance(state, (Idle, Loading) + TERMINAL_STATES):
            return Loading(request=event.request, generation=state.generation + 1)
        raise StateTransitionError("start navigation", state_name(state))

    if isinstance(event, (SessionReady, RerouteReady, RouteFailed)):
        return _on_route_result(state, event, policy)

    if isinstance(event, PositionProcessed):
        return _on_position(state, event, policy)

    if isinstance(event, PauseRequested):
        if isinstance(state, Active):
            session = replace(state.session, status=SessionStatus.PAUSED)
            return Paused(session, state.snapshot, state.last_fix, generation=state.generation)
        raise StateTransitionError("pause", state_name(state))

    if isinstance(event, ResumeRequested):
        if isinstance(state, Paused):
            session = replace(state.session, status=SessionStatus.ACTIVE)
            return Active(session, state.snapshot, state.last_fix, generation=state.generation)
        raise StateTransitionError("resume", state_name(state))

    if isinstance(event, RecalculateRequested):
        if isinstance(state, (Active, Paused, Recalculating)):
            return _start_recalculation(state)
        raise StateTransitionError("recalculate", state_name(state))

    if isinstance(event, EndRequested):
        return _on_end(state, event)

    if isinstance(event, Acknowledged):
        if isinstance(state, TERMINAL_STATES):
            return Idle(generation=state.generation)
        raise StateTransitionError("acknowledge", state_name(state))

    raise TypeError(f"Unknown navigation event: {event!r}")


def _start_recalculation(state: Active | Paused | Recalculating) -> Recalculating:
    session = replace(state.session, status=SessionStatus.RECALCULATING)
    return Recalculating(
        session=session,
        snapshot=state.snapshot,
        last_fix=state.last_fix,
        attempt=0,
        generation=state.generation + 1,
    )


def _on_route_result(
    state: NavState,
    event: SessionReady | RerouteReady | RouteFailed,
    policy: NavigationPolicy,
) -> NavState:
    if not isinstance(state, (Loading, Recalculating)) or event.generation != state.generation:
        return state

    if isinstance(state, Loading):
        if isinstance(event, SessionReady):
            session = replace(event.session, status=SessionStatus.ACTIVE)
            return Active(session, event.snapshot, generation=state.generation)
        if isinstance(event, RouteFailed):
            return Failed(event.error, None, generation=state.generation)
        raise StateTransitionError("apply a reroute", state_name(state))

    # Recalculating
    if isinstance(event, RerouteReady):
        route = event.route
        session = replace(
            state.session,
            steps=route.steps,
            polyline=route.polyline,
            total_distance_m=route.total_distance_m,
            total_duration_s=route.total_duration_s,
            current_step_index=0,
            status=SessionStatus.ACTIVE,
        )
        return Active(session, event.snapshot, state.last_fix, generation=state.generation)
    if isinstance(event, RouteFailed):
        attempts = state.attempt + 1
        if state.attempt < policy.max_retries:
            return replace(state, attempt=attempts, generation=state.generation + 1)
        error = RecalculationError(
            f"Rerouting failed after {attempts} attempts: {event.error}",
            attempts=attempts,
            cause=event.error,
        )
        session = replace(state.session, status=SessionStatus.ERROR)
        return Failed(error, session, generation=state.generation)
    raise StateTransitionError("load a new session", state_name(state))


def _on_position(state: NavState, event: PositionProcessed, policy: NavigationPolicy) -> NavState:
    if isinstance(state, Recalculating):
        # Keep the freshest fix as the reroute origin
        return replace(state, last_fix=event.fix)
    if not isinstance(state, Active):
        raise StateTransitionError("process a position", state_name(state))
    snapshot = event.snapshot
    if snapshot is None:
        raise ValueError("Active navigation needs a progress snapshot for every fix")

    traveled = state.session.distance_traveled_m
    if state.last_fix is not None:
        traveled += geo.distance_m(state.last_fix.coordinate, event.fix.coordinate)
    session = replace(
        state.session,
        current_step_index=snapshot.step_index,
        distance_traveled_m=traveled,
    )

    on_last_step = snapshot.step_index >= len(session.steps) - 1
    if on_last_step and snapshot.distance_to_step_end_m < policy.arrival_threshold_m:
        return Arrived(
            replace(session, status=SessionStatus.ARRIVED),
            snapshot,
            generation=state.generation,
        )

    streak = state.off_route_streak + 1 if snapshot.off_route else 0
    active = Active(session, snapshot, event.fix, streak, generation=state.generation)
    if streak >= policy.off_route_debounce_fixes:
        return _start_recalculation(active)
    return active


def _on_end(state: NavState, event: EndRequested) -> NavState:
    if isinstance(state, Loading):
        if event.completed:
            raise StateTransitionError("complete navigation", state_name(state))
        return Cancelled(None, generation=state.generation + 1)
    if isinstance(state, (Active, Paused, Recalculating)):
        if event.completed:
            session = replace(state.session, status=SessionStatus.ARRIVED)
            return Arrived(session, state.snapshot, generation=state.generation + 1)
        return Cancelled(state.session.id, generation=state.generation + 1)
    raise StateTransitionError("end navigation", state_name(state))
