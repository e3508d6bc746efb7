"""Tests for the pure navigation state machine."""

import datetime

import pytest

from ridenav.core.errors import RecalculationError, RouteFetchError, StateTransitionError
from ridenav.core.eta_calculator import EtaCalculator
from ridenav.core.models import Fix, Session, SessionStatus
from ridenav.core.progress_tracker import ProgressTracker
from ridenav.core.states import (
    Acknowledged,
    Active,
    Arrived,
    Cancelled,
    EndRequested,
    Failed,
    Idle,
    Loading,
    NavigationPolicy,
    Paused,
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
    transition,
)

from route_fixtures import NOW, detour_route, fixed_clock, point, three_step_route

POLICY = NavigationPolicy()


def _session() -> Session:
    route = three_step_route()
    return Session(
        id="s-1",
        origin=point(0, 0),
        destination=point(3000, 2000),
        steps=route.steps,
        polyline=route.polyline,
        total_distance_m=route.total_distance_m,
        total_duration_s=route.total_duration_s,
        created_at=NOW,
    )


def _snapshot(session, p, index=0):
    return ProgressTracker().build_snapshot(Fix(p), session.steps, index, EtaCalculator(fixed_clock))


def _active(generation=1) -> Active:
    session = _session()
    return transition(
        Loading(RouteRequest(session.origin, session.destination), generation),
        SessionReady(generation, session, _snapshot(session, point(0, 0))),
    )


def test_start_from_idle_bumps_generation():
    state = transition(Idle(), StartRequested(RouteRequest(point(0, 0), point(1, 1))))
    assert isinstance(state, Loading)
    assert state.generation == 1


def test_session_ready_activates():
    state = _active()
    assert isinstance(state, Active)
    assert state.session.status is SessionStatus.ACTIVE
    assert state.session.current_step_index == 0


def test_stale_route_result_is_ignored():
    loading = Loading(RouteRequest(point(0, 0), point(1, 1)), generation=2)
    session = _session()
    assert transition(loading, SessionReady(1, session)) is loading
    assert transition(loading, RouteFailed(1, RouteFetchError("late"))) is loading


def test_loading_failure_fails():
    loading = Loading(RouteRequest(point(0, 0), point(1, 1)), generation=1)
    error = RouteFetchError("ZERO_RESULTS")
    state = transition(loading, RouteFailed(1, error))
    assert isinstance(state, Failed)
    assert state.error is error


def test_pause_and_resume_keep_progress():
    active = _active()
    paused = transition(active, PauseRequested())
    assert isinstance(paused, Paused)
    assert paused.session.status is SessionStatus.PAUSED
    resumed = transition(paused, ResumeRequested())
    assert isinstance(resumed, Active)
    assert resumed.snapshot == active.snapshot
    assert resumed.session.current_step_index == active.session.current_step_index


def test_invalid_operations_raise():
    with pytest.raises(StateTransitionError) as exc_info:
        transition(Idle(), PauseRequested())
    assert exc_info.value.state == "idle"
    with pytest.raises(StateTransitionError):
        transition(_active(), ResumeRequested())
    with pytest.raises(StateTransitionError):
        transition(_active(), StartRequested(RouteRequest(point(0, 0), point(1, 1))))
    with pytest.raises(StateTransitionError):
        transition(_active(), Acknowledged())


def test_position_advances_step_and_distance():
    active = _active()
    session = active.session
    first = transition(active, PositionProcessed(Fix(point(1000, 0)), _snapshot(session, point(1000, 0))))
    second = transition(first, PositionProcessed(Fix(point(2000, 300)), _snapshot(session, point(2000, 300))))
    assert second.session.current_step_index == 1
    # First fix has nothing to measure from; then 1000 m north and 300 m east
    assert second.session.distance_traveled_m == pytest.approx(1044, abs=1)


def test_off_route_debounce():
    """Two off-route fixes keep navigating; the third starts a recalculation."""
    state = _active()
    session = state.session
    off = point(500, 100)
    for _ in range(2):
        state = transition(state, PositionProcessed(Fix(off), _snapshot(session, off)))
        assert isinstance(state, Active)
    state = transition(state, PositionProcessed(Fix(off), _snapshot(session, off)))
    assert isinstance(state, Recalculating)
    assert state.generation == 2
    assert state.reroute_origin == off


def test_back_on_route_resets_streak():
    state = _active()
    session = state.session
    off, on = point(500, 100), point(600, 0)
    for p in (off, off, on, off, off):
        state = transition(state, PositionProcessed(Fix(p), _snapshot(session, p)))
    assert isinstance(state, Active)
    assert state.off_route_streak == 2


def test_reroute_replaces_route_and_resets_index():
    recalculating = transition(_active(), RecalculateRequested())
    route = detour_route(point(500, 100))
    state = transition(recalculating, RerouteReady(recalculating.generation, route))
    assert isinstance(state, Active)
    assert state.session.steps == route.steps
    assert state.session.current_step_index == 0
    assert state.session.total_distance_m == 4400.0
    assert state.session.id == "s-1"


def test_reroute_retries_then_fails():
    state = transition(_active(), RecalculateRequested())
    policy = NavigationPolicy(max_retries=2)
    for attempt in (1, 2):
        state = transition(state, RouteFailed(state.generation, RouteFetchError("timeout")), policy)
        assert isinstance(state, Recalculating)
        assert state.attempt == attempt
    state = transition(state, RouteFailed(state.generation, RouteFetchError("timeout")), policy)
    assert isinstance(state, Failed)
    assert isinstance(state.error, RecalculationError)
    assert state.error.attempts == 3
    assert state.session.status is SessionStatus.ERROR


def test_arrival_on_last_step():
    state = _active()
    session = state.session
    near_end = point(2990, 2000)
    state = transition(state, PositionProcessed(Fix(near_end), _snapshot(session, near_end, 2)))
    assert isinstance(state, Arrived)
    assert state.session.status is SessionStatus.ARRIVED


def test_end_and_acknowledge():
    active = _active()
    cancelled = transition(active, EndRequested(completed=False))
    assert isinstance(cancelled, Cancelled)
    assert cancelled.session_id == "s-1"
    arrived = transition(active, EndRequested(completed=True))
    assert isinstance(arrived, Arrived)
    assert isinstance(transition(arrived, Acknowledged()), Idle)


def test_cancel_while_loading():
    loading = Loading(RouteRequest(point(0, 0), point(1, 1)), generation=3)
    state = transition(loading, EndRequested(completed=False))
    assert state == Cancelled(None, generation=4)
    with pytest.raises(StateTransitionError):
        transition(loading, EndRequested(completed=True))


def test_backoff_schedule():
    policy = NavigationPolicy()
    assert [policy.backoff_for(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 8.0]
    assert NavigationPolicy(backoff_seconds=()).backoff_for(1) == 0.0


def test_snapshot_time_is_clock_time():
    active = _active()
    assert active.snapshot.eta == NOW + datetime.timedelta(seconds=500)
