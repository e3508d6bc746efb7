"""Tests for session helpers and maneuver text."""

import dataclasses

from ridenav.core.models import Session, describe_maneuver

from route_fixtures import NOW, point, three_step_route


def _session(**changes) -> Session:
    route = three_step_route()
    session = Session(
        id="s-1",
        origin=point(0, 0),
        destination=point(3000, 2000),
        steps=route.steps,
        polyline=route.polyline,
        total_distance_m=route.total_distance_m,
        total_duration_s=route.total_duration_s,
        created_at=NOW,
    )
    return dataclasses.replace(session, **changes)


def test_current_and_next_step():
    session = _session(current_step_index=1)
    assert session.current_step.index == 1
    assert session.next_step.index == 2
    assert not session.is_last_step

    last = _session(current_step_index=2)
    assert last.next_step is None
    assert last.is_last_step


def test_progress_percentage():
    assert _session().progress_percentage == 0.0
    assert _session(distance_traveled_m=1250.0).progress_percentage == 25.0
    # GPS jitter can overshoot the planned length
    assert _session(distance_traveled_m=5600.0).progress_percentage == 100.0
    assert _session(total_distance_m=0.0, distance_traveled_m=10.0).progress_percentage == 0.0


def test_group_navigation():
    assert not _session().is_group_navigation
    assert _session(group_id="g-1").is_group_navigation


def test_describe_maneuver():
    assert describe_maneuver("turn-left") == "Turn left"
    assert describe_maneuver("ROUNDABOUT-RIGHT") == "Enter the roundabout"
    assert describe_maneuver("straight") == "Continue straight"
    assert describe_maneuver("keep-left") == "Continue"
