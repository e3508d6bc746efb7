"""Routes and fake collaborators shared by the engine tests.

Routes are laid out on the equator, where a degree of latitude or
longitude is the same length, so offsets in metres convert exactly.
"""

import asyncio
import dataclasses
import datetime

from ridenav.core.geo import EARTH_RADIUS_M
from ridenav.core.models import Coordinate, RouteData, Step

METERS_PER_DEGREE = EARTH_RADIUS_M * 3.141592653589793 / 180

NOW = datetime.datetime(2026, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


def fixed_clock() -> datetime.datetime:
    return NOW


def deg(meters: float) -> float:
    return meters / METERS_PER_DEGREE


def point(north_m: float, east_m: float) -> Coordinate:
    """Coordinate ``north_m`` north and ``east_m`` east of (0, 0)."""
    return Coordinate(deg(north_m), deg(east_m))


def make_step(index, start, end, distance_m, duration_s, maneuver="straight"):
    return Step(
        index=index,
        start=start,
        end=end,
        instruction=f"Step {index + 1}",
        maneuver=maneuver,
        distance_m=distance_m,
        duration_s=duration_s,
        polyline=(start, end),
    )


def three_step_route() -> RouteData:
    """2000 m north, 2000 m east, 1000 m north: 5000 m, 500 s."""
    a = point(0, 0)
    b = point(2000, 0)
    c = point(2000, 2000)
    d = point(3000, 2000)
    steps = (
        make_step(0, a, b, 2000.0, 200),
        make_step(1, b, c, 2000.0, 200, "turn-right"),
        make_step(2, c, d, 1000.0, 100, "turn-left"),
    )
    return RouteData(
        steps=steps,
        polyline=(a, b, c, d),
        total_distance_m=5000.0,
        total_duration_s=500,
    )


def detour_route(origin: Coordinate) -> RouteData:
    """Two steps from ``origin`` back onto the end of three_step_route."""
    corner = Coordinate(origin.lat, deg(2000))
    end = point(3000, 2000)
    steps = (
        make_step(0, origin, corner, 1900.0, 190, "turn-right"),
        make_step(1, corner, end, 2500.0, 250, "turn-left"),
    )
    return RouteData(
        steps=steps,
        polyline=(origin, corner, end),
        total_distance_m=4400.0,
        total_duration_s=440,
    )


def walk_three_step_route(every_m: float = 100.0) -> list[Coordinate]:
    """Points along three_step_route from start to destination."""
    points = []
    n = 0.0
    while n <= 2000:
        points.append(point(n, 0))
        n += every_m
    e = every_m
    while e <= 2000:
        points.append(point(2000, e))
        e += every_m
    n = 2000 + every_m
    while n <= 3000:
        points.append(point(n, 2000))
        n += every_m
    return points


class FakeDirections:
    """Answers fetch_route from a script.

    Each entry is a RouteData, an exception to raise, or a zero-argument
    coroutine function whose result is used. The last entry repeats.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[tuple[Coordinate, Coordinate, str]] = []

    async def fetch_route(self, origin, destination, mode="driving"):
        self.calls.append((origin, destination, mode))
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if callable(entry):
            entry = await entry()
        if isinstance(entry, Exception):
            raise entry
        return entry


async def never_answers():
    await asyncio.Event().wait()


class FakeLocation:
    def __init__(self):
        self.handler = None
        self.starts = 0
        self.stops = 0

    async def start(self, on_fix):
        self.handler = on_fix
        self.starts += 1

    async def stop(self):
        self.handler = None
        self.stops += 1


class FakeStore:
    """In-memory SessionStore recording every call."""

    def __init__(self):
        self.sessions = {}
        self.progress = {}
        self.calls: list[tuple] = []

    async def save(self, session):
        self.calls.append(("save", session.id))
        self.sessions[session.id] = session

    async def update_status(self, session_id, status):
        self.calls.append(("update_status", session_id, status))

    async def save_progress(self, session_id, snapshot, distance_traveled_m=None):
        self.calls.append(("save_progress", session_id, snapshot.step_index))
        self.progress[session_id] = snapshot
        if session_id in self.sessions:
            changes = {"current_step_index": snapshot.step_index}
            if distance_traveled_m is not None:
                changes["distance_traveled_m"] = distance_traveled_m
            self.sessions[session_id] = dataclasses.replace(self.sessions[session_id], **changes)

    async def delete_progress(self, session_id):
        self.calls.append(("delete_progress", session_id))
        self.progress.pop(session_id, None)

    async def load(self, session_id):
        return self.sessions.get(session_id)

    async def get_active(self):
        return next(iter(self.sessions.values()), None)


class BrokenStore(FakeStore):
    async def save(self, session):
        raise RuntimeError("database is down")

    async def update_status(self, session_id, status):
        raise RuntimeError("database is down")


class RecordingObserver:
    def __init__(self):
        self.states = []

    async def on_update(self, state):
        self.states.append(state)
