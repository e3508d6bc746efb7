"""Tests for ProgressBroadcaster payloads and fan-out."""

import asyncio

import orjson

from ridenav.core.broadcaster import ProgressBroadcaster, build_update
from ridenav.core.errors import RouteFetchError
from ridenav.core.eta_calculator import EtaCalculator
from ridenav.core.models import Fix, Session, SessionStatus
from ridenav.core.progress_tracker import ProgressTracker
from ridenav.core.states import Active, Cancelled, Failed, Idle

from route_fixtures import NOW, fixed_clock, point, three_step_route


def _active(group_id=None) -> Active:
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
        status=SessionStatus.ACTIVE,
        current_step_index=1,
        group_id=group_id,
    )
    snapshot = ProgressTracker().snapshot_at(
        Fix(point(2000, 500), speed_kmh=40.0), session.steps, 1, EtaCalculator(fixed_clock),
    )
    return Active(session, snapshot, generation=1)


class FakeRedis:
    def __init__(self):
        self.published = []
        self.stored = {}

    async def set(self, key, value):
        self.stored[key] = value

    async def publish(self, channel, payload):
        self.published.append((channel, payload))


class DownRedis:
    async def set(self, key, value):
        raise ConnectionError("redis down")

    async def publish(self, channel, payload):
        raise ConnectionError("redis down")


def test_update_for_active_state():
    update = build_update(_active())
    assert update.state == "active"
    assert update.session_id == "s-1"
    assert update.status == "active"
    assert update.current_step.index == 1
    assert update.current_step.maneuver == "turn-right"
    assert update.next_step.index == 2
    assert update.progress.step_index == 1
    assert update.progress.remaining_distance_m == 2500.0
    assert update.progress.speed_kmh == 40.0


def test_update_for_idle_cancelled_and_failed():
    assert build_update(Idle()).session_id is None
    assert build_update(Cancelled("s-9", 3)).session_id == "s-9"
    failed = build_update(Failed(RouteFetchError("ZERO_RESULTS")))
    assert failed.state == "failed"
    assert failed.error == "ZERO_RESULTS"
    assert failed.progress is None


def test_subscribers_receive_json():
    async def scenario():
        broadcaster = ProgressBroadcaster(redis_url="")
        q = broadcaster.subscribe()
        await broadcaster.on_update(_active())
        return orjson.loads(q.get_nowait())

    data = asyncio.run(scenario())
    assert data["type"] == "update"
    assert data["state"] == "active"
    assert data["progress"]["eta"].startswith("2026-05-01T12:")
    assert data["current_step"]["instruction"] == "Step 2"


def test_full_subscriber_is_dropped():
    async def scenario():
        broadcaster = ProgressBroadcaster(redis_url="")
        slow = broadcaster.subscribe()
        fast = broadcaster.subscribe()
        state = _active()
        for _ in range(11):
            await broadcaster.on_update(state)
            while not fast.empty():
                fast.get_nowait()
        await broadcaster.on_update(state)
        return slow, fast

    slow, fast = asyncio.run(scenario())
    assert slow.qsize() == 10
    assert fast.qsize() == 1


def test_group_sessions_publish_to_redis():
    async def scenario():
        broadcaster = ProgressBroadcaster(redis_url="")
        redis = FakeRedis()
        broadcaster._redis = redis
        await broadcaster.on_update(_active(group_id="g-42"))
        await broadcaster.on_update(_active())
        return redis

    redis = asyncio.run(scenario())
    assert len(redis.published) == 1
    channel, payload = redis.published[0]
    assert channel == "ridenav:group:g-42"
    assert orjson.loads(payload)["group_id"] == "g-42"
    assert "ridenav:group:g-42:session:s-1" in redis.stored


def test_redis_failure_still_reaches_local_subscribers():
    async def scenario():
        broadcaster = ProgressBroadcaster(redis_url="")
        broadcaster._redis = DownRedis()
        q = broadcaster.subscribe()
        await broadcaster.on_update(_active(group_id="g-42"))
        return q

    assert asyncio.run(scenario()).qsize() == 1
