"""Fan navigation updates out to local subscribers and, for groups, Redis."""

import asyncio
import logging

import orjson
import redis.asyncio as aioredis

from ridenav.config import settings
from ridenav.core.states import NavState, state_name
from ridenav.schemas.progress import NavigationUpdate, ProgressInfo, step_info

logger = logging.getLogger(__name__)

GROUP_CHANNEL = "ridenav:group:{group_id}"
GROUP_STATE_KEY = "ridenav:group:{group_id}:session:{session_id}"


def build_update(state: NavState) -> NavigationUpdate:
    """Read-only wire view of an engine state."""
    session = getattr(state, "session", None)
    snapshot = getattr(state, "snapshot", None)
    error = getattr(state, "error", None)
    update = NavigationUpdate(
        state=state_name(state),
        session_id=session.id if session else getattr(state, "session_id", None),
        error=str(error) if error else None,
    )
    if session is not None:
        update.group_id = session.group_id
        update.status = session.status.value
        update.current_step = step_info(session, session.current_step_index)
        update.next_step = step_info(session, session.current_step_index + 1)
    if snapshot is not None:
        update.progress = ProgressInfo.from_snapshot(snapshot)
    return update


class ProgressBroadcaster:
    """Navigation observer publishing every state change as JSON bytes."""

    def __init__(self, redis_url: str | None = None) -> None:
        self._redis_url = redis_url if redis_url is not None else settings.redis_url
        self._redis: aioredis.Redis | None = None
        self._subscribers: set[asyncio.Queue] = set()

    async def connect(self) -> None:
        if self._redis_url:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    async def on_update(self, state: NavState) -> None:
        update = build_update(state)
        await self.publish(update)

    async def publish(self, update: NavigationUpdate) -> None:
        """Fan out locally; group sessions also go to their Redis channel."""
        payload = orjson.dumps(update.model_dump(mode="json"))

        if self._redis and update.group_id and update.session_id:
            try:
                await self._redis.set(
                    GROUP_STATE_KEY.format(group_id=update.group_id, session_id=update.session_id),
                    payload,
                )
                await self._redis.publish(GROUP_CHANNEL.format(group_id=update.group_id), payload)
            except Exception:
                logger.exception("Failed to publish group progress to Redis")

        dead = set()
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dead.add(q)
        self._subscribers -= dead

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)
