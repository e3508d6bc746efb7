"""SQLAlchemy-backed persistence for navigation sessions and checkpoints."""

import datetime
import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ridenav.core import polyline
from ridenav.core.errors import SessionStoreError
from ridenav.core.models import Coordinate, ProgressSnapshot, Session, SessionStatus, Step
from ridenav.db.session import create_engine, create_sessionmaker
from ridenav.models.base import Base
from ridenav.models.tables import NavigationProgressRow, NavigationSessionRow

logger = logging.getLogger(__name__)

# Sessions in these states can be picked up again by resume_active()
RESUMABLE_STATUSES = (
    SessionStatus.ACTIVE.value,
    SessionStatus.PAUSED.value,
    SessionStatus.RECALCULATING.value,
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _aware(value: datetime.datetime | None) -> datetime.datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _step_to_dict(step: Step) -> dict:
    return {
        "index": step.index,
        "start": [step.start.lat, step.start.lon],
        "end": [step.end.lat, step.end.lon],
        "instruction": step.instruction,
        "maneuver": step.maneuver,
        "distance_m": step.distance_m,
        "duration_s": step.duration_s,
        "polyline": polyline.encode(step.polyline),
    }


def _step_from_dict(data: dict) -> Step:
    start = Coordinate(*data["start"])
    end = Coordinate(*data["end"])
    points = polyline.decode_lenient(data.get("polyline", ""))
    if len(points) < 2:
        points = [start, end]
    return Step(
        index=data["index"],
        start=start,
        end=end,
        instruction=data.get("instruction", ""),
        maneuver=data.get("maneuver", "straight"),
        distance_m=float(data["distance_m"]),
        duration_s=int(data["duration_s"]),
        polyline=tuple(points),
    )


def _session_from_row(row: NavigationSessionRow) -> Session:
    return Session(
        id=row.id,
        origin=Coordinate(row.origin_lat, row.origin_lon),
        destination=Coordinate(row.destination_lat, row.destination_lon),
        steps=tuple(_step_from_dict(s) for s in row.steps),
        polyline=tuple(polyline.decode_lenient(row.polyline)),
        total_distance_m=row.total_distance_m,
        total_duration_s=row.total_duration_s,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        status=SessionStatus(row.status),
        current_step_index=row.current_step_index,
        destination_name=row.destination_name,
        group_id=row.group_id,
        mode=row.mode,
        distance_traveled_m=row.distance_traveled_m,
    )


class SqlSessionStore:
    """Session store on an async SQLAlchemy engine (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: async_sessionmaker, engine: AsyncEngine | None = None) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, url: str | None = None, **engine_kwargs) -> "SqlSessionStore":
        engine = create_engine(url, **engine_kwargs)
        return cls(create_sessionmaker(engine), engine)

    async def create_tables(self) -> None:
        if self._engine is None:
            raise SessionStoreError("No engine to create tables on")
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to create tables: {e}") from e

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def save(self, session: Session) -> None:
        """Insert or overwrite the full session, including its route."""
        now = _utcnow()
        row = NavigationSessionRow(
            id=session.id,
            origin_lat=session.origin.lat,
            origin_lon=session.origin.lon,
            destination_lat=session.destination.lat,
            destination_lon=session.destination.lon,
            destination_name=session.destination_name,
            group_id=session.group_id,
            mode=session.mode,
            status=session.status.value,
            polyline=polyline.encode(session.polyline),
            steps=[_step_to_dict(s) for s in session.steps],
            total_distance_m=session.total_distance_m,
            total_duration_s=session.total_duration_s,
            current_step_index=session.current_step_index,
            distance_traveled_m=session.distance_traveled_m,
            created_at=session.created_at,
            started_at=session.started_at,
            updated_at=now,
        )
        try:
            async with self._session_factory() as db:
                await db.merge(row)
                await db.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to save session {session.id}: {e}") from e
        logger.debug("Saved session %s (%s)", session.id, session.status.value)

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(NavigationSessionRow)
                    .where(NavigationSessionRow.id == session_id)
                    .values(status=status.value, updated_at=_utcnow())
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to update session {session_id}: {e}") from e
        if result.rowcount == 0:
            logger.warning("Status update for unknown session %s", session_id)

    async def save_progress(
        self,
        session_id: str,
        snapshot: ProgressSnapshot,
        distance_traveled_m: float | None = None,
    ) -> None:
        """Replace the session's checkpoint and record its step index.

        ``distance_traveled_m``, when given, is written to the session too so
        a restored session keeps its progress percentage.
        """
        row = NavigationProgressRow(
            session_id=session_id,
            step_index=snapshot.step_index,
            lat=snapshot.location.lat,
            lon=snapshot.location.lon,
            distance_to_step_end_m=snapshot.distance_to_step_end_m,
            remaining_distance_m=snapshot.remaining_distance_m,
            remaining_duration_s=snapshot.remaining_duration_s,
            off_route=snapshot.off_route,
            speed_kmh=snapshot.speed_kmh,
            bearing=snapshot.bearing,
            eta=snapshot.eta,
            computed_at=snapshot.computed_at,
        )
        values = {"current_step_index": snapshot.step_index, "updated_at": _utcnow()}
        if distance_traveled_m is not None:
            values["distance_traveled_m"] = distance_traveled_m
        try:
            async with self._session_factory() as db:
                await db.merge(row)
                await db.execute(
                    update(NavigationSessionRow)
                    .where(NavigationSessionRow.id == session_id)
                    .values(**values)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to save progress for {session_id}: {e}") from e

    async def delete_progress(self, session_id: str) -> None:
        try:
            async with self._session_factory() as db:
                await db.execute(
                    delete(NavigationProgressRow).where(NavigationProgressRow.session_id == session_id)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to delete progress for {session_id}: {e}") from e

    async def load(self, session_id: str) -> Session | None:
        try:
            async with self._session_factory() as db:
                row = await db.get(NavigationSessionRow, session_id)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to load session {session_id}: {e}") from e
        if row is None:
            return None
        return _session_from_row(row)

    async def load_progress(self, session_id: str) -> NavigationProgressRow | None:
        try:
            async with self._session_factory() as db:
                return await db.get(NavigationProgressRow, session_id)
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to load progress for {session_id}: {e}") from e

    async def get_active(self) -> Session | None:
        """Most recently created session that has not finished."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(NavigationSessionRow)
                    .where(NavigationSessionRow.status.in_(RESUMABLE_STATUSES))
                    .order_by(NavigationSessionRow.created_at.desc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise SessionStoreError(f"Failed to look up active session: {e}") from e
        if row is None:
            return None
        return _session_from_row(row)
