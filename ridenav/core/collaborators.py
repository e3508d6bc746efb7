"""Interfaces the engine depends on. Concrete adapters live beside them."""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

from ridenav.core.models import Coordinate, Fix, ProgressSnapshot, RouteData, Session, SessionStatus

if TYPE_CHECKING:
    from ridenav.core.states import NavState

FixHandler = Callable[[Fix], Awaitable[None]]


class DirectionsProvider(Protocol):
    async def fetch_route(self, origin: Coordinate, destination: Coordinate, mode: str = "driving") -> RouteData:
        """Plan a route. Raises RouteFetchError on any failure."""
        ...


class LocationProvider(Protocol):
    async def start(self, on_fix: FixHandler) -> None:
        """Begin delivering fixes to ``on_fix``, one at a time.

        Must return without waiting for a fix to be handled.
        """
        ...

    async def stop(self) -> None:
        """Stop delivering fixes. Must not wait for an in-flight ``on_fix``."""
        ...


class SessionStore(Protocol):
    async def save(self, session: Session) -> None: ...

    async def update_status(self, session_id: str, status: SessionStatus) -> None: ...

    async def save_progress(
        self, session_id: str, snapshot: ProgressSnapshot, distance_traveled_m: float | None = None,
    ) -> None: ...

    async def delete_progress(self, session_id: str) -> None: ...

    async def load(self, session_id: str) -> Session | None: ...

    async def get_active(self) -> Session | None: ...


class NavigationObserver(Protocol):
    async def on_update(self, state: NavState) -> None:
        """Receive the latest state. Must treat it as read-only."""
        ...
