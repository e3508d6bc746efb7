"""Exception hierarchy for the navigation engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ridenav.core.models import Coordinate


class NavigationError(Exception):
    """Base class for all errors raised by ridenav."""


class RouteFetchError(NavigationError):
    """The directions provider failed or returned no usable route."""

    def __init__(self, message: str, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status


class RecalculationError(NavigationError):
    """Rerouting kept failing until the retry budget ran out."""

    def __init__(self, message: str, attempts: int, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause


class DecodeError(NavigationError, ValueError):
    """An encoded polyline ended in the middle of a value."""

    def __init__(self, message: str, partial: list[Coordinate], position: int) -> None:
        super().__init__(message)
        self.partial = partial
        self.position = position


class StateTransitionError(NavigationError):
    """An operation was requested in a state that does not allow it."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(f"Cannot {operation} while {state}")
        self.operation = operation
        self.state = state


class SessionStoreError(NavigationError):
    """Reading or writing persisted session data failed."""
