"""Value types shared by the tracker, the state machine and the adapters."""

import datetime
import enum
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


@dataclass(frozen=True)
class Step:
    index: int
    start: Coordinate
    end: Coordinate
    instruction: str
    maneuver: str
    distance_m: float
    duration_s: int
    polyline: tuple[Coordinate, ...]  # first == start, last == end


@dataclass(frozen=True)
class RouteData:
    """Result of a directions request, already decoded into steps."""

    steps: tuple[Step, ...]
    polyline: tuple[Coordinate, ...]
    total_distance_m: float
    total_duration_s: int
    overview_polyline: str = ""  # encoded form of polyline, as received


@dataclass(frozen=True)
class Fix:
    coordinate: Coordinate
    speed_kmh: float | None = None
    bearing: float | None = None
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


class SessionStatus(enum.Enum):
    LOADING = "loading"
    ACTIVE = "active"
    PAUSED = "paused"
    RECALCULATING = "recalculating"
    ARRIVED = "arrived"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class Session:
    id: str
    origin: Coordinate
    destination: Coordinate
    steps: tuple[Step, ...]
    polyline: tuple[Coordinate, ...]
    total_distance_m: float
    total_duration_s: int
    created_at: datetime.datetime
    started_at: datetime.datetime | None = None
    status: SessionStatus = SessionStatus.LOADING
    current_step_index: int = 0
    destination_name: str | None = None
    group_id: str | None = None
    mode: str = "driving"
    distance_traveled_m: float = 0.0

    @property
    def current_step(self) -> Step | None:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def next_step(self) -> Step | None:
        nxt = self.current_step_index + 1
        if nxt < len(self.steps):
            return self.steps[nxt]
        return None

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == len(self.steps) - 1

    @property
    def is_group_navigation(self) -> bool:
        return self.group_id is not None

    @property
    def progress_percentage(self) -> float:
        if self.total_distance_m <= 0:
            return 0.0
        return min(100.0, self.distance_traveled_m / self.total_distance_m * 100)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Where the rider is on the route, recomputed for every fix."""

    step_index: int
    location: Coordinate
    distance_to_step_end_m: float
    distance_to_next_step_m: float | None  # None on the last step
    remaining_distance_m: float
    remaining_duration_s: int
    off_route: bool
    near_next_turn: bool
    eta: datetime.datetime
    speed_kmh: float | None = None
    bearing: float | None = None
    computed_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


_MANEUVER_TEXT = {
    "turn-right": "Turn right",
    "turn-left": "Turn left",
    "turn-slight-right": "Turn slightly right",
    "turn-slight-left": "Turn slightly left",
    "turn-sharp-right": "Turn sharp right",
    "turn-sharp-left": "Turn sharp left",
    "uturn-right": "Make a U-turn",
    "uturn-left": "Make a U-turn",
    "straight": "Continue straight",
    "merge": "Merge",
    "fork-left": "Keep left at the fork",
    "fork-right": "Keep right at the fork",
    "ramp-left": "Take the ramp on the left",
    "ramp-right": "Take the ramp on the right",
    "roundabout-left": "Enter the roundabout",
    "roundabout-right": "Enter the roundabout",
}


def describe_maneuver(maneuver: str) -> str:
    """Short spoken form of a maneuver category, e.g. 'turn-left' -> 'Turn left'."""
    return _MANEUVER_TEXT.get(maneuver.lower(), "Continue")
