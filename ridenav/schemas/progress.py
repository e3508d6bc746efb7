import datetime

from pydantic import BaseModel

from ridenav.core.models import ProgressSnapshot, Session


class StepInfo(BaseModel):
    index: int
    instruction: str
    maneuver: str
    distance_m: float
    duration_s: int


class ProgressInfo(BaseModel):
    step_index: int
    lat: float
    lon: float
    distance_to_step_end_m: float
    distance_to_next_step_m: float | None = None
    remaining_distance_m: float
    remaining_duration_s: int
    off_route: bool
    near_next_turn: bool
    eta: datetime.datetime
    speed_kmh: float | None = None
    bearing: float | None = None

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot) -> "ProgressInfo":
        return cls(
            step_index=snapshot.step_index,
            lat=snapshot.location.lat,
            lon=snapshot.location.lon,
            distance_to_step_end_m=round(snapshot.distance_to_step_end_m, 1),
            distance_to_next_step_m=(
                round(snapshot.distance_to_next_step_m, 1)
                if snapshot.distance_to_next_step_m is not None else None
            ),
            remaining_distance_m=round(snapshot.remaining_distance_m, 1),
            remaining_duration_s=snapshot.remaining_duration_s,
            off_route=snapshot.off_route,
            near_next_turn=snapshot.near_next_turn,
            eta=snapshot.eta,
            speed_kmh=snapshot.speed_kmh,
            bearing=snapshot.bearing,
        )


class NavigationUpdate(BaseModel):
    type: str = "update"
    state: str
    session_id: str | None = None
    group_id: str | None = None
    status: str | None = None
    current_step: StepInfo | None = None
    next_step: StepInfo | None = None
    progress: ProgressInfo | None = None
    error: str | None = None


def step_info(session: Session, index: int) -> StepInfo | None:
    if not 0 <= index < len(session.steps):
        return None
    step = session.steps[index]
    return StepInfo(
        index=step.index,
        instruction=step.instruction,
        maneuver=step.maneuver,
        distance_m=step.distance_m,
        duration_s=step.duration_s,
    )
