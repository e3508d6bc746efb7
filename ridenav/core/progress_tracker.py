"""Classify position fixes against an ordered list of route steps.

Step index only moves forward: a fix that matches no step keeps the last
confirmed index. Resets happen outside this module (start, reroute).
"""

import logging
from typing import Sequence

from ridenav.core import geo
from ridenav.core.eta_calculator import EtaCalculator
from ridenav.core.models import Fix, ProgressSnapshot, Step

logger = logging.getLogger(__name__)

# Within this distance (m) of a step's end the step counts as completed
PROXIMITY_THRESHOLD_M = 30.0
# Farther than this (m) from every segment of the current step is off-route
OFF_ROUTE_THRESHOLD_M = 50.0
# Pre-maneuver alert distance (m) to the next step's start
NEXT_TURN_ALERT_M = 200.0


def _clamp_index(index: int, steps: Sequence[Step]) -> int:
    return max(0, min(index, len(steps) - 1))


class ProgressTracker:
    """Stateless step matching, off-route and remaining-distance queries."""

    def __init__(
        self,
        proximity_threshold_m: float = PROXIMITY_THRESHOLD_M,
        off_route_threshold_m: float = OFF_ROUTE_THRESHOLD_M,
        next_turn_alert_m: float = NEXT_TURN_ALERT_M,
    ) -> None:
        self.proximity_threshold_m = proximity_threshold_m
        self.off_route_threshold_m = off_route_threshold_m
        self.next_turn_alert_m = next_turn_alert_m

    def determine_current_step(self, fix: Fix, steps: Sequence[Step], last_step_index: int) -> int:
        """Find the step the fix belongs to, scanning forward from last_step_index.

        Endpoint proximity is checked before polyline containment: near a
        sharp corner a fix can sit closer to the previous step's geometry
        than to the next step's start, and would otherwise stick.
        """
        if not steps:
            return 0
        start_idx = _clamp_index(last_step_index, steps)
        pos = fix.coordinate

        for i in range(start_idx, len(steps)):
            step = steps[i]
            dist_to_end = geo.distance_m(pos, step.end)

            if dist_to_end < self.proximity_threshold_m:
                if i + 1 < len(steps):
                    dist_to_next_start = geo.distance_m(pos, steps[i + 1].start)
                    if dist_to_next_start < dist_to_end:
                        logger.debug("Step %d done (%.1f m from its end), now on %d", i, dist_to_end, i + 1)
                        return i + 1
                return i

            if geo.min_distance_to_polyline_m(pos, step.polyline) <= self.off_route_threshold_m:
                return i

        return start_idx

    def is_off_route(self, fix: Fix, current_step: Step) -> bool:
        dist = geo.min_distance_to_polyline_m(fix.coordinate, current_step.polyline)
        return dist > self.off_route_threshold_m

    def is_near_next_turn(self, fix: Fix, next_step: Step, threshold: float | None = None) -> bool:
        if threshold is None:
            threshold = self.next_turn_alert_m
        return geo.distance_m(fix.coordinate, next_step.start) <= threshold

    @staticmethod
    def distance_to_step_end(fix: Fix, step: Step) -> float:
        return geo.distance_m(fix.coordinate, step.end)

    def calculate_remaining_distance(self, fix: Fix, steps: Sequence[Step], current_step_index: int) -> float:
        """Distance to the current step's end plus all later step distances."""
        if not steps:
            return 0.0
        idx = _clamp_index(current_step_index, steps)
        total = self.distance_to_step_end(fix, steps[idx])
        for step in steps[idx + 1:]:
            total += step.distance_m
        return total

    @staticmethod
    def calculate_remaining_duration(steps: Sequence[Step], current_step_index: int) -> int:
        """Planned seconds from the current step to the end of the route."""
        if not steps:
            return 0
        idx = _clamp_index(current_step_index, steps)
        return sum(step.duration_s for step in steps[idx:])

    def build_snapshot(
        self,
        fix: Fix,
        steps: Sequence[Step],
        last_step_index: int,
        eta_calculator: EtaCalculator,
    ) -> ProgressSnapshot:
        """Match the fix to a step, then run every progress query once."""
        step_index = self.determine_current_step(fix, steps, last_step_index)
        return self.snapshot_at(fix, steps, step_index, eta_calculator)

    def snapshot_at(
        self,
        fix: Fix,
        steps: Sequence[Step],
        step_index: int,
        eta_calculator: EtaCalculator,
    ) -> ProgressSnapshot:
        """Progress for a fix at a step index that is already known."""
        if not steps:
            return ProgressSnapshot(
                step_index=0,
                location=fix.coordinate,
                distance_to_step_end_m=0.0,
                distance_to_next_step_m=None,
                remaining_distance_m=0.0,
                remaining_duration_s=0,
                off_route=False,
                near_next_turn=False,
                eta=eta_calculator.calculate_eta(0.0, fix.speed_kmh, 0),
                speed_kmh=fix.speed_kmh,
                bearing=fix.bearing,
            )

        step_index = _clamp_index(step_index, steps)
        current = steps[step_index]
        nxt = steps[step_index + 1] if step_index + 1 < len(steps) else None
        remaining_m = self.calculate_remaining_distance(fix, steps, step_index)
        remaining_s = self.calculate_remaining_duration(steps, step_index)
        return ProgressSnapshot(
            step_index=step_index,
            location=fix.coordinate,
            distance_to_step_end_m=self.distance_to_step_end(fix, current),
            distance_to_next_step_m=geo.distance_m(fix.coordinate, nxt.start) if nxt else None,
            remaining_distance_m=remaining_m,
            remaining_duration_s=remaining_s,
            off_route=self.is_off_route(fix, current),
            near_next_turn=nxt is not None and self.is_near_next_turn(fix, nxt),
            eta=eta_calculator.calculate_eta(remaining_m, fix.speed_kmh, remaining_s),
            speed_kmh=fix.speed_kmh,
            bearing=fix.bearing,
        )
