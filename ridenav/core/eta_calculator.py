"""Blend planned duration with live speed into an arrival time."""

import datetime
import logging
from typing import Callable

logger = logging.getLogger(__name__)

# Below this speed (km/h) live speed is too noisy to use (stopped at a light, etc.)
MIN_SPEED_KMH = 5.0
# Instantaneous speed misses traffic and stops; stretch live estimates by 15%
CORRECTION_FACTOR = 1.15


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EtaCalculator:
    """Speed-corrected ETA, averaged with the route's planned duration."""

    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
        self._clock = clock

    def remaining_seconds(
        self,
        remaining_distance_m: float,
        speed_kmh: float | None,
        remaining_duration_s: float,
    ) -> int:
        """Seconds until arrival.

        Falls back to the planned duration when speed is unknown or under
        MIN_SPEED_KMH. Otherwise the live projection (distance / speed,
        times CORRECTION_FACTOR) is averaged with the planned duration.
        """
        if speed_kmh is None or speed_kmh < MIN_SPEED_KMH:
            return int(round(remaining_duration_s))

        speed_ms = speed_kmh / 3.6  # km/h -> m/s
        live_s = remaining_distance_m / speed_ms
        corrected_s = live_s * CORRECTION_FACTOR
        return int(round((corrected_s + remaining_duration_s) / 2))

    def calculate_eta(
        self,
        remaining_distance_m: float,
        speed_kmh: float | None,
        remaining_duration_s: float,
    ) -> datetime.datetime:
        seconds = self.remaining_seconds(remaining_distance_m, speed_kmh, remaining_duration_s)
        return self._clock() + datetime.timedelta(seconds=seconds)
