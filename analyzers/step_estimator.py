"""Step counting from the hardware pedometer or from GPS distance."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import TrackingConfig
from models.workout_types import WorkoutTypeCatalog, DEFAULT_STRIDE_LENGTH_M
from clients.providers import PedometerProvider, Subscription

logger = logging.getLogger(__name__)


def effective_stride_length(workout_type: str, speed_kmh: float) -> Optional[float]:
    """Stride length for a workout type at a given speed.

    Running lengthens from 0.75 m to 0.85 m above 8 km/h and 0.95 m above
    12 km/h. Walking uses 0.55 m up to 4 km/h, 0.65 m above and 0.75 m
    above 6 km/h.

    Returns:
        Stride in meters, or None for types that do not produce steps
    """
    definition = WorkoutTypeCatalog.get(workout_type)
    if not definition.counts_steps:
        return None

    if definition.name == 'Running':
        if speed_kmh > 12:
            return 0.95
        if speed_kmh > 8:
            return 0.85
        return definition.stride_length_m

    if definition.name == 'Walking':
        if speed_kmh > 6:
            return 0.75
        if speed_kmh > 4:
            return 0.65
        return 0.55

    return definition.stride_length_m or DEFAULT_STRIDE_LENGTH_M


def estimate_steps_from_distance(distance_m: float, time_diff_s: float, workout_type: str) -> int:
    """Estimate steps covered by one accepted GPS displacement.

    Args:
        distance_m: Displacement in meters
        time_diff_s: Time the displacement took in seconds
        workout_type: Workout type name

    Returns:
        Whole number of steps, 0 for types without a stride
    """
    if distance_m <= 0:
        return 0
    speed_kmh = (distance_m / 1000) / (time_diff_s / 3600) if time_diff_s > 0 else 0.0
    stride = effective_stride_length(workout_type, speed_kmh)
    if not stride:
        return 0

    steps = round(distance_m / stride)
    logger.debug(
        f"Estimated {steps} steps (GPS-based, stride: {stride:.2f}m, speed: {speed_kmh:.2f} km/h)"
    )
    return steps


class PedometerStepCounter:
    """Converts raw pedometer counts into monotonic workout steps.

    The first reading after each subscribe sets the baseline so that the
    count carries on from the steps already recorded; readings that would
    lower the count are ignored.
    """

    def __init__(self, pedometer: PedometerProvider):
        self.pedometer = pedometer
        self._baseline: Optional[int] = None
        self._steps = 0
        self._subscription: Optional[Subscription] = None

    @property
    def steps(self) -> int:
        return self._steps

    def probe(self, now: datetime) -> bool:
        """Check the pedometer works by reading the last hour's count.

        Returns:
            True if the hardware path can be used for this session
        """
        try:
            if not self.pedometer.is_available():
                logger.info("Pedometer not available on this device")
                return False
            start = now - timedelta(seconds=TrackingConfig.PEDOMETER_PROBE_WINDOW_S)
            initial_steps = self.pedometer.get_count_since(start, now)
            logger.debug(f"Pedometer step count over the last hour: {initial_steps}")
            return True
        except Exception as e:
            logger.warning(f"Pedometer error, falling back to GPS steps: {e}")
            return False

    def start(self, current_steps: int, on_steps: Callable[[int], None]) -> Subscription:
        """Subscribe to raw counts.

        Args:
            current_steps: Steps already recorded in the session
            on_steps: Called with the new total whenever it increases
        """
        self._steps = current_steps
        self._baseline = None

        def handle_count(raw_steps: int):
            new_steps = self.update(raw_steps)
            if new_steps is not None:
                on_steps(new_steps)

        self._subscription = self.pedometer.subscribe(handle_count)
        return self._subscription

    def update(self, raw_steps: int) -> Optional[int]:
        """Apply one raw reading.

        Returns:
            The new step total if it increased, else None
        """
        if self._baseline is None:
            self._baseline = raw_steps - self._steps
            logger.debug(f"Setting baseline step count: {self._baseline}")
            return None

        workout_steps = max(0, raw_steps - self._baseline)
        if workout_steps > self._steps:
            self._steps = workout_steps
            return workout_steps
        return None

    def stop(self):
        if self._subscription is not None:
            self._subscription.remove()
            self._subscription = None
