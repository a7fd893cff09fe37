"""Location stream processing: noise gates, distance accumulation and live metrics."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from config.settings import TrackingConfig
from models.workout import LocationSample, RoutePoint, SessionStats
from models.workout_types import WorkoutTypeCatalog
from utils.geo import haversine_m
from utils.metrics import calculate_pace, calculate_avg_speed, calculate_calories
from analyzers.step_estimator import estimate_steps_from_distance

logger = logging.getLogger(__name__)


class SampleStatus(Enum):
    """What the processor did with a location sample."""

    ACCEPTED = 'accepted'
    FORCED_UPDATE = 'forced_update'
    REFERENCE = 'reference'
    BELOW_MOVEMENT_FLOOR = 'below_movement_floor'
    REJECTED_ACCURACY = 'rejected_accuracy'
    REJECTED_INTERVAL = 'rejected_interval'
    REJECTED_JUMP = 'rejected_jump'
    NOT_TRACKING = 'not_tracking'


@dataclass(frozen=True)
class SampleOutcome:
    """Result of processing one sample."""

    status: SampleStatus
    distance_m: float = 0.0
    implied_speed_mps: Optional[float] = None

    @property
    def updated_metrics(self) -> bool:
        return self.status in (SampleStatus.ACCEPTED, SampleStatus.FORCED_UPDATE)

    @property
    def route_appended(self) -> bool:
        return self.status in (
            SampleStatus.ACCEPTED,
            SampleStatus.FORCED_UPDATE,
            SampleStatus.REFERENCE,
            SampleStatus.BELOW_MOVEMENT_FLOOR,
            SampleStatus.REJECTED_JUMP,
        )


def derive_stats(stats: SessionStats, distance_m: float, duration_s: int, steps: int,
                 workout_type: str, weight_kg: float) -> SessionStats:
    """Build the next stats snapshot from cumulative distance and duration.

    Duration never goes backwards. Pace stays None while no distance is
    covered, and calories are recomputed from the full duration each time.
    """
    duration_s = max(stats.duration, int(duration_s))
    return stats.evolve(
        distance=distance_m,
        duration=duration_s,
        pace=calculate_pace(duration_s, distance_m),
        avg_speed=calculate_avg_speed(distance_m, duration_s),
        steps=steps,
        calories=calculate_calories(workout_type, weight_kg, duration_s),
    )


class LocationStreamProcessor:
    """Turns a stream of raw GPS samples into route and session metrics.

    The processor is not thread safe; its owner must feed samples one at a
    time. It does not know about pause state: the owner stops feeding it
    while paused and calls ``mark_resumed`` before the stream restarts.
    """

    def __init__(self, workout_type: str, weight_kg: float,
                 duration_source: Callable[[], int], use_gps_steps: bool = True):
        """Initialize the processor.

        Args:
            workout_type: Workout type name, drives the jump ceiling, strides and MET
            weight_kg: Body weight for calorie estimates
            duration_source: Returns the current active duration in seconds
            use_gps_steps: Estimate steps from distance instead of a pedometer
        """
        self.workout_type = workout_type
        self.weight_kg = weight_kg
        self.use_gps_steps = use_gps_steps
        self._duration_source = duration_source
        self._max_speed_mps = WorkoutTypeCatalog.get_max_speed(workout_type)
        self._movement_floor_m = TrackingConfig.MIN_DISTANCE_CHANGE_M
        if WorkoutTypeCatalog.get(workout_type).name == 'Walking':
            self._movement_floor_m *= TrackingConfig.WALKING_DISTANCE_FACTOR
        self.reset()

    def reset(self):
        """Drop all route and metric state for a new session."""
        self.reference: Optional[LocationSample] = None
        self.route: List[RoutePoint] = []
        self.stats = SessionStats()
        self._rebaseline_pending = False

    def mark_resumed(self):
        """Make the next usable sample the new distance reference."""
        self._rebaseline_pending = True

    def process(self, sample: LocationSample) -> SampleOutcome:
        """Run one sample through the gates and update route and metrics.

        Args:
            sample: Newly delivered location sample

        Returns:
            SampleOutcome describing which gate decided the sample
        """
        if sample.accuracy > TrackingConfig.MAX_ACCURACY_M:
            logger.debug(f"Very low accuracy reading: {sample.accuracy:.1f}m - ignoring")
            return SampleOutcome(SampleStatus.REJECTED_ACCURACY)

        if self.reference is None or self._rebaseline_pending:
            if self._rebaseline_pending:
                logger.debug("First location after resume - storing as new reference")
            else:
                logger.debug("First location update - storing as reference")
            self._rebaseline_pending = False
            self.reference = sample
            self.route.append(sample.to_route_point())
            return SampleOutcome(SampleStatus.REFERENCE)

        time_diff_s = sample.timestamp - self.reference.timestamp
        if time_diff_s * 1000 < TrackingConfig.MIN_TIME_BETWEEN_UPDATES_MS:
            logger.debug(f"Update too soon ({time_diff_s:.3f}s) - ignoring")
            return SampleOutcome(SampleStatus.REJECTED_INTERVAL)

        distance_m = haversine_m(
            self.reference.latitude, self.reference.longitude,
            sample.latitude, sample.longitude,
        )
        implied_speed = distance_m / time_diff_s

        if implied_speed > self._max_speed_mps:
            logger.debug(
                f"Unrealistic movement: {implied_speed:.2f} m/s (max: {self._max_speed_mps} m/s) - route only"
            )
            self.route.append(sample.to_route_point())
            return SampleOutcome(SampleStatus.REJECTED_JUMP, implied_speed_mps=implied_speed)

        self.route.append(sample.to_route_point())

        if distance_m < self._movement_floor_m:
            if time_diff_s <= TrackingConfig.FORCED_RECOMPUTE_INTERVAL_S:
                logger.debug(
                    f"Movement too small ({distance_m:.2f}m < {self._movement_floor_m}m) - updating route only"
                )
                return SampleOutcome(
                    SampleStatus.BELOW_MOVEMENT_FLOOR, implied_speed_mps=implied_speed
                )
            logger.debug(f"Periodic stats update ({time_diff_s:.1f}s since last update)")
            status = SampleStatus.FORCED_UPDATE
        else:
            status = SampleStatus.ACCEPTED

        self._apply_movement(sample, distance_m, time_diff_s)
        return SampleOutcome(status, distance_m=distance_m, implied_speed_mps=implied_speed)

    def _apply_movement(self, sample: LocationSample, distance_m: float, time_diff_s: float):
        steps = self.stats.steps
        if self.use_gps_steps:
            steps += estimate_steps_from_distance(distance_m, time_diff_s, self.workout_type)

        self.stats = derive_stats(
            self.stats,
            self.stats.distance + distance_m,
            self._duration_source(),
            steps,
            self.workout_type,
            self.weight_kg,
        )
        self.reference = sample
        logger.debug(f"Updated total distance: {self.stats.distance_km:.3f} km")

    def refresh_duration(self) -> SessionStats:
        """Re-derive duration dependent metrics without a location update."""
        self.stats = derive_stats(
            self.stats,
            self.stats.distance,
            self._duration_source(),
            self.stats.steps,
            self.workout_type,
            self.weight_kg,
        )
        return self.stats

    def apply_step_count(self, steps: int) -> bool:
        """Take a pedometer total; only increases are applied.

        Returns:
            True if the stats changed
        """
        if steps <= self.stats.steps:
            return False
        self.stats = self.stats.evolve(steps=steps)
        return True
