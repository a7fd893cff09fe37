"""Session lifecycle controller for a live workout."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from config.settings import TrackingConfig
from models.workout import (
    LocationSample,
    ProgramLink,
    RoutePoint,
    SessionState,
    SessionStats,
    UserProfile,
    WorkoutRecord,
    utc_from_timestamp,
)
from analyzers.location_processor import LocationStreamProcessor, SampleOutcome, SampleStatus
from analyzers.step_estimator import PedometerStepCounter
from clients.bootstrap import DeviceBootstrap
from clients.providers import (
    BatteryProvider,
    Clock,
    LocalMirror,
    LocationProvider,
    PedometerProvider,
    Subscription,
    TimerService,
    WorkoutRepository,
)
from clients.replay import SystemClock, ThreadingTimerService
from clients.sampler import AdaptiveSampler
from tracking.exceptions import (
    FixAcquisitionError,
    InvalidTransitionError,
    LocationPermissionError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

Listener = Callable[[SessionState, SessionStats], None]


class FinishOutcome(Enum):
    """Result of a finish request."""

    FINISHED = 'finished'
    NEEDS_RESOLUTION = 'needs_resolution'


class PrematureFinishChoice(Enum):
    """User decision when finishing with too short a route."""

    KEEP_GOING = 'keep_going'
    DISCARD = 'discard'
    FORCE_FINISH = 'force_finish'


class SaveOutcome(Enum):
    """Result of a save request."""

    SAVED = 'saved'
    PENDING = 'pending'
    NEEDS_CONFIRMATION = 'needs_confirmation'


class SessionTracker:
    """Owns one workout session from permission request to saved record.

    Every public command and every sensor callback runs under one re-entrant
    lock, so a sample is fully processed before the ticker or the next sample
    can look at the stats. Listeners are called with ``(state, stats)`` after
    each observable change.
    """

    def __init__(
        self,
        workout_type: str,
        location_provider: LocationProvider,
        clock: Optional[Clock] = None,
        timer_service: Optional[TimerService] = None,
        repository: Optional[WorkoutRepository] = None,
        local_mirror: Optional[LocalMirror] = None,
        battery_provider: Optional[BatteryProvider] = None,
        pedometer: Optional[PedometerProvider] = None,
        user: Optional[UserProfile] = None,
        program: Optional[ProgramLink] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the tracker.

        Args:
            workout_type: Workout type name (e.g. 'Running')
            location_provider: Device location subsystem
            clock: Wall clock, the system clock if omitted
            timer_service: Schedules the duration ticker, threading timers if omitted
            repository: Primary workout store
            local_mirror: Best-effort local copy of recent workouts
            battery_provider: Battery level source for the sampler
            pedometer: Hardware step counter, GPS steps are used without one
            user: Signed-in user and body weight
            program: Training program slot this workout belongs to
            sleep: Delay function used between initial fix attempts
        """
        self.workout_type = workout_type
        self.clock = clock or SystemClock()
        self.timer_service = timer_service or ThreadingTimerService()
        self.repository = repository
        self.local_mirror = local_mirror
        self.pedometer = pedometer
        self.user = user or UserProfile()
        self.program = program

        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._bootstrap = DeviceBootstrap(location_provider, sleep=sleep)
        self._sampler = AdaptiveSampler(location_provider, battery_provider)
        self._step_counter = PedometerStepCounter(pedometer) if pedometer is not None else None
        self._processor = LocationStreamProcessor(
            workout_type, self.user.weight_kg, self._active_duration
        )

        self._state = SessionState.IDLE
        self.initial_fix: Optional[LocationSample] = None
        self.start_timestamp: Optional[float] = None
        self._segment_start: Optional[float] = None
        self._carry_over_s = 0.0
        self._awaiting_resolution = False

        self._location_subscription: Optional[Subscription] = None
        self._ticker_subscription: Optional[Subscription] = None
        self._pedometer_subscription: Optional[Subscription] = None

        self._record: Optional[WorkoutRecord] = None
        self._pending_save = False
        self._saved = False
        self._local_record_id: Optional[str] = None

    # Observable state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def stats(self) -> SessionStats:
        return self._processor.stats

    @property
    def route(self) -> List[RoutePoint]:
        return list(self._processor.route)

    @property
    def record(self) -> Optional[WorkoutRecord]:
        return self._record

    @property
    def pending_save(self) -> bool:
        return self._pending_save

    @property
    def awaiting_resolution(self) -> bool:
        """True after a finish request that needs a premature-finish choice."""
        return self._awaiting_resolution

    @property
    def step_source(self) -> str:
        return 'gps' if self._processor.use_gps_steps else 'pedometer'

    def add_listener(self, listener: Listener) -> Subscription:
        """Register a callback notified after every state or stats change."""
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return Subscription(on_remove=remove)

    # Commands

    def initialize(self) -> LocationSample:
        """Request location access and acquire the first fix.

        Returns:
            The initial location sample

        Raises:
            LocationPermissionError: If access is denied or unavailable
            FixAcquisitionError: If no position can be obtained
        """
        with self._lock:
            self._require('initialize', SessionState.IDLE)
            self._set_state(SessionState.INITIALIZING)

            permission = self._bootstrap.acquire_permission()
            if not permission.granted:
                self._set_state(SessionState.IDLE)
                raise LocationPermissionError(permission.reason, permission.detail)

            fix = self._bootstrap.acquire_initial_fix()
            if fix is None:
                self._set_state(SessionState.IDLE)
                raise FixAcquisitionError("Could not get your location. Please check your GPS settings.")

            self.initial_fix = fix
            return fix

    def start(self):
        """Start tracking: zero the stats and open the sensor streams.

        Raises:
            StreamStartError: If the location stream cannot be started
        """
        with self._lock:
            self._require('start', SessionState.INITIALIZING)

            now = self.clock.now()
            self._processor.reset()
            self._carry_over_s = 0.0
            self._record = None
            self.start_timestamp = now
            self._segment_start = now
            self._processor.use_gps_steps = not self._probe_pedometer(now)
            logger.info(
                f"Starting {self.workout_type} workout with {self.step_source} step counting"
            )

            self._open_streams(fallback_state=SessionState.INITIALIZING)

    def pause(self):
        """Stop the sensors and bank the active time of the current segment."""
        with self._lock:
            self._require('pause', SessionState.ACTIVE)
            self._close_streams()
            self._end_segment()
            self._processor.refresh_duration()
            self._set_state(SessionState.PAUSED)
            logger.info(f"Workout paused at {self.stats.duration}s")

    def resume(self):
        """Reopen the sensors; the first usable sample becomes the new reference.

        Raises:
            StreamStartError: If the location stream cannot be restarted
        """
        with self._lock:
            self._require('resume', SessionState.PAUSED)
            self._segment_start = self.clock.now()
            self._processor.mark_resumed()
            self._open_streams(fallback_state=SessionState.PAUSED)
            logger.info("Workout resumed")

    def finish(self) -> FinishOutcome:
        """Request the end of the workout.

        Returns:
            FINISHED when the record was assembled, NEEDS_RESOLUTION when the
            route is too short and ``resolve_premature_finish`` must be called
        """
        with self._lock:
            self._require('finish', SessionState.ACTIVE, SessionState.PAUSED)

            if len(self._processor.route) < TrackingConfig.MIN_ROUTE_POINTS:
                logger.info(
                    f"Route has only {len(self._processor.route)} points, asking how to finish"
                )
                self._awaiting_resolution = True
                return FinishOutcome.NEEDS_RESOLUTION

            self._enter_finishing()
            return FinishOutcome.FINISHED

    def resolve_premature_finish(self, choice: PrematureFinishChoice) -> SessionState:
        """Apply the user's decision about a too-short workout.

        Returns:
            The state after the decision
        """
        with self._lock:
            if not self._awaiting_resolution:
                raise InvalidTransitionError("No premature finish is awaiting a decision")
            self._awaiting_resolution = False

            if choice is PrematureFinishChoice.KEEP_GOING:
                if self._state is SessionState.PAUSED:
                    self.resume()
            elif choice is PrematureFinishChoice.DISCARD:
                self.discard()
            else:
                self._enter_finishing()
            return self._state

    def save(self, confirm_short: bool = False) -> SaveOutcome:
        """Persist the finished record.

        On a store failure the record is kept in memory and mirrored locally,
        and the session completes with ``pending_save`` set so the caller can
        retry.

        Args:
            confirm_short: Save a very short, non-program workout anyway

        Returns:
            SaveOutcome of the attempt
        """
        with self._lock:
            if self._state is SessionState.COMPLETED and self._saved:
                raise InvalidTransitionError("Workout has already been saved")
            self._require('save', SessionState.FINISHING, SessionState.COMPLETED)

            record = self._record
            if not confirm_short and self._is_short(record):
                logger.info("Short workout needs confirmation before saving")
                return SaveOutcome.NEEDS_CONFIRMATION

            try:
                if self.repository is None:
                    raise PersistenceError("No workout repository configured")
                if not record.user_id:
                    raise PersistenceError("User not authenticated")
                record_id = self.repository.save(record)
            except Exception as e:
                logger.error(f"Error saving workout: {e}")
                if self._local_record_id is None:
                    self._local_record_id = f"local_{int(self.clock.now() * 1000)}"
                    self._mirror(record.with_id(self._local_record_id))
                self._pending_save = True
                self._set_state(SessionState.COMPLETED)
                return SaveOutcome.PENDING

            logger.info(f"Workout saved with id {record_id}")
            self._record = record.with_id(record_id)
            self._mirror(self._record, replace_id=self._local_record_id)
            self._local_record_id = None
            self._pending_save = False
            self._saved = True
            self._set_state(SessionState.COMPLETED)
            return SaveOutcome.SAVED

    def discard(self):
        """Throw the session away without persisting anything."""
        with self._lock:
            if self._state is SessionState.COMPLETED and self._saved:
                raise InvalidTransitionError("Cannot discard a workout that has been saved")
            self._require(
                'discard',
                SessionState.INITIALIZING,
                SessionState.ACTIVE,
                SessionState.PAUSED,
                SessionState.FINISHING,
                SessionState.COMPLETED,
            )
            self._close_streams()
            self._awaiting_resolution = False
            if self._local_record_id is not None:
                self._unmirror(self._local_record_id)
                self._local_record_id = None
            self._record = None
            self._pending_save = False
            self._set_state(SessionState.DISCARDED)
            logger.info("Workout discarded")

    def on_foreground(self) -> bool:
        """Restart the location stream or ticker if the OS killed them.

        Returns:
            True if anything had to be restarted
        """
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return False

            restarted = False
            if self._location_subscription is None or not self._location_subscription.active:
                logger.warning("Location stream no longer active, restarting")
                try:
                    self._location_subscription = self._sampler.start_stream(self._on_location)
                    restarted = True
                except Exception as e:
                    logger.error(f"Failed to restart location tracking: {e}")

            if self._ticker_subscription is None or not self._ticker_subscription.active:
                logger.warning("Duration ticker no longer active, restarting")
                self._ticker_subscription = self.timer_service.every(
                    TrackingConfig.DURATION_TICK_INTERVAL_S, self._on_tick
                )
                restarted = True

            return restarted

    def close(self):
        """Release every sensor handle; a session still in progress is discarded."""
        with self._lock:
            if self._state in (SessionState.INITIALIZING, SessionState.ACTIVE, SessionState.PAUSED):
                self.discard()
            else:
                self._close_streams()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Sensor callbacks

    def _on_location(self, sample: LocationSample) -> SampleOutcome:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return SampleOutcome(SampleStatus.NOT_TRACKING)
            outcome = self._processor.process(sample)
            if outcome.route_appended:
                self._notify()
            return outcome

    def _on_tick(self):
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._processor.refresh_duration()
            self._notify()

    def _on_steps(self, steps: int):
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            if self._processor.apply_step_count(steps):
                self._notify()

    # Internals

    def _require(self, command: str, *states: SessionState):
        if self._state not in states:
            raise InvalidTransitionError(
                f"Cannot {command} while {self._state.value}"
            )

    def _set_state(self, state: SessionState):
        if state is not self._state:
            logger.debug(f"Session state {self._state.value} -> {state.value}")
            self._state = state
        self._notify()

    def _notify(self):
        state, stats = self._state, self._processor.stats
        for listener in list(self._listeners):
            try:
                listener(state, stats)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    def _active_duration(self) -> int:
        elapsed = self._carry_over_s
        if self._segment_start is not None:
            elapsed += max(0.0, self.clock.now() - self._segment_start)
        return int(elapsed)

    def _end_segment(self):
        if self._segment_start is not None:
            self._carry_over_s += max(0.0, self.clock.now() - self._segment_start)
            self._segment_start = None

    def _probe_pedometer(self, now: float) -> bool:
        if self._step_counter is None:
            return False
        return self._step_counter.probe(utc_from_timestamp(now))

    def _open_streams(self, fallback_state: SessionState):
        """Enter ACTIVE and acquire stream, ticker and pedometer.

        On a stream failure every acquired handle is released and the
        session returns to ``fallback_state``.
        """
        self._set_state(SessionState.ACTIVE)
        try:
            self._location_subscription = self._sampler.start_stream(self._on_location)
            self._ticker_subscription = self.timer_service.every(
                TrackingConfig.DURATION_TICK_INTERVAL_S, self._on_tick
            )
        except Exception:
            self._close_streams()
            self._segment_start = None
            self._set_state(fallback_state)
            raise

        if not self._processor.use_gps_steps:
            try:
                self._pedometer_subscription = self._step_counter.start(
                    self._processor.stats.steps, self._on_steps
                )
            except Exception as e:
                logger.warning(f"Pedometer subscription failed, falling back to GPS steps: {e}")
                self._processor.use_gps_steps = True

    def _close_streams(self):
        for name in ('_location_subscription', '_ticker_subscription', '_pedometer_subscription'):
            subscription = getattr(self, name)
            if subscription is None:
                continue
            setattr(self, name, None)
            try:
                subscription.remove()
            except Exception as e:
                logger.warning(f"Error releasing {name.strip('_')}: {e}")

    def _enter_finishing(self):
        self._close_streams()
        self._end_segment()
        stats = self._processor.refresh_duration()
        self._record = WorkoutRecord(
            workout_type=self.workout_type,
            distance=stats.distance,
            duration=stats.duration,
            pace=stats.pace,
            avg_speed=stats.avg_speed,
            calories=stats.calories,
            steps=stats.steps,
            route=tuple(self._processor.route),
            start_time=utc_from_timestamp(self.start_timestamp),
            user_id=self.user.user_id,
            program=self.program,
        )
        self._set_state(SessionState.FINISHING)
        logger.info(
            f"Workout finished: {stats.distance_km:.2f} km in {stats.duration}s, "
            f"{len(self._processor.route)} route points"
        )

    def _is_short(self, record: WorkoutRecord) -> bool:
        if record.is_program_workout:
            return False
        return (
            record.duration < TrackingConfig.MIN_SAVE_DURATION_S
            or record.distance < TrackingConfig.MIN_SAVE_DISTANCE_M
        )

    def _mirror(self, record: WorkoutRecord, replace_id: Optional[str] = None):
        if self.local_mirror is None:
            return
        try:
            if self.local_mirror.save_recent(record, replace_id=replace_id):
                logger.info(f"Workout {record.record_id} saved to local storage")
        except Exception as e:
            logger.warning(f"Error saving workout to local storage: {e}")

    def _unmirror(self, record_id: str):
        if self.local_mirror is None:
            return
        try:
            if self.local_mirror.remove(record_id):
                logger.info(f"Workout {record_id} removed from local storage")
        except Exception as e:
            logger.warning(f"Error removing workout from local storage: {e}")
