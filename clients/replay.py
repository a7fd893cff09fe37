"""Clocks, timers and providers for running the tracker off recorded tracks."""

import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Tuple

from models.workout import LocationAccuracy, LocationSample, TrackingSettings
from clients.providers import (
    BatteryProvider,
    Clock,
    LocationProvider,
    PedometerProvider,
    Subscription,
    TimerService,
)

logger = logging.getLogger(__name__)


class SystemClock(Clock):
    """Wall clock backed by ``time.time``."""

    def now(self) -> float:
        return time.time()


class SimulatedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, timestamp: float):
        if timestamp < self._now:
            raise ValueError(f"Clock cannot go back from {self._now} to {timestamp}")
        self._now = float(timestamp)

    def advance(self, seconds: float):
        self.set(self._now + seconds)


class ThreadingTimerService(TimerService):
    """Repeating callbacks on a daemon thread per timer."""

    def __init__(self, join_timeout_s: float = 1.0):
        self.join_timeout_s = join_timeout_s

    def every(self, interval_s: float, callback: Callable[[], None]) -> Subscription:
        stopped = threading.Event()

        def run():
            while not stopped.wait(interval_s):
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Timer callback failed: {e}")

        thread = threading.Thread(target=run, name='duration-ticker', daemon=True)
        thread.start()

        def stop():
            stopped.set()
            if threading.current_thread() is not thread:
                thread.join(self.join_timeout_s)
                if thread.is_alive():
                    logger.warning(f"Timer thread still running after {self.join_timeout_s}s")

        return Subscription(on_remove=stop)


class _ManualTimer:
    def __init__(self, interval_s: float, callback: Callable[[], None], next_due: float):
        self.interval_s = interval_s
        self.callback = callback
        self.next_due = next_due
        self.subscription = Subscription()


class ManualTimerService(TimerService):
    """Timers driven by a SimulatedClock.

    ``advance_to`` moves the clock forward and fires every timer that comes
    due on the way, in time order.
    """

    def __init__(self, clock: SimulatedClock):
        self.clock = clock
        self._timers: List[_ManualTimer] = []

    def every(self, interval_s: float, callback: Callable[[], None]) -> Subscription:
        timer = _ManualTimer(interval_s, callback, self.clock.now() + interval_s)
        self._timers.append(timer)
        return timer.subscription

    @property
    def active_timers(self) -> int:
        self._timers = [t for t in self._timers if t.subscription.active]
        return len(self._timers)

    def advance_to(self, timestamp: float):
        while True:
            due = [t for t in self._timers if t.subscription.active and t.next_due <= timestamp]
            if not due:
                break
            timer = min(due, key=lambda t: t.next_due)
            self.clock.set(timer.next_due)
            timer.next_due += timer.interval_s
            timer.callback()
        self.clock.set(max(timestamp, self.clock.now()))

    def advance(self, seconds: float):
        self.advance_to(self.clock.now() + seconds)


class ReplayLocationProvider(LocationProvider):
    """Location provider fed from a list of recorded samples.

    Samples are pushed to the active subscriber with ``emit``; the first
    recorded sample doubles as the initial fix.
    """

    def __init__(self, samples: Iterable[LocationSample] = (), services_on: bool = True,
                 permission_granted: bool = True):
        self.samples = list(samples)
        self.services_on = services_on
        self.permission_granted = permission_granted
        self.subscribe_calls: List[TrackingSettings] = []
        self._callback: Optional[Callable[[LocationSample], None]] = None
        self._subscription: Optional[Subscription] = None

    def services_enabled(self) -> bool:
        return self.services_on

    def request_permission(self) -> bool:
        return self.permission_granted

    def request_background_permission(self) -> bool:
        return self.permission_granted

    def get_current_fix(self, accuracy: LocationAccuracy, timeout_ms: int) -> LocationSample:
        if not self.samples:
            raise TimeoutError(f"No fix within {timeout_ms} ms")
        return self.samples[0]

    def get_last_known_fix(self) -> Optional[LocationSample]:
        return self.samples[0] if self.samples else None

    def subscribe(self, settings: TrackingSettings,
                  on_sample: Callable[[LocationSample], None]) -> Subscription:
        self.subscribe_calls.append(settings)
        self._callback = on_sample
        self._subscription = Subscription(on_remove=self._unsubscribe)
        return self._subscription

    def _unsubscribe(self):
        self._callback = None

    @property
    def subscribed(self) -> bool:
        return self._callback is not None

    def emit(self, sample: LocationSample):
        """Deliver one sample to the subscriber; dropped when nobody listens."""
        if self._callback is not None:
            return self._callback(sample)
        return None

    def kill_stream(self):
        """Drop the subscription the way an OS would, without the owner knowing."""
        if self._subscription is not None:
            self._subscription.mark_inactive()
        self._callback = None


class StaticBatteryProvider(BatteryProvider):
    """Battery pinned at a fixed level."""

    def __init__(self, level: float = 1.0):
        self.level = level

    def get_level(self) -> float:
        return self.level


class UnavailablePedometer(PedometerProvider):
    """Pedometer of a device without step hardware."""

    def is_available(self) -> bool:
        return False

    def get_count_since(self, start, end) -> int:
        raise RuntimeError("Pedometer not available")

    def subscribe(self, on_count: Callable[[int], None]) -> Subscription:
        raise RuntimeError("Pedometer not available")


def replay_samples(tracker, provider: ReplayLocationProvider, timers: ManualTimerService,
                   samples: Optional[Iterable[LocationSample]] = None,
                   pauses: Iterable[Tuple[float, float]] = ()) -> list:
    """Feed recorded samples through a started tracker in timestamp order.

    The simulated clock is advanced to each sample's timestamp first, so the
    duration ticker fires for every second between samples. Samples that
    arrive while the tracker is paused are dropped by the provider and show
    up as None in the result.

    Args:
        tracker: An ACTIVE SessionTracker using ``provider`` and ``timers``
        provider: Provider the tracker subscribed to
        timers: Timer service holding the tracker's ticker
        samples: Samples to replay, the provider's own list if omitted
        pauses: (pause_at, resume_at) epoch second pairs

    Returns:
        The SampleOutcome of every sample
    """
    pending_pauses = sorted(pauses)
    resume_at = None
    outcomes = []
    for sample in (provider.samples if samples is None else samples):
        if resume_at is not None and resume_at <= sample.timestamp:
            timers.advance_to(resume_at)
            tracker.resume()
            resume_at = None

        while resume_at is None and pending_pauses and pending_pauses[0][0] <= sample.timestamp:
            pause_at, resume_at = pending_pauses.pop(0)
            timers.advance_to(pause_at)
            tracker.pause()
            if resume_at <= sample.timestamp:
                timers.advance_to(resume_at)
                tracker.resume()
                resume_at = None

        if sample.timestamp > timers.clock.now():
            timers.advance_to(sample.timestamp)
        outcomes.append(provider.emit(sample))
    logger.info(f"Replayed {len(outcomes)} samples")
    return outcomes
