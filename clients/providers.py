"""Interfaces of the device and storage collaborators used by the tracker.

Concrete device bindings live outside this package; the tracker only talks
to these classes, so it can run against recorded or synthetic data.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

from models.workout import (
    LocationAccuracy,
    LocationSample,
    TrackingSettings,
    WorkoutRecord,
    WorkoutStats,
)


class PlatformConfigurationError(Exception):
    """Raised by a location provider when the host app lacks location setup."""


class Subscription:
    """Handle of a long-lived callback registration."""

    def __init__(self, on_remove: Optional[Callable[[], None]] = None):
        self._on_remove = on_remove
        self._active = True

    @property
    def active(self) -> bool:
        """False once removed, or when the platform dropped the stream."""
        return self._active

    def mark_inactive(self):
        """Record that the platform stopped delivering without being asked."""
        self._active = False

    def remove(self):
        """Stop delivery. Safe to call more than once."""
        self._active = False
        callback, self._on_remove = self._on_remove, None
        if callback is not None:
            callback()


class LocationProvider(ABC):
    """Device location subsystem."""

    @abstractmethod
    def services_enabled(self) -> bool:
        ...

    @abstractmethod
    def request_permission(self) -> bool:
        """Ask for foreground location access; True when granted."""

    def request_background_permission(self) -> bool:
        """Ask for background location access; True when granted."""
        return False

    @abstractmethod
    def get_current_fix(self, accuracy: LocationAccuracy, timeout_ms: int) -> LocationSample:
        """Get a fresh fix, raising on timeout or failure."""

    @abstractmethod
    def get_last_known_fix(self) -> Optional[LocationSample]:
        ...

    @abstractmethod
    def subscribe(self, settings: TrackingSettings,
                  on_sample: Callable[[LocationSample], None]) -> Subscription:
        ...


class BatteryProvider(ABC):
    """Device battery level."""

    @abstractmethod
    def get_level(self) -> float:
        """Battery charge as a fraction between 0 and 1."""


class PedometerProvider(ABC):
    """Hardware step counter."""

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def get_count_since(self, start: datetime, end: datetime) -> int:
        ...

    @abstractmethod
    def subscribe(self, on_count: Callable[[int], None]) -> Subscription:
        """Deliver raw cumulative step counts as they change."""


class Clock(ABC):
    """Wall clock in epoch seconds."""

    @abstractmethod
    def now(self) -> float:
        ...


class TimerService(ABC):
    """Schedules repeating callbacks."""

    @abstractmethod
    def every(self, interval_s: float, callback: Callable[[], None]) -> Subscription:
        ...


class WorkoutRepository(ABC):
    """Primary store of finished workouts."""

    @abstractmethod
    def save(self, record: WorkoutRecord) -> str:
        """Persist a record and return its id; raises on failure."""

    @abstractmethod
    def fetch_by_user(self, user_id: str) -> List[WorkoutRecord]:
        ...

    @abstractmethod
    def fetch_by_type(self, user_id: str, workout_type: str) -> List[WorkoutRecord]:
        """A user's workouts of one type, newest first."""

    @abstractmethod
    def get_stats(self, user_id: str, start: Optional[datetime] = None,
                  end: Optional[datetime] = None) -> WorkoutStats:
        """Totals over the workouts started between ``start`` and ``end`` inclusive."""


class LocalMirror(ABC):
    """Best-effort local copy of recent workouts."""

    @abstractmethod
    def save_recent(self, record: WorkoutRecord, replace_id: Optional[str] = None) -> bool:
        """Store a record, dropping the entry with ``replace_id`` if given."""

    @abstractmethod
    def get_recent(self, user_id: Optional[str]) -> List[WorkoutRecord]:
        ...

    @abstractmethod
    def remove(self, record_id: str) -> bool:
        """Drop a stored record; True if anything was removed."""
