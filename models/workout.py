"""Data models for live workout tracking."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Dict, Any, Iterable, Tuple
from datetime import datetime, timezone


class SessionState(Enum):
    """Lifecycle status of a tracking session."""

    IDLE = 'idle'
    INITIALIZING = 'initializing'
    ACTIVE = 'active'
    PAUSED = 'paused'
    FINISHING = 'finishing'
    COMPLETED = 'completed'
    DISCARDED = 'discarded'


class LocationAccuracy(Enum):
    """Requested accuracy level for the location subsystem."""

    BEST = 'best'
    BALANCED = 'balanced'
    LOW = 'low'


@dataclass(frozen=True)
class LocationSample:
    """A single GPS fix as delivered by the device."""

    latitude: float
    longitude: float
    accuracy: float
    timestamp: float  # epoch seconds
    speed: Optional[float] = None  # m/s, when the device reports it

    def to_route_point(self) -> 'RoutePoint':
        return RoutePoint(latitude=self.latitude, longitude=self.longitude)


@dataclass(frozen=True)
class RoutePoint:
    """A point of the recorded workout path."""

    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, float]:
        return {'latitude': self.latitude, 'longitude': self.longitude}


@dataclass(frozen=True)
class TrackingSettings:
    """Settings passed to the location subscription."""

    accuracy: LocationAccuracy
    min_time_interval_ms: int
    min_distance_interval_m: float


@dataclass(frozen=True)
class SessionStats:
    """Aggregate metrics of the running session.

    Instances are never mutated; every update builds a new one with
    ``evolve`` so observers never see a half-updated snapshot.
    """

    distance: float = 0.0  # meters
    duration: int = 0  # seconds, paused time excluded
    pace: Optional[float] = None  # seconds per km, None until distance > 0
    avg_speed: float = 0.0  # km/h
    steps: int = 0
    calories: float = 0.0

    @property
    def distance_km(self) -> float:
        return self.distance / 1000

    def evolve(self, **changes) -> 'SessionStats':
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class ProgramLink:
    """Link from a tracked workout to a training program slot."""

    program_id: str
    user_program_id: str
    week_index: Optional[int] = None
    workout_index: Optional[int] = None


@dataclass(frozen=True)
class UserProfile:
    """The parts of the signed-in user the tracker needs."""

    user_id: Optional[str] = None
    weight_kg: float = 70.0

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass(frozen=True)
class WorkoutRecord:
    """Immutable summary of a finished workout."""

    workout_type: str
    distance: float  # meters
    duration: int  # seconds
    pace: Optional[float]  # seconds per km
    avg_speed: float  # km/h
    calories: float
    steps: int
    route: Tuple[RoutePoint, ...]
    start_time: datetime
    user_id: Optional[str] = None
    program: Optional[ProgramLink] = None
    record_id: Optional[str] = None
    notes: str = ''

    @property
    def distance_km(self) -> float:
        return self.distance / 1000

    @property
    def duration_minutes(self) -> float:
        return self.duration / 60

    @property
    def is_program_workout(self) -> bool:
        return self.program is not None

    def with_id(self, record_id: str) -> 'WorkoutRecord':
        """Return a copy carrying the id assigned by a store."""
        return replace(self, record_id=record_id)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain JSON-compatible values."""
        data = {
            'id': self.record_id,
            'user_id': self.user_id,
            'type': self.workout_type,
            'distance': self.distance,
            'duration': self.duration,
            'pace': self.pace,
            'avg_speed': self.avg_speed,
            'calories': self.calories,
            'steps': self.steps,
            'route': [point.to_dict() for point in self.route],
            'start_time': self.start_time.isoformat(),
            'notes': self.notes,
        }
        if self.program is not None:
            data['program'] = {
                'program_id': self.program.program_id,
                'user_program_id': self.program.user_program_id,
                'week_index': self.program.week_index,
                'workout_index': self.program.workout_index,
            }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkoutRecord':
        """Build a record from the output of ``to_dict``."""
        program_data = data.get('program')
        program = ProgramLink(**program_data) if program_data else None
        start_time = data['start_time']
        if isinstance(start_time, str):
            start_time = datetime.fromisoformat(start_time)
        return cls(
            workout_type=data['type'],
            distance=float(data.get('distance') or 0.0),
            duration=int(data.get('duration') or 0),
            pace=data.get('pace'),
            avg_speed=float(data.get('avg_speed') or 0.0),
            calories=float(data.get('calories') or 0.0),
            steps=int(data.get('steps') or 0),
            route=tuple(RoutePoint(p['latitude'], p['longitude']) for p in data.get('route', [])),
            start_time=start_time,
            user_id=data.get('user_id'),
            program=program,
            record_id=data.get('id'),
            notes=data.get('notes', ''),
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the workout."""
        return {
            'id': self.record_id,
            'type': self.workout_type,
            'start_time': self.start_time.isoformat(),
            'duration_minutes': round(self.duration_minutes, 1),
            'distance_km': round(self.distance_km, 2),
            'avg_speed_kmh': round(self.avg_speed, 1),
            'calories': round(self.calories),
            'steps': self.steps,
            'route_points': len(self.route),
        }


def utc_from_timestamp(timestamp: float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class WorkoutStats:
    """Totals over a set of workouts."""

    total_distance: float = 0.0  # meters
    total_duration: int = 0  # seconds
    total_calories: float = 0.0
    workout_count: int = 0

    @property
    def total_distance_km(self) -> float:
        return self.total_distance / 1000

    @classmethod
    def from_records(cls, records: Iterable[WorkoutRecord],
                     start: Optional[datetime] = None,
                     end: Optional[datetime] = None) -> 'WorkoutStats':
        """Sum the records started between ``start`` and ``end`` inclusive."""
        selected = []
        for record in records:
            started = as_utc(record.start_time)
            if start is not None and started < as_utc(start):
                continue
            if end is not None and started > as_utc(end):
                continue
            selected.append(record)
        return cls(
            total_distance=sum(r.distance for r in selected),
            total_duration=sum(r.duration for r in selected),
            total_calories=sum(r.calories for r in selected),
            workout_count=len(selected),
        )
