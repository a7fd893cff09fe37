"""Data models for Cardio Tracker."""

from .workout import (
    SessionState,
    LocationAccuracy,
    LocationSample,
    RoutePoint,
    TrackingSettings,
    SessionStats,
    ProgramLink,
    UserProfile,
    WorkoutRecord,
)
from .workout_types import WorkoutTypeDefinition, WorkoutTypeCatalog

__all__ = [
    'SessionState',
    'LocationAccuracy',
    'LocationSample',
    'RoutePoint',
    'TrackingSettings',
    'SessionStats',
    'ProgramLink',
    'UserProfile',
    'WorkoutRecord',
    'WorkoutTypeDefinition',
    'WorkoutTypeCatalog',
]
