"""Derived workout metrics and display formatting."""

import math
from typing import Optional

from models.workout_types import WorkoutTypeCatalog

PACE_PLACEHOLDER = '--:--'


def calculate_pace(duration_seconds: float, distance_m: float) -> Optional[float]:
    """Pace in seconds per kilometer, or None while no distance is covered."""
    if not distance_m or distance_m <= 0:
        return None
    return duration_seconds / (distance_m / 1000)


def calculate_avg_speed(distance_m: float, duration_seconds: float) -> float:
    """Average speed in km/h; zero before any time has elapsed."""
    if not duration_seconds or duration_seconds <= 0:
        return 0.0
    return (distance_m / 1000) / (duration_seconds / 3600)


def calculate_calories(workout_type: str, weight_kg: float, duration_seconds: float) -> float:
    """MET based calorie estimate.

    calories = MET x body weight (kg) x elapsed hours. Always computed from
    the cumulative duration, never accumulated.
    """
    met = WorkoutTypeCatalog.get_met(workout_type)
    return met * weight_kg * (duration_seconds / 3600)


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    if seconds is None:
        return '00:00:00'
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_pace(pace_seconds_per_km: Optional[float]) -> str:
    """Format a pace as M:SS per km, or a placeholder when undefined."""
    if pace_seconds_per_km is None:
        return PACE_PLACEHOLDER
    if math.isnan(pace_seconds_per_km) or math.isinf(pace_seconds_per_km) or pace_seconds_per_km <= 0:
        return PACE_PLACEHOLDER
    minutes = int(pace_seconds_per_km // 60)
    seconds = int(pace_seconds_per_km % 60)
    return f"{minutes}:{seconds:02d}"
