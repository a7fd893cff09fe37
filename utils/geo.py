"""Great-circle distance helpers for GPS coordinates."""

import math
import numpy as np
from typing import Sequence

from config.settings import TrackingConfig
from models.workout import RoutePoint


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float,
                radius_km: float = TrackingConfig.EARTH_RADIUS_KM) -> float:
    """Compute the great-circle distance between two lat/lon points.

    Args:
        lat1: Latitude of the first point in degrees
        lon1: Longitude of the first point in degrees
        lat2: Latitude of the second point in degrees
        lon2: Longitude of the second point in degrees
        radius_km: Sphere radius in kilometers

    Returns:
        Distance in meters
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return radius_km * 1000 * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def route_segment_lengths(route: Sequence[RoutePoint],
                          radius_km: float = TrackingConfig.EARTH_RADIUS_KM) -> np.ndarray:
    """Compute the length of every segment of a route in one pass.

    Args:
        route: Ordered route points

    Returns:
        Array of len(route) - 1 segment lengths in meters
    """
    if len(route) < 2:
        return np.zeros(0)

    lat = np.radians(np.array([p.latitude for p in route], dtype=float))
    lon = np.radians(np.array([p.longitude for p in route], dtype=float))

    dphi = np.diff(lat)
    dlam = np.diff(lon)
    a = np.sin(dphi / 2) ** 2 + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(dlam / 2) ** 2
    return radius_km * 1000 * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def route_length_m(route: Sequence[RoutePoint]) -> float:
    """Total polyline length of a route in meters.

    This is the length of the drawn line, including points the jump filter
    kept out of the tracked distance.
    """
    return float(np.sum(route_segment_lengths(route)))
