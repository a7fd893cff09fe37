"""Battery adaptive GPS sampling."""

import logging
from typing import Callable, Optional, Tuple

from config.settings import SamplerConfig
from models.workout import LocationAccuracy, LocationSample, TrackingSettings
from clients.providers import BatteryProvider, LocationProvider, Subscription
from tracking.exceptions import StreamStartError

logger = logging.getLogger(__name__)


def _settings_from_tier(tier: Tuple[str, int, float]) -> TrackingSettings:
    accuracy, interval_ms, distance_m = tier
    return TrackingSettings(
        accuracy=LocationAccuracy(accuracy),
        min_time_interval_ms=interval_ms,
        min_distance_interval_m=distance_m,
    )


def select_tracking_config(battery_level: float) -> TrackingSettings:
    """Choose GPS settings for a battery level.

    Args:
        battery_level: Charge fraction between 0 and 1

    Returns:
        TrackingSettings for the matching tier
    """
    if battery_level > SamplerConfig.HIGH_BATTERY_THRESHOLD:
        return _settings_from_tier(SamplerConfig.TIERS['high'])
    if battery_level > SamplerConfig.LOW_BATTERY_THRESHOLD:
        return _settings_from_tier(SamplerConfig.TIERS['balanced'])
    return _settings_from_tier(SamplerConfig.TIERS['low'])


def fallback_tracking_config() -> TrackingSettings:
    """Conservative settings used when the selected ones fail to start."""
    return _settings_from_tier(SamplerConfig.FALLBACK)


class AdaptiveSampler:
    """Starts the location stream with settings matched to the battery."""

    def __init__(self, location_provider: LocationProvider, battery_provider: Optional[BatteryProvider]):
        self.location_provider = location_provider
        self.battery_provider = battery_provider
        self.last_battery_level: Optional[float] = None
        self.last_settings: Optional[TrackingSettings] = None

    def read_battery_level(self) -> float:
        """Read the battery level, assuming a half charge when it can't be read."""
        if self.battery_provider is None:
            level = SamplerConfig.ASSUMED_BATTERY_LEVEL
        else:
            try:
                level = float(self.battery_provider.get_level())
                logger.info(f"Battery level: {round(level * 100)}%")
            except Exception as e:
                level = SamplerConfig.ASSUMED_BATTERY_LEVEL
                logger.warning(f"Error getting battery level, assuming {round(level * 100)}%: {e}")

        self.last_battery_level = level
        return level

    def start_stream(self, on_sample: Callable[[LocationSample], None]) -> Subscription:
        """Subscribe to location updates.

        The battery is read on every call, so a resume after a long pause
        picks a tier for the current charge.

        Raises:
            StreamStartError: If both the selected and the fallback settings fail
        """
        settings = select_tracking_config(self.read_battery_level())
        logger.info(
            f"Starting location tracking with {settings.accuracy.value} accuracy, "
            f"{settings.min_time_interval_ms} ms / {settings.min_distance_interval_m} m"
        )

        try:
            subscription = self.location_provider.subscribe(settings, on_sample)
            self.last_settings = settings
            return subscription
        except Exception as e:
            logger.error(f"Error starting location tracking: {e}")

        settings = fallback_tracking_config()
        logger.info("Using fallback location tracking config")
        try:
            subscription = self.location_provider.subscribe(settings, on_sample)
        except Exception as e:
            raise StreamStartError(f"Failed to start location tracking: {e}") from e

        self.last_settings = settings
        return subscription
