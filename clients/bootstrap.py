"""Location permission and initial fix acquisition."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from config.settings import BootstrapConfig
from models.workout import LocationAccuracy, LocationSample
from clients.providers import LocationProvider, PlatformConfigurationError
from tracking.exceptions import PermissionReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionResult:
    """Outcome of a location permission request."""

    granted: bool
    reason: Optional[PermissionReason] = None
    detail: Optional[str] = None


class DeviceBootstrap:
    """Acquires location authorization and a first GPS fix."""

    def __init__(self, location_provider: LocationProvider,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the bootstrap.

        Args:
            location_provider: Device location subsystem
            sleep: Delay function used between fix attempts
        """
        self.location_provider = location_provider
        self._sleep = sleep

    def acquire_permission(self) -> PermissionResult:
        """Request location access.

        Returns:
            PermissionResult; the reason tells services-disabled, user denial
            and platform misconfiguration apart
        """
        logger.info("Requesting location permissions...")

        try:
            if not self.location_provider.services_enabled():
                logger.warning("Location services not enabled")
                return PermissionResult(False, PermissionReason.SERVICES_DISABLED)

            if not self.location_provider.request_permission():
                logger.warning("Foreground location permission denied")
                return PermissionResult(False, PermissionReason.PERMISSION_DENIED)

        except PlatformConfigurationError as e:
            logger.error(f"Location permission configuration error: {e}")
            return PermissionResult(False, PermissionReason.PLATFORM_CONFIG_ERROR, str(e))
        except Exception as e:
            logger.error(f"Error checking location services: {e}")
            return PermissionResult(False, PermissionReason.UNKNOWN, str(e))

        try:
            if not self.location_provider.request_background_permission():
                logger.warning("Background location permission denied; tracking continues in foreground")
        except Exception as e:
            logger.warning(f"Background location permission request failed: {e}")

        return PermissionResult(True)

    def acquire_initial_fix(self) -> Optional[LocationSample]:
        """Get a first position with graduated accuracy.

        Tries each accuracy level of BootstrapConfig in turn, each bounded by
        the fix timeout, then falls back to the last known position.

        Returns:
            LocationSample, or None if no position of any kind is available
        """
        logger.info("Getting initial location...")
        attempts = BootstrapConfig.FIX_ATTEMPT_ACCURACIES

        for attempt, accuracy_name in enumerate(attempts, start=1):
            accuracy = LocationAccuracy(accuracy_name)
            try:
                logger.debug(f"Attempt {attempt} to get initial location ({accuracy.value})...")
                fix = self.location_provider.get_current_fix(
                    accuracy, BootstrapConfig.FIX_TIMEOUT_MS
                )
                if fix is not None:
                    logger.info(f"Initial location: {fix.latitude:.6f}, {fix.longitude:.6f}")
                    return fix
            except Exception as e:
                logger.warning(f"Attempt {attempt} failed: {e}")

            if attempt < len(attempts):
                self._sleep(BootstrapConfig.RETRY_DELAY_S)

        logger.warning("All attempts failed, trying last known position...")
        try:
            fix = self.location_provider.get_last_known_fix()
        except Exception as e:
            logger.error(f"Failed to read last known position: {e}")
            return None

        if fix is None:
            logger.error("Could not get initial location")
        return fix
