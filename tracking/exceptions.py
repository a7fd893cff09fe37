"""Errors the tracker surfaces to its caller."""

from enum import Enum
from typing import Optional


class PermissionReason(Enum):
    """Why location access could not be obtained."""

    SERVICES_DISABLED = 'location_services_disabled'
    PERMISSION_DENIED = 'permission_denied'
    PLATFORM_CONFIG_ERROR = 'platform_config_error'
    UNKNOWN = 'unknown'


class TrackerError(Exception):
    """Base class for tracker failures that need caller action."""


class LocationPermissionError(TrackerError):
    """Location access was denied or is unavailable."""

    def __init__(self, reason: PermissionReason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        message = f"Location permission not granted: {reason.value}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class FixAcquisitionError(TrackerError):
    """No position of any kind could be obtained."""


class StreamStartError(TrackerError):
    """The location stream could not be started, even with the fallback settings."""


class InvalidTransitionError(TrackerError):
    """A command was issued in a state that does not allow it."""


class PersistenceError(TrackerError):
    """A workout record could not be written to the primary store."""
