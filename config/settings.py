"""Configuration settings for Cardio Tracker."""

import os
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Logger for this module
logger = logging.getLogger(__name__)

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
REPORTS_DIR = BASE_DIR / "reports"

# Create directories if they don't exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'workouts.db'}")
LOCAL_MIRROR_FILE = DATA_DIR / "recent_workouts.json"

# Default body weight used for calorie estimates when the profile has none
DEFAULT_WEIGHT_KG = 70.0

# Flag to ensure deprecation warning is logged only once per process
_deprecation_warned = False


def get_user_profile() -> Tuple[Optional[str], float]:
    """Get the signed-in user id and body weight from environment variables.

    Prefers TRACKER_USER_ID. If it is not set but TRACKER_USERNAME is
    present, uses TRACKER_USERNAME as the id with a one-time deprecation
    warning. A missing user id means nobody is signed in.

    Returns:
        Tuple of (user_id or None, weight in kg)

    Raises:
        ValueError: If TRACKER_WEIGHT_KG is set but is not a positive number
    """
    global _deprecation_warned

    user_id = os.getenv("TRACKER_USER_ID")
    if not user_id:
        username = os.getenv("TRACKER_USERNAME")
        if username:
            if not _deprecation_warned:
                logger.warning(
                    "TRACKER_USERNAME is deprecated. Please use TRACKER_USER_ID instead. "
                    "TRACKER_USERNAME will be removed in a future version."
                )
                _deprecation_warned = True
            user_id = username

    raw_weight = os.getenv("TRACKER_WEIGHT_KG")
    if raw_weight is None or raw_weight == "":
        return user_id or None, DEFAULT_WEIGHT_KG

    try:
        weight = float(raw_weight)
    except ValueError:
        raise ValueError(f"TRACKER_WEIGHT_KG must be a number, got {raw_weight!r}")
    if weight <= 0:
        raise ValueError(f"TRACKER_WEIGHT_KG must be positive, got {weight}")

    return user_id or None, weight


# Location stream processing
class TrackingConfig:
    """Thresholds used by the location stream processor and session controller."""

    # Samples with horizontal accuracy worse than this are dropped entirely
    MAX_ACCURACY_M = 50.0
    # Samples closer than this to the reference sample are redundant bursts
    MIN_TIME_BETWEEN_UPDATES_MS = 250
    # Minimum displacement counted as movement
    MIN_DISTANCE_CHANGE_M = 1.0
    WALKING_DISTANCE_FACTOR = 0.5
    # Force a metrics recompute during very slow movement
    FORCED_RECOMPUTE_INTERVAL_S = 5.0

    DURATION_TICK_INTERVAL_S = 1.0
    EARTH_RADIUS_KM = 6371.0

    # Finishing with fewer route points requires an explicit resolution
    MIN_ROUTE_POINTS = 5

    # Records below either limit need confirmation before saving
    MIN_SAVE_DURATION_S = 30
    MIN_SAVE_DISTANCE_M = 100.0

    # Pedometer availability probe window
    PEDOMETER_PROBE_WINDOW_S = 3600


# Battery adaptive sampling
class SamplerConfig:
    """Battery tiers for GPS sampling."""

    HIGH_BATTERY_THRESHOLD = 0.5
    LOW_BATTERY_THRESHOLD = 0.2
    ASSUMED_BATTERY_LEVEL = 0.5

    # accuracy, min time interval (ms), min distance interval (m)
    TIERS: Dict[str, Tuple[str, int, float]] = {
        'high': ('best', 1000, 1.0),
        'balanced': ('balanced', 2000, 2.0),
        'low': ('low', 3000, 5.0),
    }

    # Used once if subscribing with the selected tier fails
    FALLBACK: Tuple[str, int, float] = ('balanced', 1000, 5.0)


# Initial fix acquisition
class BootstrapConfig:
    """Retry policy for the initial GPS fix."""

    FIX_ATTEMPT_ACCURACIES = ('best', 'balanced', 'low')
    FIX_TIMEOUT_MS = 10000
    RETRY_DELAY_S = 1.0


# Recorded track replay
REPLAY_DEFAULT_ACCURACY_M = float(os.getenv("REPLAY_DEFAULT_ACCURACY_M", "5"))
SUPPORTED_FORMATS = ['.fit', '.csv']

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = os.getenv("LOG_FILE", "cardio_tracker.log")

# Report generation
DEFAULT_REPORT_FORMAT = "markdown"
CHART_DPI = 150
CHART_FORMAT = "png"
