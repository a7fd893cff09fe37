"""Parser for recorded GPS tracks (FIT, CSV) used to replay workouts."""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

import pandas as pd

try:
    from fitparse import FitFile
except ImportError:
    raise ImportError("fitparse package required. Install with: pip install fitparse")

from models.workout import LocationSample
from config.settings import SUPPORTED_FORMATS, REPLAY_DEFAULT_ACCURACY_M

logger = logging.getLogger(__name__)

SEMICIRCLES_TO_DEGREES = 180 / 2 ** 31

# FIT sport names mapped to workout types
FIT_SPORTS = {
    'running': 'Running',
    'walking': 'Walking',
    'hiking': 'Walking',
    'cycling': 'Cycling',
    'swimming': 'Swimming',
    'training': 'Strength',
}

CSV_COLUMN_ALIASES = {
    'lat': 'latitude',
    'lon': 'longitude',
    'lng': 'longitude',
    'long': 'longitude',
    'time': 'timestamp',
    'horizontal_accuracy': 'accuracy',
}


def semicircles_to_degrees(value) -> Optional[float]:
    return value * SEMICIRCLES_TO_DEGREES if value is not None else None


class TrackParser:
    """Reads recorded tracks into location samples."""

    def __init__(self, default_accuracy: float = REPLAY_DEFAULT_ACCURACY_M):
        """Initialize track parser.

        Args:
            default_accuracy: Accuracy in meters given to points that carry none
        """
        self.default_accuracy = default_accuracy
        self.sport: Optional[str] = None

    def parse_file(self, file_path: Path) -> Optional[List[LocationSample]]:
        """Parse a track file.

        Args:
            file_path: Path to a .fit or .csv file

        Returns:
            Samples in timestamp order, or None if parsing failed
        """
        file_path = Path(file_path)
        if not file_path.exists():
            logger.error(f"File not found: {file_path}")
            return None

        file_extension = file_path.suffix.lower()
        if file_extension not in SUPPORTED_FORMATS:
            logger.error(f"Unsupported file format: {file_extension}")
            return None

        self.sport = None
        try:
            if file_extension == '.fit':
                df = self._read_fit(file_path)
            else:
                df = self._read_csv(file_path)
        except Exception as e:
            logger.error(f"Failed to parse file {file_path}: {e}")
            return None

        samples = self._dataframe_to_samples(df)
        if not samples:
            logger.error(f"No GPS points found in {file_path}")
            return None

        logger.info(f"Parsed {len(samples)} GPS points from {file_path.name}")
        return samples

    def detected_workout_type(self) -> Optional[str]:
        """Workout type implied by the last parsed file, if it says."""
        if not self.sport:
            return None
        return FIT_SPORTS.get(str(self.sport).lower())

    def _read_fit(self, file_path: Path) -> pd.DataFrame:
        fit_file = FitFile(str(file_path))

        for session in fit_file.get_messages('session'):
            fields = {f.name: f.value for f in session}
            if fields.get('sport') is not None:
                self.sport = fields['sport']
                break

        rows: List[Dict[str, Any]] = []
        for record in fit_file.get_messages('record'):
            fields = {f.name: f.value for f in record}
            lat = semicircles_to_degrees(fields.get('position_lat'))
            lon = semicircles_to_degrees(fields.get('position_long'))
            if lat is None or lon is None or fields.get('timestamp') is None:
                continue
            speed = fields.get('enhanced_speed')
            if speed is None:
                speed = fields.get('speed')
            rows.append({
                'timestamp': fields['timestamp'],
                'latitude': lat,
                'longitude': lon,
                'speed': speed,
            })

        return pd.DataFrame(rows)

    def _read_csv(self, file_path: Path) -> pd.DataFrame:
        df = pd.read_csv(file_path)
        df.columns = [str(c).strip().lower() for c in df.columns]
        df = df.rename(columns={k: v for k, v in CSV_COLUMN_ALIASES.items() if k in df.columns})
        if 'sport' in df.columns and not df['sport'].dropna().empty:
            self.sport = df['sport'].dropna().iloc[0]

        missing = {'timestamp', 'latitude', 'longitude'} - set(df.columns)
        if missing:
            raise ValueError(f"CSV track is missing columns: {', '.join(sorted(missing))}")
        return df

    def _dataframe_to_samples(self, df: pd.DataFrame) -> List[LocationSample]:
        if df.empty:
            return []

        df = df.dropna(subset=['timestamp', 'latitude', 'longitude']).copy()
        if pd.api.types.is_numeric_dtype(df['timestamp']):
            df['epoch'] = df['timestamp'].astype(float)
        else:
            timestamps = pd.to_datetime(df['timestamp'], utc=True)
            df['epoch'] = (timestamps - pd.Timestamp('1970-01-01', tz='UTC')).dt.total_seconds()

        if 'accuracy' not in df.columns:
            df['accuracy'] = self.default_accuracy
        df['accuracy'] = df['accuracy'].fillna(self.default_accuracy)
        if 'speed' not in df.columns:
            df['speed'] = None

        df = df.sort_values('epoch').reset_index(drop=True)

        samples = []
        for row in df.itertuples(index=False):
            speed = row.speed if pd.notna(row.speed) else None
            samples.append(LocationSample(
                latitude=float(row.latitude),
                longitude=float(row.longitude),
                accuracy=float(row.accuracy),
                timestamp=float(row.epoch),
                speed=float(speed) if speed is not None else None,
            ))
        return samples
