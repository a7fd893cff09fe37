"""Chart generator for recorded routes and workout history."""

import logging
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import pandas as pd
import numpy as np
from pathlib import Path
from typing import List, Optional

from config.settings import CHART_DPI, CHART_FORMAT
from models.workout import WorkoutRecord
from utils.geo import route_segment_lengths
from utils.metrics import format_duration, format_pace

logger = logging.getLogger(__name__)


class ChartGenerator:
    """Generate route maps and history charts for finished workouts."""

    def __init__(self, output_dir: Path = None):
        """Initialize chart generator.

        Args:
            output_dir: Directory to save charts
        """
        self.output_dir = Path(output_dir) if output_dir else Path('charts')
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # Set style
        plt.style.use('seaborn-v0_8')
        sns.set_palette("husl")

    def _chart_path(self, name: str) -> Path:
        return self.output_dir / f"{name}.{CHART_FORMAT}"

    def create_route_map(self, record: WorkoutRecord, filename: Optional[str] = None) -> Optional[str]:
        """Draw the route polyline with start and end markers.

        Longitude is scaled by the cosine of the mean latitude so the shape is
        not stretched away from the equator.

        Args:
            record: Finished workout
            filename: Chart file name without extension

        Returns:
            Path to the saved chart, or None if the route is too short to draw
        """
        if len(record.route) < 2:
            logger.warning("Route has fewer than 2 points, skipping route map")
            return None

        lat = np.array([p.latitude for p in record.route])
        lon = np.array([p.longitude for p in record.route])

        fig, ax = plt.subplots(figsize=(8, 8))
        ax.plot(lon, lat, linewidth=2.5, label='Route')
        ax.scatter(lon[0], lat[0], s=80, color='green', zorder=3, label='Start')
        ax.scatter(lon[-1], lat[-1], s=80, color='red', zorder=3, label='Finish')

        ax.set_aspect(1 / np.cos(np.radians(lat.mean())))
        ax.set_xlabel('Longitude')
        ax.set_ylabel('Latitude')
        ax.set_title(
            f"{record.workout_type}: {record.distance_km:.2f} km in {format_duration(record.duration)}"
            f" ({format_pace(record.pace)} /km)"
        )
        ax.legend(loc='best')

        path = self._chart_path(filename or f"route_{record.record_id or 'workout'}")
        fig.savefig(path, dpi=CHART_DPI, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Route map saved to {path}")
        return str(path)

    def create_distance_profile(self, record: WorkoutRecord, filename: Optional[str] = None) -> Optional[str]:
        """Plot cumulative route length against route point index.

        Returns:
            Path to the saved chart, or None if the route is too short to draw
        """
        segments = route_segment_lengths(record.route)
        if segments.size == 0:
            logger.warning("Route has fewer than 2 points, skipping distance profile")
            return None

        cumulative_km = np.concatenate([[0.0], np.cumsum(segments)]) / 1000

        fig, ax = plt.subplots(figsize=(10, 4))
        ax.plot(np.arange(len(cumulative_km)), cumulative_km, linewidth=2)
        ax.axhline(record.distance_km, linestyle='--', color='gray', label='Tracked distance')
        ax.set_xlabel('Route point')
        ax.set_ylabel('Route length (km)')
        ax.set_title('Route Length Profile')
        ax.legend(loc='upper left')

        path = self._chart_path(filename or f"profile_{record.record_id or 'workout'}")
        fig.savefig(path, dpi=CHART_DPI, bbox_inches='tight')
        plt.close(fig)
        return str(path)

    def create_history_chart(self, records: List[WorkoutRecord], filename: str = 'workout_history') -> Optional[str]:
        """Bar chart of distance per workout, colored by workout type.

        Returns:
            Path to the saved chart, or None when there are no workouts
        """
        if not records:
            logger.warning("No workouts to chart")
            return None

        df = pd.DataFrame({
            'date': [r.start_time.strftime('%Y-%m-%d') for r in records],
            'distance_km': [r.distance_km for r in records],
            'type': [r.workout_type for r in records],
        }).sort_values('date')

        fig, ax = plt.subplots(figsize=(10, 5))
        sns.barplot(data=df, x='date', y='distance_km', hue='type', ax=ax)
        ax.set_xlabel('Date')
        ax.set_ylabel('Distance (km)')
        ax.set_title('Workout History')
        ax.tick_params(axis='x', rotation=45)

        path = self._chart_path(filename)
        fig.savefig(path, dpi=CHART_DPI, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"History chart saved to {path}")
        return str(path)
