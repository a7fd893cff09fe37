"""Report generator for finished workouts."""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime
import jinja2
import pandas as pd
from markdown import markdown

from models.workout import WorkoutRecord
from utils.geo import route_length_m
from utils.metrics import format_pace

logger = logging.getLogger(__name__)

REPORT_VERSION = "1.0.0"
REPORT_TOOL = "Cardio Tracker"


class ReportGenerator:
    """Generate workout reports in markdown or HTML."""

    def __init__(self, template_dir: Path = None):
        """Initialize report generator.

        Args:
            template_dir: Directory containing report templates
        """
        self.template_dir = template_dir or Path(__file__).parent / 'templates'

        self.jinja_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(self.template_dir),
            autoescape=jinja2.select_autoescape(['html', 'xml'])
        )

        self.jinja_env.filters['format_duration'] = self._format_duration
        self.jinja_env.filters['format_distance'] = self._format_distance
        self.jinja_env.filters['format_speed'] = self._format_speed
        self.jinja_env.filters['format_pace'] = self._format_pace
        self.jinja_env.filters['format_calories'] = self._format_calories

    def generate_workout_report(self, record: WorkoutRecord, format: str = 'markdown') -> str:
        """Generate a report for one workout.

        Args:
            record: Finished workout
            format: Report format ('markdown', 'html')

        Returns:
            Rendered report content
        """
        report_data = self._prepare_report_data(record)

        if format in ('markdown', 'md'):
            return self._render('workout_report.md', report_data)
        elif format == 'html':
            return self._render_html('workout_report.md', report_data, record.workout_type)
        else:
            raise ValueError(f"Unsupported format: {format}")

    def generate_summary_report(self, records: List[WorkoutRecord], format: str = 'markdown') -> str:
        """Generate a summary report over several workouts.

        Args:
            records: Finished workouts
            format: Report format ('markdown', 'html')

        Returns:
            Rendered report content
        """
        summary_data = self._aggregate_workout_data(records)

        if format in ('markdown', 'md'):
            return self._render('summary_report.md', summary_data)
        elif format == 'html':
            return self._render_html('summary_report.md', summary_data, 'Workout Summary')
        else:
            raise ValueError(f"Unsupported format: {format}")

    def save_report(self, content: str, output_path: Path) -> Path:
        """Write rendered report content to a file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(content, encoding='utf-8')
        logger.info(f"Report saved to {output_path}")
        return output_path

    def _render(self, template_name: str, data: Dict[str, Any]) -> str:
        template = self.jinja_env.get_template(template_name)
        return template.render(**data)

    def _render_html(self, template_name: str, data: Dict[str, Any], title: str) -> str:
        """Render a markdown template and wrap its HTML in the page layout."""
        body = markdown(self._render(template_name, data), extensions=['tables'])
        return self._render('report_page.html', {'title': title, 'body': body, 'report': data['report']})

    def _report_info(self) -> Dict[str, Any]:
        return {
            'generated_at': datetime.now().isoformat(timespec='seconds'),
            'version': REPORT_VERSION,
            'tool': REPORT_TOOL,
        }

    def _prepare_report_data(self, record: WorkoutRecord) -> Dict[str, Any]:
        """Prepare data for a single workout report.

        Args:
            record: Finished workout

        Returns:
            Dictionary with report data
        """
        route = list(record.route)
        workout = {
            'id': record.record_id,
            'type': record.workout_type,
            'start_time': record.start_time.strftime('%Y-%m-%d %H:%M'),
            'duration': record.duration,
            'distance': record.distance,
            'pace': record.pace,
            'avg_speed': record.avg_speed,
            'calories': record.calories,
            'steps': record.steps,
            'notes': record.notes,
            'route_points': len(route),
            'route_length': route_length_m(route),
            'start_point': route[0] if route else None,
            'end_point': route[-1] if route else None,
            'program': record.program,
        }
        return {'workout': workout, 'report': self._report_info()}

    def _aggregate_workout_data(self, records: List[WorkoutRecord]) -> Dict[str, Any]:
        """Aggregate data from multiple workouts.

        Args:
            records: Finished workouts

        Returns:
            Dictionary with aggregated data
        """
        df = pd.DataFrame([
            {
                'date': r.start_time,
                'type': r.workout_type,
                'duration': r.duration,
                'distance': r.distance,
                'calories': r.calories,
                'steps': r.steps,
            }
            for r in records
        ], columns=['date', 'type', 'duration', 'distance', 'calories', 'steps'])

        if df.empty:
            aggregations = {
                'total_workouts': 0,
                'total_duration': 0,
                'total_distance': 0.0,
                'total_calories': 0.0,
                'total_steps': 0,
                'avg_duration': 0,
                'avg_distance': 0.0,
                'workouts_by_type': {},
            }
        else:
            aggregations = {
                'total_workouts': len(df),
                'total_duration': int(df['duration'].sum()),
                'total_distance': float(df['distance'].sum()),
                'total_calories': float(df['calories'].sum()),
                'total_steps': int(df['steps'].sum()),
                'avg_duration': float(df['duration'].mean()),
                'avg_distance': float(df['distance'].mean()),
                'workouts_by_type': df['type'].value_counts().to_dict(),
            }

        rows = [
            {
                'date': r.start_time.strftime('%Y-%m-%d'),
                'type': r.workout_type,
                'duration': r.duration,
                'distance': r.distance,
                'pace': r.pace,
                'calories': r.calories,
            }
            for r in sorted(records, key=lambda r: r.start_time, reverse=True)
        ]

        return {
            'workouts': rows,
            'aggregations': aggregations,
            'report': self._report_info(),
        }

    def _format_duration(self, seconds: float) -> str:
        """Format duration in seconds to human-readable format.

        Args:
            seconds: Duration in seconds

        Returns:
            Formatted duration string
        """
        if seconds is None or pd.isna(seconds):
            return ""
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        seconds = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"

    def _format_distance(self, meters: float) -> str:
        """Format distance in meters to human-readable format."""
        if meters >= 1000:
            return f"{meters/1000:.2f} km"
        else:
            return f"{meters:.0f} m"

    def _format_speed(self, kmh: float) -> str:
        return f"{kmh:.1f} km/h"

    def _format_pace(self, pace: Optional[float]) -> str:
        return f"{format_pace(pace)} /km"

    def _format_calories(self, kcal: float) -> str:
        return f"{kcal:.0f} kcal"
