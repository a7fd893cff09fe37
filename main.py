#!/usr/bin/env python3
"""Main entry point for Cardio Tracker."""

import argparse
import logging
import sys
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from config import settings
from models.workout import UserProfile, WorkoutRecord, WorkoutStats, as_utc
from models.workout_types import WorkoutTypeCatalog
from parsers.track_parser import TrackParser
from clients.replay import (
    ManualTimerService,
    ReplayLocationProvider,
    SimulatedClock,
    StaticBatteryProvider,
    replay_samples,
)
from clients.workout_store import JsonLocalMirror, SqlWorkoutRepository
from tracking.session_tracker import (
    FinishOutcome,
    PrematureFinishChoice,
    SaveOutcome,
    SessionTracker,
)
from utils.metrics import format_duration, format_pace
from visualizers.chart_generator import ChartGenerator
from visualizers.report_generator import ReportGenerator


def setup_logging(verbose: bool = False):
    """Set up logging configuration.

    Args:
        verbose: Enable verbose logging
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(settings.LOG_FILE)
        ]
    )


def parse_pause(value: str) -> Tuple[float, float]:
    """Parse an 'OFFSET:SECONDS' pause window."""
    try:
        offset, length = value.split(':')
        offset, length = float(offset), float(length)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Pause must look like OFFSET:SECONDS, got {value!r}")
    if offset < 0 or length <= 0:
        raise argparse.ArgumentTypeError(f"Pause offset must be >= 0 and length > 0, got {value!r}")
    return offset, length


def _parse_datetime(value: str, end_of_day: bool) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a date like 2024-05-01, got {value!r}")
    # Date only: cover the whole day
    if end_of_day and len(value) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    return as_utc(parsed)


def parse_since(value: str) -> datetime:
    """Parse the start of a period; naive values are UTC."""
    return _parse_datetime(value, end_of_day=False)


def parse_until(value: str) -> datetime:
    """Parse the end of a period; a bare date includes that whole day."""
    return _parse_datetime(value, end_of_day=True)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Track cardio workouts from recorded GPS tracks',
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=(
            'Examples:\n'
            '  %(prog)s replay --file path/to/run.fit --save --report\n'
            '  %(prog)s replay --file walk.csv --type Walking --pause 600:120\n'
            '  %(prog)s workouts --user alice --summary\n'
            '  %(prog)s workouts --user alice --type Running --since 2024-05-01\n'
            '  %(prog)s config --show'
        )
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Replay command
    replay_parser = subparsers.add_parser('replay', help='Replay a recorded track through the live tracker')
    replay_parser.add_argument(
        '--file', '-f', required=True, type=str, help='Path to track file (FIT or CSV)'
    )
    replay_parser.add_argument(
        '--type', '-t', choices=WorkoutTypeCatalog.names(),
        help='Workout type. Taken from the file when it says, Running otherwise'
    )
    replay_parser.add_argument(
        '--user', type=str, help='User id (defaults to TRACKER_USER_ID)'
    )
    replay_parser.add_argument(
        '--weight', type=float, help='Body weight in kg (defaults to TRACKER_WEIGHT_KG)'
    )
    replay_parser.add_argument(
        '--battery', type=float, default=1.0, help='Simulated battery level between 0 and 1'
    )
    replay_parser.add_argument(
        '--pause', type=parse_pause, action='append', default=[],
        help='Pause window as OFFSET:SECONDS from the first sample; repeatable'
    )
    replay_parser.add_argument(
        '--save', action='store_true', help='Save the finished workout'
    )
    replay_parser.add_argument(
        '--confirm-short', action='store_true', help='Save even very short workouts'
    )
    replay_parser.add_argument(
        '--output-dir', type=str, default='output', help='Output directory for reports and charts'
    )
    replay_parser.add_argument(
        '--format', choices=['html', 'markdown'], default=settings.DEFAULT_REPORT_FORMAT, help='Report format'
    )
    replay_parser.add_argument(
        '--charts', action='store_true', help='Generate route charts'
    )
    replay_parser.add_argument(
        '--report', action='store_true', help='Generate workout report'
    )

    # Workouts command
    workouts_parser = subparsers.add_parser('workouts', help='List saved workouts')
    workouts_parser.add_argument(
        '--user', type=str, help='User id (defaults to TRACKER_USER_ID)'
    )
    workouts_parser.add_argument(
        '--local', action='store_true', help='Read the local recent-workout store instead of the database'
    )
    workouts_parser.add_argument(
        '--type', '-t', choices=WorkoutTypeCatalog.names(), help='Only list workouts of this type'
    )
    workouts_parser.add_argument(
        '--since', type=parse_since, help='Only workouts started on or after this date (UTC)'
    )
    workouts_parser.add_argument(
        '--until', type=parse_until, help='Only workouts started on or before this date (UTC)'
    )
    workouts_parser.add_argument(
        '--summary', action='store_true', help='Generate a summary report'
    )
    workouts_parser.add_argument(
        '--charts', action='store_true', help='Generate a history chart'
    )
    workouts_parser.add_argument(
        '--output-dir', type=str, default='output', help='Output directory for reports and charts'
    )
    workouts_parser.add_argument(
        '--format', choices=['html', 'markdown'], default=settings.DEFAULT_REPORT_FORMAT, help='Report format'
    )

    # Config command
    config_parser = subparsers.add_parser('config', help='Manage configuration')
    config_parser.add_argument(
        '--show', action='store_true', help='Show current configuration'
    )

    return parser.parse_args(argv)


class CardioTrackerApp:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.settings = settings
        self.track_parser = TrackParser()
        self.report_generator = ReportGenerator()

    def _user_profile(self, args: argparse.Namespace) -> UserProfile:
        user_id, weight = self.settings.get_user_profile()
        if getattr(args, 'user', None):
            user_id = args.user
        if getattr(args, 'weight', None):
            weight = args.weight
        return UserProfile(user_id=user_id, weight_kg=weight)

    def replay_file(self, file_path: Path, args: argparse.Namespace) -> dict:
        """Run a recorded track through a tracking session.

        Args:
            file_path: Path to track file
            args: Command line arguments

        Returns:
            Dictionary with the record, sample outcome counts and save outcome
        """
        logging.info(f"Replaying track: {file_path}")
        samples = self.track_parser.parse_file(file_path)
        if not samples:
            raise ValueError(f"Failed to parse file: {file_path}")

        workout_type = args.type or self.track_parser.detected_workout_type() or 'Running'
        user = self._user_profile(args)

        clock = SimulatedClock(samples[0].timestamp)
        timers = ManualTimerService(clock)
        provider = ReplayLocationProvider(samples)
        repository = SqlWorkoutRepository() if args.save else None
        local_mirror = JsonLocalMirror() if args.save else None

        tracker = SessionTracker(
            workout_type,
            provider,
            clock=clock,
            timer_service=timers,
            repository=repository,
            local_mirror=local_mirror,
            battery_provider=StaticBatteryProvider(args.battery),
            user=user,
            sleep=lambda seconds: None,
        )

        with tracker:
            tracker.initialize()
            tracker.start()

            first = samples[0].timestamp
            pauses = [(first + offset, first + offset + length) for offset, length in args.pause]
            outcomes = replay_samples(tracker, provider, timers, pauses=pauses)

            if tracker.finish() is FinishOutcome.NEEDS_RESOLUTION:
                logging.warning(
                    f"Track has only {len(tracker.route)} usable points, finishing anyway"
                )
                tracker.resolve_premature_finish(PrematureFinishChoice.FORCE_FINISH)

            save_outcome = None
            if args.save:
                save_outcome = tracker.save(confirm_short=args.confirm_short)
                if save_outcome is SaveOutcome.NEEDS_CONFIRMATION:
                    logging.warning("Workout is very short and was not saved; use --confirm-short to keep it")
                elif save_outcome is SaveOutcome.PENDING:
                    logging.warning("Workout could not be saved to the database; kept in local storage")

            record = tracker.record

        statuses = Counter(o.status.value if o is not None else 'paused' for o in outcomes)
        return {'record': record, 'statuses': dict(statuses), 'save_outcome': save_outcome}

    def list_workouts(self, args: argparse.Namespace) -> List[WorkoutRecord]:
        """Load saved workouts for a user, newest first.

        Falls back to the local recent-workout store when the database
        cannot be read.
        """
        user = self._user_profile(args)
        workout_type = getattr(args, 'type', None)
        if args.local:
            records = JsonLocalMirror().get_recent(user.user_id)
        else:
            if not user.user_id:
                raise ValueError("No user given; pass --user or set TRACKER_USER_ID")
            try:
                repository = SqlWorkoutRepository()
                if workout_type:
                    records = repository.fetch_by_type(user.user_id, workout_type)
                else:
                    records = repository.fetch_by_user(user.user_id)
            except Exception as e:
                logging.warning(f"Could not read workouts from the database, using local storage: {e}")
                records = JsonLocalMirror().get_recent(user.user_id)

        if workout_type:
            records = [r for r in records if r.workout_type == workout_type]
        return [r for r in records if _in_period(r, args.since, args.until)]

    def workout_stats(self, args: argparse.Namespace) -> WorkoutStats:
        """Total distance, duration and calories over the requested period."""
        user = self._user_profile(args)
        if not args.local and user.user_id:
            try:
                return SqlWorkoutRepository().get_stats(user.user_id, args.since, args.until)
            except Exception as e:
                logging.warning(f"Could not read workout stats from the database, using local storage: {e}")
        return WorkoutStats.from_records(JsonLocalMirror().get_recent(user.user_id), args.since, args.until)

    def show_config(self):
        """Display current configuration."""
        user_id, weight = self.settings.get_user_profile()
        logging.info("Current Configuration:")
        logging.info("-" * 30)
        config_dict = {
            'USER_ID': user_id or 'not signed in',
            'WEIGHT_KG': weight,
            'DATABASE_URL': self.settings.DATABASE_URL,
            'LOCAL_MIRROR_FILE': self.settings.LOCAL_MIRROR_FILE,
            'DATA_DIR': self.settings.DATA_DIR,
            'REPORTS_DIR': self.settings.REPORTS_DIR,
            'LOG_LEVEL': self.settings.LOG_LEVEL,
            'MAX_ACCURACY_M': self.settings.TrackingConfig.MAX_ACCURACY_M,
            'MIN_ROUTE_POINTS': self.settings.TrackingConfig.MIN_ROUTE_POINTS,
        }
        for key, value in config_dict.items():
            logging.info(f"{key}: {value}")

    def generate_outputs(self, records: List[WorkoutRecord], args: argparse.Namespace, summary: bool = False):
        """Generate charts and reports for finished workouts.

        Args:
            records: Finished workouts
            args: Command line arguments
            summary: Render one summary over all records instead of one report each
        """
        output_dir = Path(getattr(args, 'output_dir', 'output'))
        output_dir.mkdir(parents=True, exist_ok=True)
        extension = 'html' if args.format == 'html' else 'md'

        if getattr(args, 'charts', False):
            logging.info("Generating charts...")
            chart_generator = ChartGenerator(output_dir / 'charts')
            if summary:
                chart_generator.create_history_chart(records)
            else:
                for record in records:
                    chart_generator.create_route_map(record)
                    chart_generator.create_distance_profile(record)
            logging.info(f"Charts saved to: {output_dir / 'charts'}")

        if summary and getattr(args, 'summary', False):
            content = self.report_generator.generate_summary_report(records, args.format)
            self.report_generator.save_report(content, output_dir / f"summary_report.{extension}")
        elif getattr(args, 'report', False):
            logging.info("Generating reports...")
            for record in records:
                content = self.report_generator.generate_workout_report(record, args.format)
                name = record.record_id or record.start_time.strftime('%Y%m%d_%H%M%S')
                self.report_generator.save_report(content, output_dir / f"workout_{name}.{extension}")


def _in_period(record: WorkoutRecord, since: Optional[datetime], until: Optional[datetime]) -> bool:
    started = as_utc(record.start_time)
    if since is not None and started < since:
        return False
    return until is None or started <= until


def log_record(record: WorkoutRecord):
    logging.info(
        f"{record.start_time:%Y-%m-%d %H:%M} {record.workout_type} - "
        f"{format_duration(record.duration)}, {record.distance_km:.2f} km, "
        f"{format_pace(record.pace)} /km, {record.steps} steps, {record.calories:.0f} kcal"
    )


def main(argv: Optional[List[str]] = None):
    """Main application entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        app = CardioTrackerApp()

        if args.command == 'replay':
            file_path = Path(args.file)
            if not file_path.exists():
                logging.error(f"File not found: {file_path}")
                sys.exit(1)
            result = app.replay_file(file_path, args)
            record = result['record']
            logging.info(f"Sample outcomes: {result['statuses']}")
            log_record(record)
            app.generate_outputs([record], args)

        elif args.command == 'workouts':
            records = app.list_workouts(args)
            logging.info(f"Found {len(records)} workout(s)")
            for record in records:
                log_record(record)
            if args.since or args.until:
                stats = app.workout_stats(args)
                logging.info(
                    f"Period totals: {stats.workout_count} workout(s), {stats.total_distance_km:.2f} km, "
                    f"{format_duration(stats.total_duration)}, {stats.total_calories:.0f} kcal"
                )
            if records and (args.summary or args.charts):
                app.generate_outputs(records, args, summary=True)

        elif args.command == 'config':
            if getattr(args, 'show', False):
                app.show_config()

        else:
            logging.error("Please specify a command: replay, workouts or config")
            sys.exit(1)

    except Exception as e:
        logging.error(f"Error: {e}")
        if args.verbose:
            logging.exception("Full traceback:")
        sys.exit(1)


if __name__ == '__main__':
    main()
