"""Workout persistence: SQL repository and the local JSON mirror."""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from config.settings import LOCAL_MIRROR_FILE
from db.models import WorkoutRow
from db.session import SessionLocal, init_db
from models.workout import ProgramLink, RoutePoint, WorkoutRecord, WorkoutStats, as_utc
from clients.providers import LocalMirror, WorkoutRepository
from tracking.exceptions import PersistenceError

logger = logging.getLogger(__name__)

MAX_RECENT_WORKOUTS = 10
ANONYMOUS_USER = 'anonymous'
RECENT_WORKOUTS_KEY = 'recent_workouts'
LAST_WORKOUT_KEY = 'last_workout'


def _row_to_record(row: WorkoutRow) -> WorkoutRecord:
    route = tuple(RoutePoint(p['latitude'], p['longitude']) for p in json.loads(row.route_json or '[]'))
    program = ProgramLink(**json.loads(row.program_json)) if row.program_json else None
    return WorkoutRecord(
        workout_type=row.workout_type,
        distance=row.distance_m or 0.0,
        duration=row.duration_s or 0,
        pace=row.pace_s_per_km,
        avg_speed=row.avg_speed_kmh or 0.0,
        calories=row.calories or 0.0,
        steps=row.steps or 0,
        route=route,
        # SQLite drops the offset even on timezone-aware columns
        start_time=as_utc(row.start_time),
        user_id=row.user_id,
        program=program,
        record_id=str(row.id),
        notes=row.notes or '',
    )


class SqlWorkoutRepository(WorkoutRepository):
    """Stores finished workouts in the SQL database."""

    def __init__(self, db_session: Optional[Session] = None, create_tables: bool = True):
        """Initialize the repository.

        Args:
            db_session: Optional SQLAlchemy session; a new one is opened per call otherwise
            create_tables: Create the tables on first use
        """
        self.db_session = db_session
        if create_tables:
            init_db(bind=db_session.get_bind() if db_session is not None else None)

    def _open(self):
        if self.db_session is not None:
            return self.db_session, False
        return SessionLocal(), True

    def save(self, record: WorkoutRecord) -> str:
        """Insert a workout and return its new id.

        Raises:
            PersistenceError: If the record has no user or the write fails
        """
        if not record.user_id:
            raise PersistenceError("Workout has no user id")

        db, close_session = self._open()
        try:
            row = WorkoutRow(
                user_id=record.user_id,
                workout_type=record.workout_type,
                start_time=as_utc(record.start_time),
                distance_m=record.distance,
                duration_s=record.duration,
                pace_s_per_km=record.pace,
                avg_speed_kmh=record.avg_speed,
                calories=record.calories,
                steps=record.steps,
                notes=record.notes,
                route_json=json.dumps([p.to_dict() for p in record.route]),
                program_json=json.dumps(record.to_dict()['program']) if record.program else None,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            logger.info(f"Stored workout {row.id} for user {record.user_id}")
            return str(row.id)
        except Exception as e:
            db.rollback()
            raise PersistenceError(f"Failed to store workout: {e}") from e
        finally:
            if close_session:
                db.close()

    def fetch_by_user(self, user_id: str) -> List[WorkoutRecord]:
        """Get a user's workouts, newest first."""
        db, close_session = self._open()
        try:
            rows = (
                db.query(WorkoutRow)
                .filter_by(user_id=user_id)
                .order_by(WorkoutRow.start_time.desc())
                .all()
            )
            return [_row_to_record(row) for row in rows]
        finally:
            if close_session:
                db.close()

    def fetch_by_type(self, user_id: str, workout_type: str) -> List[WorkoutRecord]:
        """Get a user's workouts of one type, newest first."""
        db, close_session = self._open()
        try:
            rows = (
                db.query(WorkoutRow)
                .filter_by(user_id=user_id, workout_type=workout_type)
                .order_by(WorkoutRow.start_time.desc())
                .all()
            )
            return [_row_to_record(row) for row in rows]
        finally:
            if close_session:
                db.close()

    def get_stats(self, user_id: str, start: Optional[datetime] = None,
                  end: Optional[datetime] = None) -> WorkoutStats:
        """Sum a user's workouts over a period.

        Args:
            user_id: Owner of the workouts
            start: Earliest start time included, unbounded if None
            end: Latest start time included, unbounded if None

        Returns:
            WorkoutStats with zero totals when nothing matches
        """
        db, close_session = self._open()
        try:
            query = db.query(
                func.sum(WorkoutRow.distance_m),
                func.sum(WorkoutRow.duration_s),
                func.sum(WorkoutRow.calories),
                func.count(WorkoutRow.id),
            ).filter(WorkoutRow.user_id == user_id)
            if start is not None:
                query = query.filter(WorkoutRow.start_time >= as_utc(start))
            if end is not None:
                query = query.filter(WorkoutRow.start_time <= as_utc(end))
            distance, duration, calories, count = query.one()
            return WorkoutStats(
                total_distance=float(distance or 0.0),
                total_duration=int(duration or 0),
                total_calories=float(calories or 0.0),
                workout_count=int(count or 0),
            )
        finally:
            if close_session:
                db.close()


class JsonLocalMirror(LocalMirror):
    """Keeps the most recent workouts of each user in a JSON file.

    The file holds one list of recent workouts and one "last workout" entry
    per user; workouts without a user are kept under 'anonymous'.
    """

    def __init__(self, path: Optional[Path] = None, max_recent: int = MAX_RECENT_WORKOUTS):
        self.path = Path(path) if path is not None else LOCAL_MIRROR_FILE
        self.max_recent = max_recent

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f"Local workout store unreadable, starting fresh: {e}")
            return {}

    def _write(self, data: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as fh:
            json.dump(data, fh, indent=2)
        tmp_path.replace(self.path)

    @staticmethod
    def _key(prefix: str, user_id: Optional[str]) -> str:
        return f"{prefix}_{user_id or ANONYMOUS_USER}"

    def save_recent(self, record: WorkoutRecord, replace_id: Optional[str] = None) -> bool:
        """Add a workout to the front of its user's recent list.

        Args:
            record: Workout to store; gets a ``local_<ms>`` id if it has none
            replace_id: Id of an entry this record supersedes

        Returns:
            True if the workout is in the store afterwards
        """
        if record is None:
            logger.error("Cannot save an empty workout")
            return False

        if not record.record_id:
            record = record.with_id(f"local_{int(time.time() * 1000)}")

        data = self._load()
        recent_key = self._key(RECENT_WORKOUTS_KEY, record.user_id)
        workouts = [w for w in data.get(recent_key, []) if not replace_id or w.get('id') != replace_id]

        if any(w.get('id') == record.record_id for w in workouts):
            logger.info(f"Workout with id {record.record_id} already exists, skipping save")
            return True

        entry = record.to_dict()
        data[recent_key] = [entry] + workouts[:self.max_recent - 1]
        data[self._key(LAST_WORKOUT_KEY, record.user_id)] = entry
        self._write(data)
        logger.debug(f"Saved workout {record.record_id} under {recent_key}")
        return True

    def get_recent(self, user_id: Optional[str]) -> List[WorkoutRecord]:
        """Get a user's recent workouts, newest first."""
        entries = self._load().get(self._key(RECENT_WORKOUTS_KEY, user_id), [])
        return [WorkoutRecord.from_dict(entry) for entry in entries]

    def remove(self, record_id: str) -> bool:
        """Drop a workout from every user's recent list.

        A "last workout" entry pointing at the removed workout falls back to
        the newest remaining one of that user, or is cleared.

        Returns:
            True if anything was removed
        """
        data = self._load()
        changed = False
        for key in [k for k in data if k.startswith(RECENT_WORKOUTS_KEY + '_')]:
            workouts = [w for w in data[key] if w.get('id') != record_id]
            if len(workouts) == len(data[key]):
                continue
            data[key] = workouts
            changed = True

            last_key = LAST_WORKOUT_KEY + key[len(RECENT_WORKOUTS_KEY):]
            last = data.get(last_key)
            if last and last.get('id') == record_id:
                if workouts:
                    data[last_key] = workouts[0]
                else:
                    data.pop(last_key, None)

        if changed:
            self._write(data)
            logger.debug(f"Removed workout {record_id} from the local store")
        return changed

    def get_last(self, user_id: Optional[str]) -> Optional[WorkoutRecord]:
        """Get the most recently stored workout of a user."""
        entry = self._load().get(self._key(LAST_WORKOUT_KEY, user_id))
        return WorkoutRecord.from_dict(entry) if entry else None
