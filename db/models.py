"""SQLAlchemy models for saved workouts."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WorkoutRow(Base):
    """A finished workout as stored in the database."""

    __tablename__ = 'workouts'

    id = Column(Integer, primary_key=True)
    user_id = Column(String, index=True, nullable=False)
    workout_type = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    distance_m = Column(Float, default=0.0)
    duration_s = Column(Integer, default=0)
    pace_s_per_km = Column(Float, nullable=True)
    avg_speed_kmh = Column(Float, default=0.0)
    calories = Column(Float, default=0.0)
    steps = Column(Integer, default=0)
    notes = Column(Text, default='')
    # Route and program link as JSON text
    route_json = Column(Text, default='[]')
    program_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
