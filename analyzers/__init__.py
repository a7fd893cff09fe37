"""Location stream and step analysis for live workouts."""
