"""Live workout session tracking."""
