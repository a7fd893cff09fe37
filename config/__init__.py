"""Configuration package for Cardio Tracker."""
