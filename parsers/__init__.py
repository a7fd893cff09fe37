"""Recorded track parsers."""
