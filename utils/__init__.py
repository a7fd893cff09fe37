"""Utility helpers for distance math and metric formatting."""
