"""Reports and charts for finished workouts."""

from .chart_generator import ChartGenerator
from .report_generator import ReportGenerator

__all__ = ['ChartGenerator', 'ReportGenerator']