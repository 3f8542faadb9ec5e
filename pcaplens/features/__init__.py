"""Capture-wide aggregation."""

from pcaplens.features.summary import (
    CaptureSummary,
    SummaryAccumulator,
    TimeBucket,
    format_duration,
    size_statistics,
    time_series_histogram,
)

__all__ = [
    'CaptureSummary',
    'SummaryAccumulator',
    'TimeBucket',
    'format_duration',
    'size_statistics',
    'time_series_histogram',
]
