"""Averaging read filters for labio.

This package stabilizes noisy single-shot instrument readings. It includes:

- The ReadFilter family (bypass, mean and median, repeat and moving)
- make_filter() to build a filter for an AMode
- FilteredReading, a per-channel wrapper with thread-safe reconfiguration

Typical usage::

    from labio_core import AMode
    from labio_filters import FilteredReading

    reading = FilteredReading(lambda: conn.query_number("KRDG? A"))
    reading.set_averaging(AMode.MEAN_MOVING, 10)
    temperature = reading.get_value()
"""

from labio_filters.filters import (
    BypassFilter,
    FilterState,
    MeanMovingFilter,
    MeanRepeatFilter,
    MedianMovingFilter,
    MedianRepeatFilter,
    ReadFilter,
    make_filter,
)
from labio_filters.reading import FilterBacked, FilteredReading

__all__ = [
    # Filters
    "BypassFilter",
    "FilterState",
    "MeanMovingFilter",
    "MeanRepeatFilter",
    "MedianMovingFilter",
    "MedianRepeatFilter",
    "ReadFilter",
    "make_filter",
    # Readings
    "FilterBacked",
    "FilteredReading",
]
