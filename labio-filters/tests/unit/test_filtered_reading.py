"""Tests for FilteredReading reconfiguration."""

from __future__ import annotations

import threading
import time

import pytest

from labio_core.types import AMode

from labio_filters.filters import (
    BypassFilter,
    FilterState,
    MeanRepeatFilter,
    MedianMovingFilter,
)
from labio_filters.reading import FilterBacked, FilteredReading


class Counter:
    """Supplier returning 1.0, 2.0, 3.0, ..."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> float:
        self.calls += 1
        return float(self.calls)


class TestConstruction:
    """Tests for the initial filter."""

    def test_defaults_to_bypass(self) -> None:
        reading = FilteredReading(Counter())
        assert reading.mode is AMode.NONE
        assert reading.count == 1
        assert isinstance(reading.filter, BypassFilter)
        assert reading.filter.state is FilterState.READY

    def test_setup_called_on_construction(self) -> None:
        counts: list[int] = []
        FilteredReading(Counter(), counts.append, AMode.MEAN_REPEAT, 4)
        assert counts == [4]

    def test_satisfies_protocol(self) -> None:
        assert isinstance(FilteredReading(Counter()), FilterBacked)

    def test_invalid_count(self) -> None:
        with pytest.raises(ValueError):
            FilteredReading(Counter(), count=0)


class TestReconfiguration:
    """Tests for set_mode, set_count and set_averaging."""

    def test_set_mode_rebuilds_filter_keeping_count(self) -> None:
        counts: list[int] = []
        reading = FilteredReading(Counter(), counts.append, AMode.NONE, 3)
        old = reading.filter
        reading.set_mode(AMode.MEDIAN_MOVING)
        assert reading.mode is AMode.MEDIAN_MOVING
        assert isinstance(reading.filter, MedianMovingFilter)
        assert reading.filter is not old
        assert reading.count == 3
        assert counts == [3, 3]

    def test_set_count_reapplies_to_same_filter(self) -> None:
        counts: list[int] = []
        reading = FilteredReading(Counter(), counts.append, AMode.MEAN_REPEAT, 2)
        old = reading.filter
        reading.set_count(5)
        assert reading.filter is old
        assert reading.count == 5
        assert counts == [2, 5]

    def test_set_count_rejects_zero(self) -> None:
        reading = FilteredReading(Counter(), mode=AMode.MEAN_REPEAT, count=2)
        with pytest.raises(ValueError):
            reading.set_count(0)
        assert reading.count == 2

    def test_set_averaging(self) -> None:
        supplier = Counter()
        reading = FilteredReading(supplier)
        reading.set_averaging(AMode.MEAN_REPEAT, 4)
        assert isinstance(reading.filter, MeanRepeatFilter)
        assert reading.get_value() == 2.5
        assert supplier.calls == 4

    def test_reconfiguration_order(self) -> None:
        calls: list[str] = []
        reading = FilteredReading(Counter(), mode=AMode.MEAN_MOVING, count=2)
        filt = reading.filter
        for name in ("set_count", "set_up", "clear"):
            original = getattr(filt, name)

            def traced(*args: object, _name: str = name, _orig: object = original) -> None:
                calls.append(_name)
                _orig(*args)  # type: ignore[operator]

            setattr(filt, name, traced)
        reading.set_count(3)
        assert calls == ["set_count", "set_up", "clear"]

    def test_reconfiguration_drops_window(self) -> None:
        reading = FilteredReading(Counter(), mode=AMode.MEAN_MOVING, count=3)
        reading.get_value()
        reading.get_value()
        reading.set_count(3)
        assert reading.get_value() == 3.0

    def test_clear(self) -> None:
        counts: list[int] = []
        reading = FilteredReading(Counter(), counts.append, AMode.MEDIAN_MOVING, 3)
        reading.get_value()
        reading.clear()
        assert reading.filter.state is FilterState.READY
        assert counts == [3]


class TestConcurrency:
    """Tests for readings racing reconfiguration."""

    def test_reading_never_mixes_filters(self) -> None:
        # Each sample reports which count was configured when it was taken.
        configured = {"count": 2}

        def supplier() -> float:
            time.sleep(0.0005)
            return float(configured["count"])

        def setup(count: int) -> None:
            configured["count"] = count

        reading = FilteredReading(supplier, setup, AMode.MEAN_REPEAT, 2)
        results: list[float] = []
        stop = threading.Event()

        def reader() -> None:
            while not stop.is_set():
                results.append(reading.get_value())
                time.sleep(0.0005)

        thread = threading.Thread(target=reader)
        thread.start()
        for count in (5, 3, 7, 2, 4) * 4:
            reading.set_count(count)
            time.sleep(0.002)
        stop.set()
        thread.join(timeout=10)

        assert results
        assert all(value in (2.0, 3.0, 4.0, 5.0, 7.0) for value in results)
