"""Read filters that stabilize noisy single-shot measurements.

A read filter wraps a *supplier* (a zero-argument callable returning one raw
sample) and turns repeated raw samples into one steadier value. Repeat
filters take N fresh samples per reading; moving filters keep a sliding
window of the last N samples and take one new sample per reading.

Classes:
    ReadFilter: Base class holding count, state and callbacks.
    BypassFilter: One raw sample; averaging is left to the hardware.
    MeanRepeatFilter / MedianRepeatFilter: Statistic over N fresh samples.
    MeanMovingFilter / MedianMovingFilter: Statistic over a sliding window.

Example:
    >>> readings = iter([1.0, 2.0, 3.0])
    >>> f = MeanRepeatFilter(lambda: next(readings), count=3)
    >>> f.get_value()
    2.0
"""

from __future__ import annotations

import statistics
from collections import deque
from enum import Enum
from typing import Callable

from labio_core.types import AMode

Supplier = Callable[[], float]
Setup = Callable[[int], None]


class FilterState(Enum):
    """Lifecycle state of a read filter."""

    UNCONFIGURED = "unconfigured"
    READY = "ready"
    HAS_SAMPLES = "has_samples"


class ReadFilter:
    """Base class for read filters.

    Args:
        supplier: Returns one raw sample per call.
        setup: Called with the count by :meth:`set_up`, e.g. to configure
            hardware averaging. Optional.
        count: Number of samples the statistic covers.

    Raises:
        ValueError: If *count* is less than 1.
    """

    def __init__(self, supplier: Supplier, setup: Setup | None = None, count: int = 1) -> None:
        _check_count(count)
        self._supplier = supplier
        self._setup = setup
        self._count = count
        self._state = FilterState.UNCONFIGURED

    @property
    def count(self) -> int:
        """Number of samples the statistic covers."""
        return self._count

    @property
    def state(self) -> FilterState:
        """Current lifecycle state."""
        return self._state

    def set_count(self, count: int) -> None:
        """Change the sample count; any held samples are dropped.

        Raises:
            ValueError: If *count* is less than 1.
        """
        _check_count(count)
        self._count = count
        self._drop_samples()
        if self._state is FilterState.HAS_SAMPLES:
            self._state = FilterState.READY

    def set_up(self) -> None:
        """Run the setup callback with the current count."""
        if self._setup is not None:
            self._setup(self._count)
        self._drop_samples()
        self._state = FilterState.READY

    def clear(self) -> None:
        """Drop held samples without reconfiguring hardware."""
        self._drop_samples()
        if self._state is FilterState.HAS_SAMPLES:
            self._state = FilterState.READY

    def get_value(self) -> float:
        """Take raw samples and return the filtered value."""
        value = self._compute()
        self._state = FilterState.HAS_SAMPLES
        return value

    def _sample(self) -> float:
        return float(self._supplier())

    def _compute(self) -> float:
        raise NotImplementedError

    def _drop_samples(self) -> None:
        """Forget held samples; stateless filters have none."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(count={self._count}, state={self._state.value})"


class BypassFilter(ReadFilter):
    """Pass one raw sample through untouched.

    The count is only handed to the setup callback, so an instrument with
    built-in averaging can do the work itself.
    """

    def _compute(self) -> float:
        return self._sample()


class MeanRepeatFilter(ReadFilter):
    """Mean of N fresh samples per reading."""

    def _compute(self) -> float:
        return statistics.fmean(self._sample() for _ in range(self._count))


class MedianRepeatFilter(ReadFilter):
    """Median of N fresh samples per reading."""

    def _compute(self) -> float:
        return float(statistics.median([self._sample() for _ in range(self._count)]))


class _MovingFilter(ReadFilter):
    """Sliding window over the last N samples."""

    def __init__(self, supplier: Supplier, setup: Setup | None = None, count: int = 1) -> None:
        super().__init__(supplier, setup, count)
        self._window: deque[float] = deque(maxlen=count)

    @property
    def samples(self) -> tuple[float, ...]:
        """Samples currently held, oldest first."""
        return tuple(self._window)

    def _drop_samples(self) -> None:
        self._window = deque(maxlen=self._count)

    def _push(self, value: float) -> None:
        self._window.append(value)


class MeanMovingFilter(_MovingFilter):
    """Mean of a sliding window, recomputed over the whole window per reading."""

    def _compute(self) -> float:
        self._push(self._sample())
        return statistics.fmean(self._window)


class MedianMovingFilter(_MovingFilter):
    """Median of a sliding window."""

    def _compute(self) -> float:
        self._push(self._sample())
        return float(statistics.median(self._window))


_FILTERS: dict[AMode, type[ReadFilter]] = {
    AMode.NONE: BypassFilter,
    AMode.MEAN_REPEAT: MeanRepeatFilter,
    AMode.MEAN_MOVING: MeanMovingFilter,
    AMode.MEDIAN_REPEAT: MedianRepeatFilter,
    AMode.MEDIAN_MOVING: MedianMovingFilter,
}


def make_filter(
    mode: AMode, supplier: Supplier, setup: Setup | None = None, count: int = 1
) -> ReadFilter:
    """Build the filter for an averaging mode.

    Args:
        mode: Averaging mode.
        supplier: Returns one raw sample per call.
        setup: Optional setup callback, called with the count.
        count: Number of samples.

    Returns:
        A new, unconfigured filter.
    """
    return _FILTERS[mode](supplier, setup, count)


def _check_count(count: int) -> None:
    if count < 1:
        raise ValueError(f"Filter count must be >= 1, got {count}")
