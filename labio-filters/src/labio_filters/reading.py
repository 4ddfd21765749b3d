"""Per-channel filtered reading with thread-safe reconfiguration.

Instrument drivers keep one :class:`FilteredReading` per measured channel.
Changing the averaging mode or count rebuilds or reapplies the filter under
the same lock that readings take, so a reading that races a reconfiguration
runs entirely against either the old filter or the new one.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from labio_core.types import AMode

from labio_filters.filters import ReadFilter, Setup, Supplier, make_filter

logger = logging.getLogger(__name__)


@runtime_checkable
class FilterBacked(Protocol):
    """A measured quantity whose averaging can be configured."""

    @property
    def mode(self) -> AMode:
        """Current averaging mode."""
        ...

    @property
    def count(self) -> int:
        """Current averaging count."""
        ...

    def set_mode(self, mode: AMode) -> None:
        """Select the averaging mode."""
        ...

    def set_count(self, count: int) -> None:
        """Select the averaging count."""
        ...

    def get_value(self) -> float:
        """Return one filtered value."""
        ...


class FilteredReading:
    """One channel's supplier behind a reconfigurable read filter.

    Args:
        supplier: Returns one raw sample per call.
        setup: Called with the count whenever the filter is set up. Optional.
        mode: Initial averaging mode.
        count: Initial averaging count.

    Example:
        >>> reading = FilteredReading(lambda: conn.query_number("MEAS:VOLT?"))
        >>> reading.set_mode(AMode.MEDIAN_MOVING)
        >>> reading.set_count(5)
        >>> voltage = reading.get_value()
    """

    def __init__(
        self,
        supplier: Supplier,
        setup: Setup | None = None,
        mode: AMode = AMode.NONE,
        count: int = 1,
    ) -> None:
        self._supplier = supplier
        self._setup = setup
        self._lock = threading.RLock()
        self._mode = mode
        self._filter = make_filter(mode, supplier, setup, count)
        self._reconfigure(count)

    @property
    def mode(self) -> AMode:
        """Current averaging mode."""
        return self._mode

    @property
    def count(self) -> int:
        """Current averaging count."""
        return self._filter.count

    @property
    def filter(self) -> ReadFilter:
        """The filter currently in use."""
        return self._filter

    def set_mode(self, mode: AMode) -> None:
        """Replace the filter with one for *mode*, keeping the count."""
        with self._lock:
            count = self._filter.count
            self._mode = mode
            self._filter = make_filter(mode, self._supplier, self._setup, count)
            self._reconfigure(count)
        logger.debug("Averaging mode set to %s (count %d)", mode.value, count)

    def set_count(self, count: int) -> None:
        """Apply a new count to the current filter.

        Raises:
            ValueError: If *count* is less than 1.
        """
        with self._lock:
            self._reconfigure(count)

    def set_averaging(self, mode: AMode, count: int) -> None:
        """Set mode and count as one reconfiguration."""
        with self._lock:
            self._mode = mode
            self._filter = make_filter(mode, self._supplier, self._setup, count)
            self._reconfigure(count)

    def get_value(self) -> float:
        """Return one filtered value."""
        with self._lock:
            return self._filter.get_value()

    def clear(self) -> None:
        """Drop held samples without reconfiguring hardware."""
        with self._lock:
            self._filter.clear()

    def _reconfigure(self, count: int) -> None:
        self._filter.set_count(count)
        self._filter.set_up()
        self._filter.clear()

    def __repr__(self) -> str:
        return f"FilteredReading(mode={self._mode.value}, count={self.count})"
