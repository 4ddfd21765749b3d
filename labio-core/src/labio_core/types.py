"""Common types used across labio packages.

Classes:
    InstrumentIdentity: Instrument identification metadata.
    AMode: Averaging-mode selector consumed by the read filter family.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class InstrumentIdentity:
    """Instrument identification metadata.

    Represents the four standard fields returned by an ``*IDN?`` query, but is
    general enough for instruments that answer identification differently.

    Attributes:
        manufacturer: Instrument manufacturer name (e.g., "KEITHLEY INSTRUMENTS").
        model: Instrument model number or name (e.g., "MODEL 2450").
        serial: Serial number string.
        firmware: Firmware or hardware version string.

    Example:
        >>> identity = InstrumentIdentity(
        ...     manufacturer="Stanford_Research_Systems",
        ...     model="SR830",
        ...     serial="s/n12345",
        ...     firmware="ver1.07"
        ... )
    """

    manufacturer: str
    model: str
    serial: str
    firmware: str

    def matches(self, manufacturer: str, model: str) -> bool:
        """Check manufacturer and model, ignoring case and surrounding spaces.

        Args:
            manufacturer: Expected manufacturer name.
            model: Expected model name.

        Returns:
            True if both fields match.
        """
        return (
            self.manufacturer.strip().lower() == manufacturer.strip().lower()
            and self.model.strip().lower() == model.strip().lower()
        )


class AMode(Enum):
    """Averaging mode applied to repeated measurements.

    Attributes:
        NONE: Single raw sample per reading, any averaging left to the device.
        MEAN_REPEAT: Mean of N fresh samples per reading.
        MEAN_MOVING: Mean of a sliding window of the last N samples.
        MEDIAN_REPEAT: Median of N fresh samples per reading.
        MEDIAN_MOVING: Median of a sliding window of the last N samples.
    """

    NONE = "none"
    MEAN_REPEAT = "mean_repeat"
    MEAN_MOVING = "mean_moving"
    MEDIAN_REPEAT = "median_repeat"
    MEDIAN_MOVING = "median_moving"

    @property
    def is_moving(self) -> bool:
        """Return True for the sliding-window modes."""
        return self in (AMode.MEAN_MOVING, AMode.MEDIAN_MOVING)
