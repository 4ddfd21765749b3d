"""Core types and errors for the labio instrument I/O layer.

This package provides the exception hierarchy and shared value types used by
every other labio package. It has no third-party dependencies so that it can
serve as the base layer for drivers, Modbus framing and read filters alike.

Key components:
    - Errors: Hierarchy of exception types rooted at LabioError.
    - Types: InstrumentIdentity and the AMode averaging selector.

Example:
    >>> from labio_core import AMode, LabioError
    >>> AMode("median_moving").is_moving
    True
"""

from labio_core.errors import (
    AddressFormatError,
    CommunicationError,
    ConnectionStateError,
    IdentityMismatchError,
    InstrumentConnectionError,
    InstrumentTimeoutError,
    LabioError,
    ProtocolError,
)
from labio_core.types import AMode, InstrumentIdentity

__all__ = [
    # Errors
    "AddressFormatError",
    "CommunicationError",
    "ConnectionStateError",
    "IdentityMismatchError",
    "InstrumentConnectionError",
    "InstrumentTimeoutError",
    "LabioError",
    "ProtocolError",
    # Types
    "AMode",
    "InstrumentIdentity",
]
