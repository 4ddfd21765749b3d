"""Driver and handle protocol definitions.

A :class:`Driver` is a pluggable transport backend. It decides whether it can
serve an address, opens a :class:`Handle` for it, and can search for attached
devices. The handle is the opaque, exclusively owned resource that actually
moves bytes; a :class:`~labio_comm.connection.Connection` is built on exactly
one handle.

Implementations include:
- :class:`labio_comm.visa.VisaDriver`: pyvisa-backed GPIB/serial/LAN access
- :class:`labio_comm.serial_driver.SerialDriver`: pyserial-backed RS-232
- :class:`labio_comm.tcpip.TcpipDriver`: raw TCP/IP sockets
- Stub drivers in tests
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from labio_comm.address import Address


class Parity(Enum):
    """Serial parity setting."""

    NONE = "none"
    ODD = "odd"
    EVEN = "even"
    MARK = "mark"
    SPACE = "space"


class StopBits(Enum):
    """Serial stop-bit setting."""

    ONE = 1.0
    ONE_POINT_FIVE = 1.5
    TWO = 2.0


class FlowControl(Enum):
    """Serial flow-control setting."""

    NONE = "none"
    RTS_CTS = "rts_cts"
    XON_XOFF = "xon_xoff"
    DSR_DTR = "dsr_dtr"


@dataclass(frozen=True)
class SerialParameters:
    """RS-232 line settings.

    Attributes:
        baud_rate: Line speed in bits per second.
        data_bits: Data bits per character (5-8).
        parity: Parity mode.
        stop_bits: Number of stop bits.
        flow: Flow-control mode.
    """

    baud_rate: int = 9600
    data_bits: int = 8
    parity: Parity = Parity.NONE
    stop_bits: StopBits = StopBits.ONE
    flow: FlowControl = FlowControl.NONE

    def __post_init__(self) -> None:
        if self.baud_rate <= 0:
            raise ValueError("baud_rate must be > 0")
        if not 5 <= self.data_bits <= 8:
            raise ValueError("data_bits must be 5-8")


@runtime_checkable
class Handle(Protocol):
    """Protocol for an open transport handle.

    Handles move raw bytes. They do not know about command formatting or
    response parsing; that belongs to the connection built on top of them.

    Attributes:
        native_framing: True if the transport delimits messages itself (VISA
            EOS/EOI). When False, the connection scans for the termination
            sequence one byte at a time.
    """

    native_framing: bool

    def write(self, data: bytes) -> int:
        """Send bytes and return how many were accepted."""
        ...

    def read(self, size: int) -> bytes:
        """Read up to *size* bytes.

        Returns an empty result when nothing arrived before the handle's
        timeout. Handles may instead raise
        :class:`~labio_core.errors.InstrumentTimeoutError`.
        """
        ...

    def clear(self) -> None:
        """Discard any buffered input and pending output."""
        ...

    def set_timeout(self, timeout_ms: int) -> None:
        """Bound each blocking read to *timeout_ms* milliseconds."""
        ...

    def set_eoi(self, enabled: bool) -> None:
        """Assert GPIB EOI on the last byte of each write (no-op elsewhere)."""
        ...

    def set_eos(self, terminator: bytes) -> None:
        """Set the read termination sequence used by native framing."""
        ...

    def close(self) -> None:
        """Release the underlying resource."""
        ...


@runtime_checkable
class SerialHandle(Handle, Protocol):
    """Handle on a serial line that accepts line settings."""

    def set_serial_parameters(self, parameters: SerialParameters) -> None:
        """Apply baud rate, framing and flow-control settings."""
        ...


class Driver(Protocol):
    """Protocol for a transport backend.

    Example:
        >>> class LoopbackDriver:
        ...     name = "loopback"
        ...     def works_with(self, address): return True
        ...     def open(self, address): return LoopbackHandle()
        ...     def search(self): return []
    """

    name: str

    def works_with(self, address: Address) -> bool:
        """Return True if this driver can serve *address*."""
        ...

    def open(self, address: Address) -> Handle:
        """Open a handle to *address*.

        Raises:
            InstrumentConnectionError: If the resource cannot be opened.
        """
        ...

    def search(self) -> list[Address]:
        """Return addresses of devices this driver can see."""
        ...
