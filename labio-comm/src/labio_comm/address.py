"""Instrument resource addresses.

Parses VISA-style resource strings into typed, immutable address variants.
Each variant renders back to one canonical string, and two addresses are equal
exactly when their canonical strings are equal.

Supported grammars::

    GPIB[board]::primary[::secondary]::INSTR      GPIB0::22::INSTR
    ASRL::port::INSTR | ASRL<n>::INSTR            ASRL::/dev/ttyUSB0::INSTR
    TCPIP[board]::host::port::SOCKET              TCPIP::10.0.0.5::5025::SOCKET
    TCPIP[board]::host[::inst0]::INSTR            TCPIP0::10.0.0.5::INSTR
    MODBUS::port::unit::INSTR                     MODBUS::/dev/ttyUSB0::3::INSTR

Typical usage::

    from labio_comm.address import parse_address

    address = parse_address("GPIB0::22::INSTR")
    gpib = address.to_gpib()
    if gpib is not None:
        print(gpib.primary)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from labio_core.errors import AddressFormatError


class AddressKind(Enum):
    """Transport family an address belongs to."""

    GPIB = "GPIB"
    SERIAL = "SERIAL"
    TCPIP = "TCPIP"
    LXI = "LXI"
    MODBUS = "MODBUS"


class Address:
    """Base class for all address variants.

    Subclasses are frozen dataclasses and must implement :meth:`__str__`
    returning the canonical resource string.
    """

    kind: AddressKind

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Address):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r})"

    # -- Narrowing conversions -----------------------------------------------

    def to_gpib(self) -> GPIBAddress | None:
        """Return this address as a GPIB address, or None if it is not one."""
        return self if isinstance(self, GPIBAddress) else None

    def to_serial(self) -> SerialAddress | None:
        """Return this address as a serial address, or None if it is not one."""
        return self if isinstance(self, SerialAddress) else None

    def to_tcpip(self) -> TCPIPAddress | None:
        """Return this address as a raw TCP/IP socket address, or None."""
        return self if isinstance(self, TCPIPAddress) else None

    def to_lxi(self) -> LXIAddress | None:
        """Return this address as an LXI (VXI-11) address, or None."""
        return self if isinstance(self, LXIAddress) else None

    def to_modbus(self) -> ModbusAddress | None:
        """Return this address as a Modbus RTU address, or None."""
        return self if isinstance(self, ModbusAddress) else None


@dataclass(frozen=True, eq=False, repr=False)
class GPIBAddress(Address):
    """GPIB (IEEE-488) bus address.

    Attributes:
        board: GPIB board (bus) number.
        primary: Primary address on the bus (0-30).
        secondary: Secondary address (96-126), or 0 when not used.
    """

    board: int
    primary: int
    secondary: int = 0

    kind = AddressKind.GPIB

    def __post_init__(self) -> None:
        if self.board < 0:
            raise AddressFormatError(str(self), "GPIB board must be >= 0")
        if not 0 <= self.primary <= 30:
            raise AddressFormatError(str(self), "GPIB primary address must be 0-30")
        if self.secondary != 0 and not 96 <= self.secondary <= 126:
            raise AddressFormatError(str(self), "GPIB secondary address must be 0 or 96-126")

    def __str__(self) -> str:
        if self.secondary:
            return f"GPIB{self.board}::{self.primary}::{self.secondary}::INSTR"
        return f"GPIB{self.board}::{self.primary}::INSTR"


@dataclass(frozen=True, eq=False, repr=False)
class SerialAddress(Address):
    """RS-232 serial port address.

    Attributes:
        port: Port name as understood by the operating system
            (e.g. ``"/dev/ttyUSB0"``, ``"COM3"``) or a VISA port number.
    """

    port: str

    kind = AddressKind.SERIAL

    def __post_init__(self) -> None:
        if not self.port or "::" in self.port:
            raise AddressFormatError(f"ASRL::{self.port}::INSTR", "serial port name is invalid")

    def __str__(self) -> str:
        return f"ASRL::{self.port}::INSTR"


@dataclass(frozen=True, eq=False, repr=False)
class TCPIPAddress(Address):
    """Raw TCP/IP socket address.

    Attributes:
        host: Host name or IP address.
        port: TCP port (1-65535).
        board: VISA LAN board number, or None when unspecified.
    """

    host: str
    port: int
    board: int | None = None

    kind = AddressKind.TCPIP

    def __post_init__(self) -> None:
        if not self.host:
            raise AddressFormatError(str(self), "host must be non-empty")
        if not 1 <= self.port <= 65535:
            raise AddressFormatError(str(self), "TCP port must be 1-65535")

    def __str__(self) -> str:
        board = "" if self.board is None else str(self.board)
        return f"TCPIP{board}::{self.host}::{self.port}::SOCKET"


@dataclass(frozen=True, eq=False, repr=False)
class LXIAddress(Address):
    """LXI / VXI-11 instrument address, served only through VISA.

    Attributes:
        host: Host name or IP address.
        board: VISA LAN board number, or None when unspecified.
    """

    host: str
    board: int | None = None

    kind = AddressKind.LXI

    def __post_init__(self) -> None:
        if not self.host:
            raise AddressFormatError(str(self), "host must be non-empty")

    def __str__(self) -> str:
        board = "" if self.board is None else str(self.board)
        return f"TCPIP{board}::{self.host}::INSTR"


@dataclass(frozen=True, eq=False, repr=False)
class ModbusAddress(Address):
    """Modbus RTU slave address on a serial bus.

    Attributes:
        port: Serial port name carrying the RTU bus.
        unit: Slave unit address (0-247).
    """

    port: str
    unit: int

    kind = AddressKind.MODBUS

    def __post_init__(self) -> None:
        if not self.port or "::" in self.port:
            raise AddressFormatError(str(self), "serial port name is invalid")
        if not 0 <= self.unit <= 247:
            raise AddressFormatError(str(self), "Modbus unit address must be 0-247")

    def __str__(self) -> str:
        return f"MODBUS::{self.port}::{self.unit}::INSTR"

    def to_serial(self) -> SerialAddress | None:
        """Return the serial port that carries this Modbus bus."""
        return SerialAddress(self.port)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_GPIB_RE = re.compile(r"^GPIB(\d*)::(\d+)(?:::(\d+))?::INSTR$", re.IGNORECASE)
_SERIAL_RE = re.compile(r"^ASRL::(.+?)::INSTR$", re.IGNORECASE)
_SERIAL_NUMBERED_RE = re.compile(r"^ASRL(\d+)::INSTR$", re.IGNORECASE)
_SOCKET_RE = re.compile(r"^TCPIP(\d*)::(.+?)::(\d+)::SOCKET$", re.IGNORECASE)
_LXI_RE = re.compile(r"^TCPIP(\d*)::(.+?)(?:::inst\d+)?::INSTR$", re.IGNORECASE)
_MODBUS_RE = re.compile(r"^MODBUS::(.+?)::(\d+)::INSTR$", re.IGNORECASE)


def _board(text: str) -> int | None:
    return int(text) if text else None


def parse_address(raw: str) -> Address:
    """Parse a resource string into a typed address.

    Args:
        raw: Resource string; surrounding whitespace is ignored.

    Returns:
        The matching address variant.

    Raises:
        AddressFormatError: If no grammar matches or a field is out of range.
    """
    text = raw.strip()

    match = _GPIB_RE.match(text)
    if match:
        board, primary, secondary = match.groups()
        return GPIBAddress(int(board or 0), int(primary), int(secondary or 0))

    match = _MODBUS_RE.match(text)
    if match:
        return ModbusAddress(match.group(1), int(match.group(2)))

    match = _SERIAL_RE.match(text)
    if match:
        return SerialAddress(match.group(1))

    match = _SERIAL_NUMBERED_RE.match(text)
    if match:
        return SerialAddress(match.group(1))

    match = _SOCKET_RE.match(text)
    if match:
        board, host, port = match.groups()
        return TCPIPAddress(host, int(port), _board(board))

    match = _LXI_RE.match(text)
    if match:
        board, host = match.groups()
        return LXIAddress(host, _board(board))

    raise AddressFormatError(raw, "no known address format matches")
