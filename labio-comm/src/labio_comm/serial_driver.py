"""Native RS-232 driver backed by pyserial.

Serial lines carry no message framing of their own, so handles opened here
report ``native_framing = False`` and the connection scans incoming bytes for
the termination sequence. The ``serial`` package is imported lazily on first
use so that the rest of labio-comm works without it installed.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from labio_core.errors import ConnectionStateError, InstrumentConnectionError

from labio_comm.address import Address, AddressKind, SerialAddress
from labio_comm.driver import FlowControl, Parity, SerialParameters, StopBits

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000


def _import_serial() -> Any:
    # pylint: disable=import-outside-toplevel
    try:
        import serial  # type: ignore[import-untyped]
        import serial.tools.list_ports  # type: ignore[import-untyped]
    except ImportError as exc:
        raise InstrumentConnectionError(
            "pyserial library is not installed. Install with: pip install pyserial"
        ) from exc
    return serial


def device_name(port: str) -> str:
    """Map a VISA-style port number to an operating-system device name.

    ``"1"`` becomes ``COM1`` on Windows and ``/dev/ttyS0`` elsewhere. Any
    other name is returned unchanged.

    Args:
        port: Port name or number from a serial address.

    Returns:
        Device name to pass to pyserial.
    """
    if port.isdigit():
        number = int(port)
        if os.name == "nt":
            return f"COM{number}"
        return f"/dev/ttyS{max(number - 1, 0)}"
    return port


class SerialHandle:
    """Handle on one open serial port.

    Args:
        port: An open ``serial.Serial`` instance.
    """

    native_framing = False

    def __init__(self, port: Any) -> None:
        self._port = port
        self._name: str = getattr(port, "port", "?")

    @property
    def is_open(self) -> bool:
        """Return True if the port is currently open."""
        return self._port is not None

    def _require(self) -> Any:
        if self._port is None:
            raise ConnectionStateError(f"Serial port {self._name!r} is not open")
        return self._port

    def write(self, data: bytes) -> int:
        """Write bytes to the port."""
        port = self._require()
        try:
            written = port.write(data)
        except Exception as exc:
            raise InstrumentConnectionError(f"Error writing to port {self._name!r}: {exc}") from exc
        return len(data) if written is None else int(written)

    def read(self, size: int) -> bytes:
        """Read up to *size* bytes; empty when the port timeout expires first."""
        port = self._require()
        try:
            data: bytes = port.read(size)
        except Exception as exc:
            raise InstrumentConnectionError(
                f"Error reading from port {self._name!r}: {exc}"
            ) from exc
        return data

    def clear(self) -> None:
        """Purge the receive and transmit buffers."""
        port = self._require()
        try:
            port.reset_input_buffer()
            port.reset_output_buffer()
        except Exception as exc:
            raise InstrumentConnectionError(f"Error purging port {self._name!r}: {exc}") from exc

    def set_timeout(self, timeout_ms: int) -> None:
        """Set the per-read timeout."""
        self._require().timeout = timeout_ms / 1000.0

    def set_eoi(self, enabled: bool) -> None:
        """Serial lines have no EOI line; accepted and ignored."""

    def set_eos(self, terminator: bytes) -> None:
        """Termination is scanned by the connection; accepted and ignored."""

    def set_serial_parameters(self, parameters: SerialParameters) -> None:
        """Apply baud rate, data bits, parity, stop bits and flow control."""
        port = self._require()
        port.baudrate = parameters.baud_rate
        port.bytesize = parameters.data_bits
        port.parity = {
            Parity.NONE: "N",
            Parity.ODD: "O",
            Parity.EVEN: "E",
            Parity.MARK: "M",
            Parity.SPACE: "S",
        }[parameters.parity]
        port.stopbits = {
            StopBits.ONE: 1,
            StopBits.ONE_POINT_FIVE: 1.5,
            StopBits.TWO: 2,
        }[parameters.stop_bits]
        port.rtscts = parameters.flow is FlowControl.RTS_CTS
        port.xonxoff = parameters.flow is FlowControl.XON_XOFF
        port.dsrdtr = parameters.flow is FlowControl.DSR_DTR

    def close(self) -> None:
        """Close the port.

        Raises:
            ConnectionStateError: If the handle was already closed.
        """
        port = self._require()
        self._port = None
        try:
            port.close()
        except Exception as exc:
            raise InstrumentConnectionError(f"Error closing port {self._name!r}: {exc}") from exc
        logger.info("Closed serial port %s", self._name)


class SerialDriver:
    """Driver for serial ports opened directly through pyserial.

    Args:
        timeout_ms: Initial per-read timeout for opened ports.
    """

    name = "serial"

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self._timeout_ms = timeout_ms

    def works_with(self, address: Address) -> bool:
        """Serve serial port addresses."""
        return address.kind is AddressKind.SERIAL

    def open(self, address: Address) -> SerialHandle:
        """Open the serial port named by *address*.

        Raises:
            InstrumentConnectionError: If pyserial is missing or the port
                cannot be opened.
        """
        serial_address = address.to_serial()
        if serial_address is None or not self.works_with(address):
            raise InstrumentConnectionError(f"Serial driver cannot open {address}")
        serial = _import_serial()
        device = device_name(serial_address.port)
        try:
            port = serial.Serial(port=device, timeout=self._timeout_ms / 1000.0)
        except Exception as exc:
            raise InstrumentConnectionError(f"Error opening port {device!r}: {exc}") from exc
        logger.info("Opened serial port %s", device)
        return SerialHandle(port)

    def search(self) -> list[Address]:
        """List the serial ports present on this machine."""
        serial = _import_serial()
        return [SerialAddress(info.device) for info in serial.tools.list_ports.comports()]
