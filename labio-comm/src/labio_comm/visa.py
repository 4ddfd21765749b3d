"""PyVISA driver backend.

This module provides the VISA-based driver. It wraps the PyVISA library,
which is lazily imported so that the rest of labio-comm works without VISA
installed. VISA (and whatever GPIB library sits beneath it) is treated as a
black box: it delimits messages itself, so handles opened here report
``native_framing = True``.

Supported address kinds:
- GPIB: ``GPIB0::22::INSTR``
- Serial: ``ASRL::/dev/ttyUSB0::INSTR`` (sent to VISA as ``ASRL/dev/ttyUSB0::INSTR``)
- LXI: ``TCPIP0::192.168.1.100::INSTR``
- Raw socket: ``TCPIP::192.168.1.100::5025::SOCKET``
"""

from __future__ import annotations

import logging
from typing import Any

from labio_core.errors import (
    AddressFormatError,
    ConnectionStateError,
    InstrumentConnectionError,
    InstrumentTimeoutError,
)

from labio_comm.address import Address, AddressKind, parse_address
from labio_comm.driver import FlowControl, Parity, SerialParameters, StopBits

logger = logging.getLogger(__name__)

_SUPPORTED_KINDS = frozenset(
    {AddressKind.GPIB, AddressKind.SERIAL, AddressKind.LXI, AddressKind.TCPIP}
)


def _import_pyvisa() -> Any:
    try:
        import pyvisa  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
    except ImportError as exc:
        raise InstrumentConnectionError(
            "pyvisa library is not installed. Install with: pip install pyvisa"
        ) from exc
    return pyvisa


def visa_resource_string(address: Address) -> str:
    """Render an address in the form the VISA library expects.

    Args:
        address: A GPIB, serial, LXI or TCP/IP socket address.

    Returns:
        VISA resource string.
    """
    serial = address.to_serial()
    if serial is not None and address.kind is AddressKind.SERIAL:
        return f"ASRL{serial.port}::INSTR"
    return str(address)


def _is_timeout(pyvisa: Any, exc: Exception) -> bool:
    code = getattr(exc, "error_code", None)
    return code is not None and code == pyvisa.constants.StatusCode.error_timeout


class VisaHandle:
    """Handle on one open VISA resource.

    Args:
        pyvisa: The imported pyvisa module.
        resource_manager: The pyvisa ResourceManager that owns the resource.
        resource: The opened pyvisa resource.
        resource_string: Resource string used for error messages.
    """

    native_framing = True

    def __init__(
        self, pyvisa: Any, resource_manager: Any, resource: Any, resource_string: str
    ) -> None:
        self._pyvisa = pyvisa
        self._rm = resource_manager
        self._resource = resource
        self._resource_string = resource_string

    @property
    def resource_string(self) -> str:
        """The VISA resource string."""
        return self._resource_string

    @property
    def is_open(self) -> bool:
        """Return True if the resource is currently open."""
        return self._resource is not None

    def _require(self) -> Any:
        if self._resource is None:
            raise ConnectionStateError(f"VISA resource {self._resource_string!r} is not open")
        return self._resource

    def _wrap(self, action: str, exc: Exception) -> Exception:
        if _is_timeout(self._pyvisa, exc):
            return InstrumentTimeoutError(f"VISA {action} timed out on {self._resource_string!r}")
        return InstrumentConnectionError(
            f"VISA {action} failed on {self._resource_string!r}: {exc}"
        )

    # -- Handle interface ----------------------------------------------------

    def write(self, data: bytes) -> int:
        """Send raw bytes to the instrument."""
        resource = self._require()
        try:
            written: int = resource.write_raw(data)
        except Exception as exc:
            raise self._wrap("write", exc) from exc
        return written

    def read(self, size: int) -> bytes:
        """Read one message (up to *size* bytes) terminated by EOS or EOI."""
        resource = self._require()
        try:
            data: bytes = resource.read_raw(size)
        except Exception as exc:
            raise self._wrap("read", exc) from exc
        return data

    def clear(self) -> None:
        """Send a device clear."""
        resource = self._require()
        try:
            resource.clear()
        except Exception as exc:
            raise self._wrap("clear", exc) from exc

    def set_timeout(self, timeout_ms: int) -> None:
        """Set the VISA I/O timeout."""
        self._require().timeout = timeout_ms

    def set_eoi(self, enabled: bool) -> None:
        """Enable or disable asserting END on the last byte of a write."""
        self._require().send_end = enabled

    def set_eos(self, terminator: bytes) -> None:
        """Set the read termination used by VISA."""
        self._require().read_termination = terminator.decode("latin-1") or None

    def set_serial_parameters(self, parameters: SerialParameters) -> None:
        """Apply serial line settings through VISA attributes."""
        resource = self._require()
        constants = self._pyvisa.constants
        resource.baud_rate = parameters.baud_rate
        resource.data_bits = parameters.data_bits
        resource.parity = {
            Parity.NONE: constants.Parity.none,
            Parity.ODD: constants.Parity.odd,
            Parity.EVEN: constants.Parity.even,
            Parity.MARK: constants.Parity.mark,
            Parity.SPACE: constants.Parity.space,
        }[parameters.parity]
        resource.stop_bits = {
            StopBits.ONE: constants.StopBits.one,
            StopBits.ONE_POINT_FIVE: constants.StopBits.one_and_a_half,
            StopBits.TWO: constants.StopBits.two,
        }[parameters.stop_bits]
        resource.flow_control = {
            FlowControl.NONE: constants.ControlFlow.none,
            FlowControl.RTS_CTS: constants.ControlFlow.rts_cts,
            FlowControl.XON_XOFF: constants.ControlFlow.xon_xoff,
            FlowControl.DSR_DTR: constants.ControlFlow.dtr_dsr,
        }[parameters.flow]

    def close(self) -> None:
        """Close the resource and its resource manager.

        Raises:
            ConnectionStateError: If the handle was already closed.
            InstrumentConnectionError: If VISA reports a failure while closing.
        """
        resource = self._require()
        self._resource = None
        try:
            resource.close()
        except Exception as exc:
            raise InstrumentConnectionError(
                f"Failed to close VISA resource {self._resource_string!r}: {exc}"
            ) from exc
        finally:
            rm, self._rm = self._rm, None
            if rm is not None:
                rm.close()


class VisaDriver:
    """Driver that opens instruments through the VISA library.

    Args:
        backend: Optional pyvisa backend selector (e.g. ``"@py"`` for
            pyvisa-py). Defaults to pyvisa's own choice.
    """

    name = "visa"

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend

    def _resource_manager(self, pyvisa: Any) -> Any:
        if self._backend is None:
            return pyvisa.ResourceManager()
        return pyvisa.ResourceManager(self._backend)

    def works_with(self, address: Address) -> bool:
        """VISA serves GPIB, serial and both LAN address kinds."""
        return address.kind in _SUPPORTED_KINDS

    def open(self, address: Address) -> VisaHandle:
        """Open the VISA resource for *address*.

        Raises:
            InstrumentConnectionError: If ``pyvisa`` is not installed or the
                resource cannot be opened.
        """
        if not self.works_with(address):
            raise InstrumentConnectionError(f"VISA driver cannot open {address}")
        resource_string = visa_resource_string(address)
        pyvisa = _import_pyvisa()
        rm: Any = None
        try:
            rm = self._resource_manager(pyvisa)
            resource = rm.open_resource(resource_string)
        except Exception as exc:
            if rm is not None:
                try:
                    rm.close()
                except Exception:  # pylint: disable=broad-except
                    logger.debug("Ignoring error closing resource manager", exc_info=True)
            raise InstrumentConnectionError(
                f"Failed to open VISA resource {resource_string!r}: {exc}"
            ) from exc
        logger.info("Opened VISA resource %s", resource_string)
        return VisaHandle(pyvisa, rm, resource, resource_string)

    def search(self) -> list[Address]:
        """List resources known to VISA as typed addresses.

        Resource strings with no labio grammar (USB, PXI, ...) are skipped.
        """
        rm = self._resource_manager(_import_pyvisa())
        try:
            names = rm.list_resources()
        finally:
            rm.close()
        found: list[Address] = []
        for name in names:
            try:
                found.append(parse_address(_normalize_serial(name)))
            except AddressFormatError:
                logger.debug("Skipping unsupported VISA resource %s", name)
        return found


def _normalize_serial(name: str) -> str:
    """Turn VISA's ``ASRL/dev/ttyS0::INSTR`` into ``ASRL::/dev/ttyS0::INSTR``."""
    upper = name.upper()
    if upper.startswith("ASRL") and not upper.startswith("ASRL::") and not name[4:5].isdigit():
        return f"ASRL::{name[4:].rsplit('::', 1)[0]}::INSTR"
    return name
