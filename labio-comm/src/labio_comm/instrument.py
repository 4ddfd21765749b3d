"""Instrument session with identity handshake.

An :class:`Instrument` is what device code holds on to: one open
:class:`~labio_comm.connection.Connection` plus the identity the device
reported when it was opened. Opening performs an ``*IDN?`` handshake so that
a wrong or unresponsive device is caught immediately rather than on the first
measurement.

Typical usage::

    from labio_comm import Instrument

    with Instrument.open("GPIB0::22::INSTR", expected=("KEITHLEY", "MODEL 2450")) as smu:
        print(smu.identity.serial)
        current = smu.connection.query_number(":MEAS:CURR?")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from labio_core.errors import CommunicationError, IdentityMismatchError, InstrumentTimeoutError
from labio_core.types import InstrumentIdentity

from labio_comm.connection import Connection

if TYPE_CHECKING:
    from labio_comm.address import Address
    from labio_comm.config import ConnectionSettings, InstrumentConfig
    from labio_comm.registry import DriverRegistry

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_QUERY = "*IDN?"


@runtime_checkable
class Readable(Protocol):
    """Something that yields one measured value per call."""

    def get_value(self) -> float:
        """Return the current value."""
        ...


@runtime_checkable
class Writable(Protocol):
    """Something whose set-point can be written."""

    def set_value(self, value: float) -> None:
        """Apply a new set-point."""
        ...


def parse_idn_response(response: str) -> InstrumentIdentity:
    """Parse an ``*IDN?`` response into an :class:`InstrumentIdentity`.

    The standard response is four comma-separated fields::

        manufacturer,model,serial_number,firmware_version

    Extra fields are joined into the firmware string.

    Args:
        response: The raw ``*IDN?`` response string.

    Returns:
        Parsed identity.

    Raises:
        ValueError: If the response has fewer than four fields.
    """
    parts = [p.strip() for p in response.split(",")]
    if len(parts) < 4:
        raise ValueError(
            f"Expected at least 4 comma-separated fields in *IDN? response, "
            f"got {len(parts)}: {response!r}"
        )
    return InstrumentIdentity(
        manufacturer=parts[0],
        model=parts[1],
        serial=parts[2],
        firmware=",".join(parts[3:]),
    )


class Instrument:
    """An identified instrument on an open connection.

    Args:
        connection: The open connection. The instrument takes ownership.
        identity: The identity reported during the handshake.
    """

    def __init__(self, connection: Connection, identity: InstrumentIdentity) -> None:
        self._connection = connection
        self._identity = identity

    @classmethod
    def open(
        cls,
        address: Address | str,
        registry: DriverRegistry | None = None,
        preferred: str | None = None,
        settings: ConnectionSettings | None = None,
        expected: tuple[str, str] | None = None,
        identity_query: str = DEFAULT_IDENTITY_QUERY,
    ) -> Instrument:
        """Open a connection and perform the identity handshake.

        An empty or unparsable reply is retried once after clearing the
        buffers. The connection is closed again if the handshake fails.

        Args:
            address: Typed address or address string.
            registry: Drivers to try. Defaults to the standard registry.
            preferred: Name of a driver to try first.
            settings: Optional connection settings.
            expected: Optional ``(manufacturer, model)`` the device must report.
            identity_query: Query that returns the identity string.

        Returns:
            The open instrument.

        Raises:
            InstrumentConnectionError: If the address cannot be opened.
            CommunicationError: If the device never returns a valid identity.
            IdentityMismatchError: If the identity differs from *expected*.
        """
        connection = Connection.open(address, registry, preferred, settings)
        try:
            identity = _handshake(connection, identity_query)
            if expected is not None and not identity.matches(*expected):
                raise IdentityMismatchError(
                    f"Expected {expected[0]} {expected[1]} at {connection.address}, "
                    f"found {identity.manufacturer} {identity.model}"
                )
        except Exception:
            try:
                connection.close()
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Failed to close %s after a failed handshake", connection.address)
            raise
        logger.info(
            "Identified %s %s (serial %s) at %s",
            identity.manufacturer,
            identity.model,
            identity.serial,
            connection.address,
        )
        return cls(connection, identity)

    @classmethod
    def from_config(
        cls, config: InstrumentConfig, registry: DriverRegistry | None = None
    ) -> Instrument:
        """Open the instrument described by a configuration entry."""
        expected = None
        if config.identity is not None:
            expected = (config.identity.manufacturer, config.identity.model)
        return cls.open(
            config.address,
            registry=registry,
            preferred=config.driver,
            settings=config.settings,
            expected=expected,
        )

    @property
    def connection(self) -> Connection:
        """The underlying connection."""
        return self._connection

    @property
    def identity(self) -> InstrumentIdentity:
        """The identity reported when the instrument was opened."""
        return self._identity

    @property
    def address(self) -> Address:
        """The instrument's address."""
        return self._connection.address

    def close(self) -> None:
        """Close the instrument's connection."""
        self._connection.close()

    def __enter__(self) -> Instrument:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._connection.is_open:
            self.close()

    def __repr__(self) -> str:
        return f"Instrument({self._identity.model!r} at {str(self.address)!r})"


def _handshake(connection: Connection, identity_query: str) -> InstrumentIdentity:
    last_error: Exception | None = None
    for attempt in (1, 2):
        try:
            response = connection.query(identity_query)
            if not response.strip():
                raise ValueError(f"Empty response to {identity_query}")
            return parse_idn_response(response)
        except (ValueError, InstrumentTimeoutError) as exc:
            last_error = exc
        if attempt == 1:
            logger.warning(
                "Identity query to %s failed (%s), retrying", connection.address, last_error
            )
            connection.clear_buffers()
    raise CommunicationError(
        f"Instrument at {connection.address} did not return a valid identity"
    ) from last_error
