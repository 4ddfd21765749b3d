"""Driver registry and resolution.

The registry holds an ordered list of drivers. Opening an address tries a
preferred driver first and then every driver that claims the address, in
order, so the same device code can be pointed at different physical buses
without modification.
"""

from __future__ import annotations

import logging

from labio_core.errors import InstrumentConnectionError

from labio_comm.address import Address, AddressKind
from labio_comm.driver import Driver, Handle

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Ordered collection of transport drivers.

    Args:
        drivers: Drivers in priority order.

    Example:
        >>> registry = DriverRegistry([TcpipDriver()])
        >>> handle, driver = registry.open(parse_address("TCPIP::10.0.0.5::5025::SOCKET"))
    """

    def __init__(self, drivers: list[Driver] | None = None) -> None:
        self._drivers: list[Driver] = list(drivers or [])

    @property
    def drivers(self) -> tuple[Driver, ...]:
        """Registered drivers in priority order."""
        return tuple(self._drivers)

    def add(self, driver: Driver) -> None:
        """Append a driver at the lowest priority."""
        self._drivers.append(driver)

    def get(self, name: str) -> Driver | None:
        """Return the registered driver called *name*, if any."""
        for driver in self._drivers:
            if driver.name == name:
                return driver
        return None

    def open(self, address: Address, preferred: str | None = None) -> tuple[Handle, Driver]:
        """Open *address* with the first driver that succeeds.

        Args:
            address: Address to open.
            preferred: Name of a driver to try before the others.

        Returns:
            The open handle and the driver that produced it.

        Raises:
            InstrumentConnectionError: If no driver could open the address;
                the message lists every attempt.
        """
        candidates = [d for d in self._drivers if d.works_with(address)]
        if preferred is not None:
            first = self.get(preferred)
            if first is not None and first.works_with(address):
                candidates.remove(first)
                candidates.insert(0, first)

        errors: list[str] = []
        for driver in candidates:
            try:
                handle = driver.open(address)
            except InstrumentConnectionError as exc:
                errors.append(f"* {driver.name}: {exc}")
                continue
            logger.info("Opened %s using %s driver", address, driver.name)
            return handle, driver

        if not candidates:
            errors.append("* no registered driver supports this address")
        raise InstrumentConnectionError(
            f"Could not open {address} using any driver:\n" + "\n".join(errors)
        )

    def search(self) -> list[Address]:
        """Merge the devices every driver can see.

        Duplicates are dropped and the result is ordered by address kind.
        Drivers whose backend is unavailable are skipped.
        """
        found: dict[str, Address] = {}
        for driver in self._drivers:
            try:
                addresses = driver.search()
            except InstrumentConnectionError as exc:
                logger.debug("Search with %s driver failed: %s", driver.name, exc)
                continue
            for address in addresses:
                found.setdefault(str(address), address)
        order = list(AddressKind)
        return sorted(found.values(), key=lambda a: order.index(a.kind))


def default_registry() -> DriverRegistry:
    """Build the standard registry: VISA first, then serial, then raw TCP/IP."""
    # pylint: disable=import-outside-toplevel
    from labio_comm.serial_driver import SerialDriver
    from labio_comm.tcpip import TcpipDriver
    from labio_comm.visa import VisaDriver

    return DriverRegistry([VisaDriver(), SerialDriver(), TcpipDriver()])
