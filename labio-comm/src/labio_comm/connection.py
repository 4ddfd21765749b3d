"""Instrument connection: one synchronous write/read/query session.

This module provides the :class:`Connection` class. A connection owns exactly
one driver handle for the lifetime of a device and turns it into the uniform
text primitive used by instrument code: append a write terminator on the way
out, find the read terminator on the way back, and keep every write/read pair
atomic with respect to other threads.

Typical usage::

    from labio_comm import Connection

    with Connection.open("ASRL::/dev/ttyUSB0::INSTR") as conn:
        conn.set_read_terminator("\\r\\n")
        conn.set_io_interval(50)
        temperature = conn.query_number("KRDG? %s", "A")
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import TYPE_CHECKING, Callable, TypeVar

from labio_core.errors import (
    CommunicationError,
    ConnectionStateError,
    InstrumentConnectionError,
    InstrumentTimeoutError,
)

from labio_comm.address import Address, parse_address
from labio_comm.driver import SerialHandle, SerialParameters
from labio_comm.framing import TerminatorScanner, terminator_from_int
from labio_comm.number import parse_bool, parse_int, parse_number, parse_numbers
from labio_comm.policy import IOLimiter, RetryPolicy

if TYPE_CHECKING:
    from labio_comm.config import ConnectionSettings
    from labio_comm.driver import Handle
    from labio_comm.registry import DriverRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 2000
DEFAULT_BUFFER_SIZE = 1024
DRAIN_TIMEOUT_MS = 250


class Connection:
    """Synchronous session on one open driver handle.

    Every public operation holds the connection's re-entrant lock, so a
    :meth:`query` issued from one thread can never interleave with I/O from
    another.

    Args:
        handle: An open handle. The connection takes ownership of it.
        address: The address the handle was opened for.
        driver_name: Name of the driver that opened the handle, for logging.
        encoding: Text encoding used for commands and responses.

    Example:
        >>> handle, driver = registry.open(address)
        >>> conn = Connection(handle, address, driver.name)
        >>> conn.query("*IDN?")
        'KEITHLEY INSTRUMENTS INC.,MODEL 2450,04096331,1.6.4c'
    """

    def __init__(
        self,
        handle: Handle,
        address: Address,
        driver_name: str = "",
        *,
        encoding: str = "latin-1",
    ) -> None:
        self._handle: Handle | None = handle
        self._address = address
        self._driver_name = driver_name
        self._encoding = encoding
        self._lock = threading.RLock()

        self._timeout_ms = DEFAULT_TIMEOUT_MS
        self._write_terminator = "\n"
        self._read_terminator = b"\n"
        self._buffer_size = DEFAULT_BUFFER_SIZE
        self._auto_remove: list[str] = []
        self._retry = RetryPolicy()
        self._write_limiter = IOLimiter(0)
        self._read_limiter = IOLimiter(0)

        self._last_command: str | None = None
        self._last_response: str | None = None

        handle.set_timeout(self._timeout_ms)
        handle.set_eos(self._read_terminator)

    @classmethod
    def open(
        cls,
        address: Address | str,
        registry: DriverRegistry | None = None,
        preferred: str | None = None,
        settings: ConnectionSettings | None = None,
    ) -> Connection:
        """Open a connection to *address* through a driver registry.

        Args:
            address: Typed address or address string.
            registry: Drivers to try. Defaults to :func:`default_registry`.
            preferred: Name of a driver to try first.
            settings: Optional settings applied right after opening.

        Returns:
            An open connection.

        Raises:
            AddressFormatError: If *address* is a string that does not parse.
            InstrumentConnectionError: If no driver could open the address.
        """
        # pylint: disable=import-outside-toplevel
        from labio_comm.registry import default_registry

        if isinstance(address, str):
            address = parse_address(address)
        if registry is None:
            registry = default_registry()
        handle, driver = registry.open(address, preferred)
        conn = cls(handle, address, driver.name)
        if settings is not None:
            try:
                conn.apply_settings(settings)
            except Exception:
                try:
                    conn.close()
                except Exception:  # pylint: disable=broad-exception-caught
                    logger.exception("Failed to close %s after a settings error", address)
                raise
        return conn

    # -- Properties ----------------------------------------------------------

    @property
    def address(self) -> Address:
        """The address this connection was opened for."""
        return self._address

    @property
    def driver_name(self) -> str:
        """Name of the driver serving this connection."""
        return self._driver_name

    @property
    def is_open(self) -> bool:
        """Return True until :meth:`close` has been called."""
        return self._handle is not None

    @property
    def last_command(self) -> str | None:
        """The most recent command written, without its terminator."""
        return self._last_command

    @property
    def last_response(self) -> str | None:
        """The most recent response read."""
        return self._last_response

    @property
    def timeout_ms(self) -> int:
        """Overall read deadline in milliseconds."""
        return self._timeout_ms

    @property
    def read_terminator(self) -> bytes:
        """The termination sequence that ends a response."""
        return self._read_terminator

    @property
    def write_terminator(self) -> str:
        """The string appended to every command."""
        return self._write_terminator

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy for malformed responses."""
        return self._retry

    # -- Core operations -----------------------------------------------------

    def write(self, command: str, *args: object) -> None:
        """Send a command followed by the write terminator.

        Args:
            command: Command text, %-formatted with *args* when given.
            *args: Format arguments.

        Raises:
            ConnectionStateError: If the connection is closed.
            InstrumentConnectionError: If the handle accepted fewer bytes
                than were sent.
        """
        text = command % args if args else command
        with self._lock:
            self._send((text + self._write_terminator).encode(self._encoding))
            self._last_command = text

    def write_bytes(self, data: bytes) -> None:
        """Send raw bytes with no terminator added."""
        with self._lock:
            self._send(data)

    def read(self, buffer_size: int | None = None) -> str:
        """Read one response.

        Args:
            buffer_size: Maximum response length in bytes. Defaults to the
                configured buffer size.

        Returns:
            The response text with the terminator and any auto-remove
            phrases removed.

        Raises:
            ConnectionStateError: If the connection is closed.
            InstrumentTimeoutError: If no complete response arrived before
                the timeout.
        """
        size = self._buffer_size if buffer_size is None else buffer_size
        with self._lock:
            handle = self._require()
            self._read_limiter.acquire()
            try:
                if handle.native_framing or not self._read_terminator:
                    raw = self._read_native(handle, size)
                else:
                    raw = self._read_scanned(handle, size)
            finally:
                self._read_limiter.release_later()
            logger.debug("%s << %r", self._address, raw)
            text = raw.decode(self._encoding)
            for phrase in self._auto_remove:
                text = text.replace(phrase, "")
            self._last_response = text
            return text

    def query(self, command: str, *args: object) -> str:
        """Write a command and read its response as one atomic unit."""
        with self._lock:
            self.write(command, *args)
            return self.read()

    # -- Typed query variants ------------------------------------------------

    def query_number(self, command: str, *args: object) -> float:
        """Query and parse the response as a number.

        Raises:
            CommunicationError: If every attempt returned an unparsable
                response.
        """
        return self._query_parsed(parse_number, command, args)

    def query_numbers(self, command: str, *args: object) -> tuple[float, ...]:
        """Query and parse the response as a comma-separated list of numbers."""
        return self._query_parsed(parse_numbers, command, args)

    def query_int(self, command: str, *args: object) -> int:
        """Query and parse the response as an integer."""
        return self._query_parsed(parse_int, command, args)

    def query_bool(self, command: str, *args: object) -> bool:
        """Query and parse the response as a boolean."""
        return self._query_parsed(parse_bool, command, args)

    # -- Settings ------------------------------------------------------------

    def set_timeout(self, timeout_ms: int) -> None:
        """Set the overall read deadline.

        Raises:
            ValueError: If *timeout_ms* is not positive.
        """
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        with self._lock:
            self._require().set_timeout(timeout_ms)
            self._timeout_ms = timeout_ms

    def set_write_terminator(self, terminator: str) -> None:
        """Set the string appended to every command."""
        with self._lock:
            self._require()
            self._write_terminator = terminator

    def set_read_terminator(self, terminator: str | bytes | int) -> None:
        """Set the sequence that ends a response.

        Args:
            terminator: Text, bytes, or an integer code such as ``0x0D0A``
                (unpacked big-endian with leading zero bytes dropped).
        """
        if isinstance(terminator, int):
            value = terminator_from_int(terminator)
        elif isinstance(terminator, str):
            value = terminator.encode(self._encoding)
        else:
            value = bytes(terminator)
        with self._lock:
            self._require().set_eos(value)
            self._read_terminator = value

    def set_eoi(self, enabled: bool) -> None:
        """Enable or disable GPIB EOI on the last byte of each write."""
        with self._lock:
            self._require().set_eoi(enabled)

    def set_serial_parameters(self, parameters: SerialParameters) -> None:
        """Apply serial line settings.

        Raises:
            InstrumentConnectionError: If the handle is not a serial line.
        """
        with self._lock:
            handle = self._require()
            if not isinstance(handle, SerialHandle):
                raise InstrumentConnectionError(f"{self._address} is not a serial connection")
            handle.set_serial_parameters(parameters)

    def set_buffer_size(self, size: int) -> None:
        """Set the default maximum response length in bytes."""
        if size < 1:
            raise ValueError("buffer size must be >= 1")
        with self._lock:
            self._buffer_size = size

    def add_auto_remove(self, *phrases: str) -> None:
        """Register phrases deleted from every response (e.g. echoed prompts)."""
        with self._lock:
            self._auto_remove.extend(p for p in phrases if p)

    def set_retry_policy(self, policy: RetryPolicy) -> None:
        """Set how often typed queries retry a malformed response."""
        with self._lock:
            self._retry = policy

    def set_io_interval(self, interval_ms: int, read: bool = False, write: bool = True) -> None:
        """Enforce a minimum spacing between consecutive operations.

        Args:
            interval_ms: Minimum spacing in milliseconds; 0 disables it.
            read: Apply the spacing to reads.
            write: Apply the spacing to writes.
        """
        limiter = IOLimiter(interval_ms)
        with self._lock:
            self._write_limiter.cancel()
            self._read_limiter.cancel()
            self._write_limiter = limiter if write else IOLimiter(0)
            self._read_limiter = limiter if read else IOLimiter(0)

    def apply_settings(self, settings: ConnectionSettings) -> None:
        """Apply a block of settings loaded from configuration."""
        with self._lock:
            self.set_timeout(settings.timeout_ms)
            self.set_read_terminator(settings.read_terminator)
            self.set_write_terminator(settings.write_terminator)
            self.set_eoi(settings.eoi)
            self.set_buffer_size(settings.buffer_size)
            self.set_retry_policy(settings.retry)
            self.set_io_interval(settings.io_interval_ms)
            if settings.serial is not None:
                self.set_serial_parameters(settings.serial)
            if settings.auto_remove:
                self.add_auto_remove(*settings.auto_remove)

    # -- Buffers -------------------------------------------------------------

    def clear_buffers(self) -> None:
        """Ask the handle to discard buffered input and output."""
        with self._lock:
            self._require().clear()

    def drain_read_buffer(self) -> int:
        """Read and discard bytes until the line goes quiet.

        For instruments that ignore a device clear. Single bytes are read
        with a short timeout until one read times out, then the configured
        timeout is restored.

        Returns:
            Number of bytes discarded.
        """
        discarded = 0
        with self._lock:
            handle = self._require()
            handle.set_timeout(DRAIN_TIMEOUT_MS)
            try:
                while True:
                    try:
                        data = handle.read(1)
                    except InstrumentTimeoutError:
                        break
                    if not data:
                        break
                    discarded += len(data)
            finally:
                handle.set_timeout(self._timeout_ms)
        if discarded:
            logger.debug("Drained %d stale bytes from %s", discarded, self._address)
        return discarded

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Close the handle.

        The connection is marked closed even if the handle fails to close.

        Raises:
            ConnectionStateError: If the connection was already closed.
        """
        with self._lock:
            handle = self._require()
            self._handle = None
            self._write_limiter.cancel()
            self._read_limiter.cancel()
            handle.close()
        logger.info("Closed connection to %s", self._address)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.is_open:
            self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Connection({str(self._address)!r}, {state})"

    # -- Private helpers -----------------------------------------------------

    def _require(self) -> Handle:
        if self._handle is None:
            raise ConnectionStateError(f"Connection to {self._address} is closed")
        return self._handle

    def _send(self, data: bytes) -> None:
        handle = self._require()
        self._write_limiter.acquire()
        try:
            written = handle.write(data)
        finally:
            self._write_limiter.release_later()
        logger.debug("%s >> %r", self._address, data)
        if written < len(data):
            raise InstrumentConnectionError(
                f"Short write to {self._address}: {written} of {len(data)} bytes accepted"
            )

    def _deadline(self) -> float:
        return time.monotonic() + self._timeout_ms / 1000.0

    def _timed_out(self) -> InstrumentTimeoutError:
        return InstrumentTimeoutError(
            f"No response from {self._address} within {self._timeout_ms} ms"
        )

    def _read_native(self, handle: Handle, size: int) -> bytes:
        deadline = self._deadline()
        while True:
            data = handle.read(size)
            if data:
                break
            if time.monotonic() >= deadline:
                raise self._timed_out()
        if self._read_terminator and data.endswith(self._read_terminator):
            data = data[: -len(self._read_terminator)]
        return data

    def _read_scanned(self, handle: Handle, size: int) -> bytes:
        scanner = TerminatorScanner(self._read_terminator)
        deadline = self._deadline()
        shortened = False
        try:
            while len(scanner) < size:
                remaining_ms = math.ceil((deadline - time.monotonic()) * 1000.0)
                if remaining_ms <= 0:
                    raise self._timed_out()
                # Each blocking read must end by the overall deadline.
                if remaining_ms < self._timeout_ms:
                    handle.set_timeout(remaining_ms)
                    shortened = True
                data = handle.read(1)
                if data and scanner.feed(data[0]):
                    break
        finally:
            if shortened:
                handle.set_timeout(self._timeout_ms)
        return scanner.message()

    def _query_parsed(
        self, parser: Callable[[str], T], command: str, args: tuple[object, ...]
    ) -> T:
        with self._lock:
            last_error: ValueError | None = None
            for attempt in range(1, self._retry.attempts + 1):
                response = self.query(command, *args)
                try:
                    return parser(response)
                except ValueError as exc:
                    last_error = exc
                logger.warning(
                    "Malformed response %r from %s (attempt %d of %d)",
                    response,
                    self._address,
                    attempt,
                    self._retry.attempts,
                )
                self.clear_buffers()
                if attempt < self._retry.attempts:
                    self._retry.pause()
            raise CommunicationError(
                f"Improperly formatted response from {self._address} to "
                f"{self._last_command!r}: {self._last_response!r}"
            ) from last_error
