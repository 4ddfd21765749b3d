"""Modbus RTU bus manager.

One :class:`ModbusBus` exists per physical serial port. It owns the port's
handle and a daemon reader thread that continuously cuts reply frames out of
the incoming byte stream and hands each one to the queue of the unit that
sent it. Callers write requests through a single locked path and block on
their unit's queue until the reply arrives or the timeout expires.

Typical usage::

    from labio_modbus import ModbusBus

    bus = ModbusBus.for_port("/dev/ttyUSB0")
    reply = bus.transaction(3, 0x03, bytes([0x00, 0x10, 0x00, 0x02]))
    print(reply.registers())
    bus.release()
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import ClassVar

from labio_core.errors import (
    ConnectionStateError,
    InstrumentConnectionError,
    InstrumentTimeoutError,
    ProtocolError,
)

from labio_comm.address import SerialAddress
from labio_comm.driver import Driver, Handle, SerialHandle, SerialParameters
from labio_comm.serial_driver import SerialDriver
from labio_modbus.frame import EXCEPTION_FLAG, READ_FUNCTIONS, WRITE_FUNCTIONS, ModbusFrame

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000
POLL_INTERVAL_MS = 100


def normalize_port(port: str) -> str:
    """Key used to share one bus between devices on the same port."""
    return port.strip().lower()


class ModbusBus:
    """Transaction manager for one Modbus RTU serial bus.

    Prefer :meth:`for_port`, which shares one bus between every device on
    the same port.

    Args:
        port: Serial port name (e.g. ``"/dev/ttyUSB0"``).
        driver: Driver used to open the port. Defaults to :class:`SerialDriver`.
        parameters: Optional serial line settings.

    Raises:
        InstrumentConnectionError: If the port cannot be opened.
    """

    _buses: ClassVar[dict[str, ModbusBus]] = {}
    _buses_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        port: str,
        driver: Driver | None = None,
        parameters: SerialParameters | None = None,
    ) -> None:
        self._port = port.strip()
        driver = driver if driver is not None else SerialDriver()
        handle = driver.open(SerialAddress(self._port))
        try:
            if parameters is not None:
                if not isinstance(handle, SerialHandle):
                    raise InstrumentConnectionError(
                        f"Driver {driver.name} cannot apply serial settings to {self._port}"
                    )
                handle.set_serial_parameters(parameters)
            handle.set_timeout(POLL_INTERVAL_MS)
        except Exception:
            handle.close()
            raise
        self._handle: Handle | None = handle

        self._write_lock = threading.Lock()
        self._transaction_lock = threading.Lock()
        self._queues: dict[int, queue.Queue[ModbusFrame]] = {}
        self._queues_lock = threading.Lock()
        self._pending = bytearray()
        self._stop = threading.Event()
        self._failure: Exception | None = None
        self._refs = 0

        self._thread = threading.Thread(
            target=self._run, name=f"modbus-reader-{self._port}", daemon=True
        )
        self._thread.start()
        logger.info("Opened Modbus RTU bus on %s", self._port)

    # -- Shared instances ----------------------------------------------------

    @classmethod
    def for_port(
        cls,
        port: str,
        driver: Driver | None = None,
        parameters: SerialParameters | None = None,
    ) -> ModbusBus:
        """Return the shared bus for *port*, opening it on first use.

        Every call must be balanced by one :meth:`release`. The port name is
        compared case-insensitively with surrounding whitespace ignored.
        """
        key = normalize_port(port)
        with cls._buses_lock:
            bus = cls._buses.get(key)
            if bus is None or not bus.is_open:
                bus = cls(port, driver, parameters)
                cls._buses[key] = bus
            bus._refs += 1
            return bus

    def release(self) -> None:
        """Drop one reference; the port is closed when the last one goes."""
        with self._buses_lock:
            self._refs -= 1
            if self._refs > 0:
                return
            key = normalize_port(self._port)
            if self._buses.get(key) is self:
                del self._buses[key]
        if self.is_open:
            self.close()

    # -- Properties ----------------------------------------------------------

    @property
    def port(self) -> str:
        """The serial port this bus runs on."""
        return self._port

    @property
    def is_open(self) -> bool:
        """Return True until :meth:`close` has been called."""
        return self._handle is not None

    @property
    def references(self) -> int:
        """Number of outstanding :meth:`for_port` users."""
        return self._refs

    # -- Transactions --------------------------------------------------------

    def transaction(
        self, unit: int, function: int, data: bytes, timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> ModbusFrame:
        """Send one request and wait for the matching reply.

        Whole transactions are serialized on the bus.

        Args:
            unit: Slave unit address.
            function: Function code.
            data: Request payload.
            timeout_ms: How long to wait for the reply.

        Returns:
            The reply frame.

        Raises:
            ConnectionStateError: If the bus is closed.
            InstrumentTimeoutError: If no reply arrives in time.
            ProtocolError: On a CRC mismatch, an exception reply or a reply
                carrying a different function code.
        """
        request = ModbusFrame.build(unit, function, data)
        with self._transaction_lock:
            handle = self._require()
            replies = self._queue(unit)
            self._discard_stale(replies, unit)

            with self._write_lock:
                handle.write(request.to_bytes())
            logger.debug("%s >> %s", self._port, request)

            try:
                reply = replies.get(timeout=timeout_ms / 1000.0)
            except queue.Empty:
                if self._failure is not None:
                    raise InstrumentConnectionError(
                        f"Modbus reader on {self._port} has stopped: {self._failure}"
                    ) from self._failure
                raise InstrumentTimeoutError(
                    f"No reply from Modbus unit {unit} on {self._port} within {timeout_ms} ms"
                ) from None

        if not reply.crc_valid:
            raise ProtocolError(f"CRC mismatch in reply from Modbus unit {unit}: {reply}")
        if reply.is_exception:
            code = reply.exception_code
            raise ProtocolError(
                f"Modbus unit {unit} rejected function {function:#04x} "
                f"with exception code {code}",
                exception_code=code,
            )
        if reply.function != function:
            raise ProtocolError(
                f"Modbus unit {unit} replied with function {reply.function:#04x} "
                f"to request {function:#04x}"
            )
        return reply

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Stop the reader thread and close the port.

        Raises:
            ConnectionStateError: If the bus was already closed.
        """
        handle = self._require()
        self._stop.set()
        self._thread.join(timeout=5 * POLL_INTERVAL_MS / 1000.0)
        self._handle = None
        handle.close()
        logger.info("Closed Modbus RTU bus on %s", self._port)

    # -- Private helpers -----------------------------------------------------

    def _require(self) -> Handle:
        if self._handle is None:
            raise ConnectionStateError(f"Modbus bus on {self._port} is closed")
        return self._handle

    def _queue(self, unit: int) -> queue.Queue[ModbusFrame]:
        with self._queues_lock:
            replies = self._queues.get(unit)
            if replies is None:
                replies = queue.Queue()
                self._queues[unit] = replies
            return replies

    def _discard_stale(self, replies: queue.Queue[ModbusFrame], unit: int) -> None:
        while True:
            try:
                stale = replies.get_nowait()
            except queue.Empty:
                return
            logger.warning("Discarding unclaimed reply from Modbus unit %d: %s", unit, stale)

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                frame = self._read_frame()
                if frame is None:
                    break
                if not frame.crc_valid:
                    logger.warning("CRC mismatch on %s: %s", self._port, frame)
                logger.debug("%s << %s", self._port, frame)
                self._queue(frame.address).put(frame)
        except InstrumentConnectionError as exc:
            if not self._stop.is_set():
                self._failure = exc
                logger.error("Modbus reader on %s failed: %s", self._port, exc)

    def _read_frame(self) -> ModbusFrame | None:
        while True:
            header = self._read_exact(2)
            if header is None:
                return None
            function = header[1]
            if function & EXCEPTION_FLAG:
                rest = self._read_exact(3)
            elif function in READ_FUNCTIONS:
                count = self._read_exact(1)
                if count is None:
                    return None
                body = self._read_exact(count[0] + 2)
                rest = None if body is None else count + body
            elif function in WRITE_FUNCTIONS:
                rest = self._read_exact(6)
            else:
                logger.warning("Dropping unexpected byte 0x%02X on %s", header[0], self._port)
                self._pending[:0] = header[1:]
                continue
            if rest is None:
                return None
            return ModbusFrame.parse(header + rest)

    def _read_exact(self, size: int) -> bytes | None:
        """Read exactly *size* bytes, or return None once the bus is stopping."""
        handle = self._handle
        while len(self._pending) < size:
            if self._stop.is_set() or handle is None:
                return None
            try:
                data = handle.read(size - len(self._pending))
            except InstrumentTimeoutError:
                continue
            self._pending.extend(data)
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk
