"""Tests for ModbusBus against a simulated serial line."""

from __future__ import annotations

import struct
import threading
from typing import Callable, Iterator

import pytest

from labio_core.errors import (
    ConnectionStateError,
    InstrumentConnectionError,
    InstrumentTimeoutError,
    ProtocolError,
)

from labio_comm.address import Address, AddressKind
from labio_comm.driver import SerialParameters
from labio_modbus.bus import POLL_INTERVAL_MS, ModbusBus
from labio_modbus.frame import FunctionCode, ModbusFrame

Responder = Callable[[bytes], "bytes | None"]


def register_slave(request: bytes) -> bytes | None:
    """Answer register reads with ``start + i`` and echo writes."""
    frame = ModbusFrame.parse(request)
    if frame.function in (0x03, 0x04):
        start, count = struct.unpack(">HH", frame.payload)
        values = [start + i for i in range(count)]
        data = bytes([2 * count]) + struct.pack(f">{count}H", *values)
        return ModbusFrame.build(frame.address, frame.function, data).to_bytes()
    if frame.function in (0x05, 0x06):
        return request
    return None


class SimulatedLine:
    """Serial handle whose far end is a responder function.

    Bytes written are passed to :attr:`responder`; whatever it returns is
    made available to :meth:`read`.
    """

    native_framing = False

    def __init__(self, responder: Responder = register_slave) -> None:
        self.responder = responder
        self.written: list[bytes] = []
        self.timeout_ms = 1000
        self.closed = False
        self.fail: Exception | None = None
        self._incoming = bytearray()
        self._cond = threading.Condition()

    def inject(self, data: bytes) -> None:
        with self._cond:
            self._incoming.extend(data)
            self._cond.notify_all()

    def write(self, data: bytes) -> int:
        self.written.append(data)
        reply = self.responder(data)
        if reply:
            self.inject(reply)
        return len(data)

    def read(self, size: int) -> bytes:
        with self._cond:
            if self.fail is not None:
                raise self.fail
            if not self._incoming:
                self._cond.wait(self.timeout_ms / 1000.0)
            data = bytes(self._incoming[:size])
            del self._incoming[:size]
            return data

    def clear(self) -> None:
        with self._cond:
            self._incoming.clear()

    def set_timeout(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms

    def set_eoi(self, enabled: bool) -> None:
        pass

    def set_eos(self, terminator: bytes) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class SimulatedSerialLine(SimulatedLine):
    """Simulated line that also records serial settings."""

    def __init__(self, responder: Responder = register_slave) -> None:
        super().__init__(responder)
        self.parameters: SerialParameters | None = None

    def set_serial_parameters(self, parameters: SerialParameters) -> None:
        self.parameters = parameters


class LineDriver:
    """Driver that opens one simulated line."""

    name = "sim"

    def __init__(self, line: SimulatedLine) -> None:
        self.line = line
        self.opened: list[Address] = []

    def works_with(self, address: Address) -> bool:
        return address.kind is AddressKind.SERIAL

    def open(self, address: Address) -> SimulatedLine:
        self.opened.append(address)
        return self.line

    def search(self) -> list[Address]:
        return []


@pytest.fixture
def line() -> SimulatedLine:
    return SimulatedLine()


@pytest.fixture
def bus(line: SimulatedLine) -> Iterator[ModbusBus]:
    bus = ModbusBus("/dev/ttySIM0", LineDriver(line))
    yield bus
    if bus.is_open:
        bus.close()


def _read_holding(start: int, count: int) -> bytes:
    return struct.pack(">HH", start, count)


class TestTransaction:
    """Tests for ModbusBus.transaction."""

    def test_reads_registers(self, bus: ModbusBus, line: SimulatedLine) -> None:
        reply = bus.transaction(1, FunctionCode.READ_HOLDING_REGISTERS, _read_holding(10, 3))
        assert reply.registers() == (10, 11, 12)
        assert line.written == [
            ModbusFrame.build(1, 0x03, _read_holding(10, 3)).to_bytes()
        ]

    def test_write_echo(self, bus: ModbusBus) -> None:
        data = struct.pack(">HH", 0x0010, 250)
        reply = bus.transaction(7, FunctionCode.WRITE_SINGLE_REGISTER, data)
        assert reply.payload == data

    def test_sets_poll_timeout(self, bus: ModbusBus, line: SimulatedLine) -> None:
        assert line.timeout_ms == POLL_INTERVAL_MS

    def test_timeout(self, bus: ModbusBus, line: SimulatedLine) -> None:
        line.responder = lambda _: None
        with pytest.raises(InstrumentTimeoutError, match="unit 4"):
            bus.transaction(4, 0x03, _read_holding(0, 1), timeout_ms=100)

    def test_exception_reply(self, bus: ModbusBus, line: SimulatedLine) -> None:
        line.responder = lambda req: ModbusFrame.build(req[0], req[1] | 0x80, b"\x02").to_bytes()
        with pytest.raises(ProtocolError) as exc_info:
            bus.transaction(2, 0x03, _read_holding(0x9999, 1))
        assert exc_info.value.exception_code == 2

    def test_crc_mismatch(self, bus: ModbusBus, line: SimulatedLine) -> None:
        def corrupt(request: bytes) -> bytes | None:
            reply = register_slave(request)
            assert reply is not None
            return reply[:-1] + bytes([reply[-1] ^ 0xFF])

        line.responder = corrupt
        with pytest.raises(ProtocolError, match="CRC mismatch"):
            bus.transaction(1, 0x03, _read_holding(0, 1))

    def test_function_mismatch(self, bus: ModbusBus, line: SimulatedLine) -> None:
        line.responder = lambda req: ModbusFrame.build(req[0], 0x04, b"\x02\x00\x01").to_bytes()
        with pytest.raises(ProtocolError, match="replied with function 0x04"):
            bus.transaction(1, 0x03, _read_holding(0, 1))

    def test_resyncs_after_junk_byte(self, bus: ModbusBus, line: SimulatedLine) -> None:
        def noisy(request: bytes) -> bytes | None:
            reply = register_slave(request)
            assert reply is not None
            return b"\xff" + reply

        line.responder = noisy
        reply = bus.transaction(0x11, 0x03, _read_holding(5, 1))
        assert reply.registers() == (5,)

    def test_reply_routed_to_its_unit(self, bus: ModbusBus, line: SimulatedLine) -> None:
        stray = ModbusFrame.build(2, 0x03, b"\x02\x12\x34").to_bytes()

        def crosstalk(request: bytes) -> bytes | None:
            reply = register_slave(request)
            assert reply is not None
            return stray + reply if request[0] == 1 else reply

        line.responder = crosstalk
        assert bus.transaction(1, 0x03, _read_holding(0, 1)).registers() == (0,)
        # The stray unit-2 frame is discarded, not taken as the answer.
        assert bus.transaction(2, 0x03, _read_holding(8, 1)).registers() == (8,)

    def test_concurrent_transactions(self, bus: ModbusBus) -> None:
        errors: list[str] = []

        def worker(unit: int) -> None:
            for start in range(20):
                reply = bus.transaction(unit, 0x04, _read_holding(start, 2))
                if reply.address != unit or reply.registers() != (start, start + 1):
                    errors.append(f"unit {unit}: {reply}")

        threads = [threading.Thread(target=worker, args=(unit,)) for unit in (1, 2, 3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        assert errors == []

    def test_reader_failure_reported(self, bus: ModbusBus, line: SimulatedLine) -> None:
        line.responder = lambda _: None
        line.fail = InstrumentConnectionError("device unplugged")
        line.inject(b"")
        with pytest.raises(InstrumentConnectionError, match="has stopped"):
            bus.transaction(1, 0x03, _read_holding(0, 1), timeout_ms=300)


class TestLifecycle:
    """Tests for opening, sharing and closing buses."""

    def test_close_twice(self, line: SimulatedLine) -> None:
        bus = ModbusBus("/dev/ttySIM1", LineDriver(line))
        bus.close()
        assert line.closed
        with pytest.raises(ConnectionStateError):
            bus.close()

    def test_transaction_after_close(self, line: SimulatedLine) -> None:
        bus = ModbusBus("/dev/ttySIM2", LineDriver(line))
        bus.close()
        with pytest.raises(ConnectionStateError):
            bus.transaction(1, 0x03, _read_holding(0, 1))

    def test_serial_parameters_applied(self) -> None:
        line = SimulatedSerialLine()
        params = SerialParameters(baud_rate=19200)
        bus = ModbusBus("/dev/ttySIM3", LineDriver(line), params)
        try:
            assert line.parameters == params
        finally:
            bus.close()

    def test_serial_parameters_need_serial_handle(self, line: SimulatedLine) -> None:
        with pytest.raises(InstrumentConnectionError, match="cannot apply serial settings"):
            ModbusBus("/dev/ttySIM4", LineDriver(line), SerialParameters())
        assert line.closed

    def test_for_port_shares_bus(self, line: SimulatedLine) -> None:
        driver = LineDriver(line)
        first = ModbusBus.for_port(" /dev/ttySIM5 ", driver)
        second = ModbusBus.for_port("/DEV/TTYSIM5", driver)
        assert first is second
        assert first.references == 2
        assert len(driver.opened) == 1

        first.release()
        assert second.is_open
        assert not line.closed

        second.release()
        assert not second.is_open
        assert line.closed

    def test_for_port_reopens_after_release(self) -> None:
        line = SimulatedLine()
        driver = LineDriver(line)
        first = ModbusBus.for_port("/dev/ttySIM6", driver)
        first.release()
        second = ModbusBus.for_port("/dev/ttySIM6", driver)
        try:
            assert second is not first
            assert len(driver.opened) == 2
        finally:
            second.release()
