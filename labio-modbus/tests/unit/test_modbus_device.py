"""Tests for ModbusDevice register and coil access."""

from __future__ import annotations

import struct
import threading
from typing import Callable, Iterator

import pytest

from labio_core.errors import (
    AddressFormatError,
    ConnectionStateError,
    InstrumentTimeoutError,
    ProtocolError,
)

from labio_comm.address import Address, AddressKind, ModbusAddress
from labio_modbus.device import Coil, DiscreteInput, HoldingRegister, InputRegister, ModbusDevice
from labio_modbus.frame import ModbusFrame


class FakeController:
    """Register map of one or more simulated slave units."""

    def __init__(self) -> None:
        self.registers: dict[tuple[int, int], int] = {}
        self.coils: dict[tuple[int, int], bool] = {}
        self.echo_override: bytes | None = None

    def respond(self, request: bytes) -> bytes | None:
        frame = ModbusFrame.parse(request)
        unit, function = frame.address, frame.function
        first, second = struct.unpack(">HH", frame.payload)
        if function in (0x03, 0x04):
            values = [self.registers.get((unit, first + i), 0) for i in range(second)]
            data = bytes([2 * second]) + struct.pack(f">{second}H", *values)
        elif function in (0x01, 0x02):
            packed = bytearray((second + 7) // 8)
            for i in range(second):
                if self.coils.get((unit, first + i), False):
                    packed[i // 8] |= 1 << (i % 8)
            data = bytes([len(packed)]) + bytes(packed)
        elif function == 0x05:
            self.coils[(unit, first)] = second == 0xFF00
            data = self.echo_override or frame.payload
        elif function == 0x06:
            self.registers[(unit, first)] = second
            data = self.echo_override or frame.payload
        else:
            return None
        return ModbusFrame.build(unit, function, data).to_bytes()


class FakeLine:
    """Serial handle wired to a :class:`FakeController`."""

    native_framing = False

    def __init__(self, responder: Callable[[bytes], bytes | None]) -> None:
        self.responder = responder
        self.written: list[bytes] = []
        self.closed = False
        self._timeout_s = 0.1
        self._incoming = bytearray()
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        self.written.append(data)
        reply = self.responder(data)
        if reply:
            with self._cond:
                self._incoming.extend(reply)
                self._cond.notify_all()
        return len(data)

    def read(self, size: int) -> bytes:
        with self._cond:
            if not self._incoming:
                self._cond.wait(self._timeout_s)
            data = bytes(self._incoming[:size])
            del self._incoming[:size]
            return data

    def clear(self) -> None:
        with self._cond:
            self._incoming.clear()

    def set_timeout(self, timeout_ms: int) -> None:
        self._timeout_s = timeout_ms / 1000.0

    def set_eoi(self, enabled: bool) -> None:
        pass

    def set_eos(self, terminator: bytes) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class FakeLineDriver:
    """Driver that opens a fresh fake line per port."""

    name = "fake"

    def __init__(self, controller: FakeController) -> None:
        self.controller = controller
        self.lines: dict[str, FakeLine] = {}

    def works_with(self, address: Address) -> bool:
        return address.kind is AddressKind.SERIAL

    def open(self, address: Address) -> FakeLine:
        serial = address.to_serial()
        assert serial is not None
        line = FakeLine(self.controller.respond)
        self.lines[serial.port] = line
        return line

    def search(self) -> list[Address]:
        return []


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def driver(controller: FakeController) -> FakeLineDriver:
    return FakeLineDriver(controller)


class TestConstruction:
    """Tests for creating devices."""

    def test_from_string(self, driver: FakeLineDriver) -> None:
        with ModbusDevice("MODBUS::/dev/ttyDEV0::3::INSTR", driver) as device:
            assert device.address == ModbusAddress("/dev/ttyDEV0", 3)
            assert device.unit == 3
            assert device.identify() == "Modbus RTU device, unit address 3"
            assert "MODBUS::/dev/ttyDEV0::3::INSTR" in repr(device)

    def test_rejects_non_modbus_address(self, driver: FakeLineDriver) -> None:
        with pytest.raises(AddressFormatError, match="not a Modbus RTU address"):
            ModbusDevice("GPIB0::22::INSTR", driver)
        assert driver.lines == {}

    def test_devices_share_bus(self, driver: FakeLineDriver) -> None:
        first = ModbusDevice(ModbusAddress("/dev/ttyDEV1", 1), driver)
        second = ModbusDevice(ModbusAddress("/dev/ttyDEV1", 2), driver)
        assert len(driver.lines) == 1
        line = driver.lines["/dev/ttyDEV1"]

        first.close()
        assert not line.closed
        second.close()
        assert line.closed

    def test_close_twice(self, driver: FakeLineDriver) -> None:
        device = ModbusDevice(ModbusAddress("/dev/ttyDEV2", 1), driver)
        device.close()
        assert not device.is_open
        with pytest.raises(ConnectionStateError):
            device.close()
        with pytest.raises(ConnectionStateError):
            device.register_ro(0).get()


class TestAccessors:
    """Tests for register and coil accessors."""

    @pytest.fixture
    def device(self, driver: FakeLineDriver) -> Iterator[ModbusDevice]:
        device = ModbusDevice(ModbusAddress("/dev/ttyDEV3", 5), driver)
        yield device
        if device.is_open:
            device.close()

    def test_accessor_types(self, device: ModbusDevice) -> None:
        assert isinstance(device.register_ro(1), InputRegister)
        assert isinstance(device.register_rw(1), HoldingRegister)
        assert isinstance(device.coil_ro(1), DiscreteInput)
        assert isinstance(device.coil_rw(1), Coil)
        assert device.register_rw(0x10).number == 0x10

    def test_input_register_read(self, device: ModbusDevice, controller: FakeController) -> None:
        controller.registers[(5, 0x0100)] = 2981
        assert device.register_ro(0x0100).get() == 2981

    def test_input_register_uses_function_4(
        self, device: ModbusDevice, driver: FakeLineDriver
    ) -> None:
        device.register_ro(2).get()
        assert driver.lines["/dev/ttyDEV3"].written[-1][:2] == bytes([5, 0x04])

    def test_holding_register_round_trip(
        self, device: ModbusDevice, controller: FakeController
    ) -> None:
        register = device.register_rw(0x0010)
        register.set(250)
        assert controller.registers[(5, 0x0010)] == 250
        assert register.get() == 250

    def test_coil_round_trip(self, device: ModbusDevice, controller: FakeController) -> None:
        coil = device.coil_rw(3)
        coil.set(True)
        assert controller.coils[(5, 3)] is True
        assert coil.get() is True
        coil.set(False)
        assert coil.get() is False

    def test_discrete_input(self, device: ModbusDevice, controller: FakeController) -> None:
        controller.coils[(5, 9)] = True
        assert device.coil_ro(9).get() is True
        assert device.coil_ro(8).get() is False

    def test_read_block(self, device: ModbusDevice, controller: FakeController) -> None:
        for i in range(4):
            controller.registers[(5, 20 + i)] = 100 + i
        assert device.read_registers(0x03, 20, 4) == (100, 101, 102, 103)

    def test_bad_write_echo(self, device: ModbusDevice, controller: FakeController) -> None:
        controller.echo_override = bytes([0x00, 0x10, 0x00, 0x01])
        with pytest.raises(ProtocolError, match="echoed"):
            device.register_rw(0x0010).set(250)

    def test_register_value_range(self, device: ModbusDevice) -> None:
        with pytest.raises(ValueError, match="out of range"):
            device.register_rw(0).set(0x10000)

    def test_register_number_range(self, device: ModbusDevice) -> None:
        with pytest.raises(ValueError):
            device.register_ro(-1)

    def test_timeout(self, device: ModbusDevice, driver: FakeLineDriver) -> None:
        driver.lines["/dev/ttyDEV3"].responder = lambda _: None
        device.set_timeout(100)
        assert device.timeout_ms == 100
        with pytest.raises(InstrumentTimeoutError):
            device.register_ro(0).get()

    def test_timeout_must_be_positive(self, device: ModbusDevice) -> None:
        with pytest.raises(ValueError):
            device.set_timeout(0)
