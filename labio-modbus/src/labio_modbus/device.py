"""Modbus RTU slave device with register and coil accessors.

Typical usage::

    from labio_modbus import ModbusDevice

    with ModbusDevice("MODBUS::/dev/ttyUSB0::3::INSTR") as device:
        setpoint = device.register_rw(0x0010)
        setpoint.set(250)
        temperature = device.register_ro(0x0000).get()
        alarm = device.coil_ro(4).get()
"""

from __future__ import annotations

from labio_core.errors import AddressFormatError, ConnectionStateError, ProtocolError

from labio_comm.address import ModbusAddress, parse_address
from labio_comm.driver import Driver, SerialParameters
from labio_modbus.bus import DEFAULT_TIMEOUT_MS, ModbusBus
from labio_modbus.frame import (
    COIL_OFF,
    COIL_ON,
    FunctionCode,
    ModbusFrame,
    read_request,
    write_single_request,
)


class ModbusDevice:
    """One slave unit on a shared Modbus RTU bus.

    Args:
        address: Modbus address, typed or as a ``MODBUS::port::unit::INSTR``
            string.
        driver: Driver used to open the port if the bus is not open yet.
        parameters: Serial line settings applied when the bus is opened.

    Raises:
        AddressFormatError: If *address* is not a Modbus address.
        InstrumentConnectionError: If the port cannot be opened.
    """

    def __init__(
        self,
        address: ModbusAddress | str,
        driver: Driver | None = None,
        parameters: SerialParameters | None = None,
    ) -> None:
        if isinstance(address, str):
            modbus = parse_address(address).to_modbus()
            if modbus is None:
                raise AddressFormatError(address, "not a Modbus RTU address")
            address = modbus
        self._address = address
        self._timeout_ms = DEFAULT_TIMEOUT_MS
        self._bus: ModbusBus | None = ModbusBus.for_port(address.port, driver, parameters)

    # -- Properties ----------------------------------------------------------

    @property
    def address(self) -> ModbusAddress:
        """The device's address."""
        return self._address

    @property
    def unit(self) -> int:
        """The slave unit address."""
        return self._address.unit

    @property
    def timeout_ms(self) -> int:
        """Transaction timeout in milliseconds."""
        return self._timeout_ms

    @property
    def is_open(self) -> bool:
        """Return True until :meth:`close` has been called."""
        return self._bus is not None

    def set_timeout(self, timeout_ms: int) -> None:
        """Set the transaction timeout.

        Raises:
            ValueError: If *timeout_ms* is not positive.
        """
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        self._timeout_ms = timeout_ms

    def identify(self) -> str:
        """Modbus has no identification query; describe the unit instead."""
        return f"Modbus RTU device, unit address {self.unit}"

    # -- Accessors -----------------------------------------------------------

    def register_ro(self, number: int) -> InputRegister:
        """Read-only input register (function 0x04)."""
        return InputRegister(self, number)

    def register_rw(self, number: int) -> HoldingRegister:
        """Read-write holding register (functions 0x03 / 0x06)."""
        return HoldingRegister(self, number)

    def coil_ro(self, number: int) -> DiscreteInput:
        """Read-only discrete input (function 0x02)."""
        return DiscreteInput(self, number)

    def coil_rw(self, number: int) -> Coil:
        """Read-write coil (functions 0x01 / 0x05)."""
        return Coil(self, number)

    # -- Raw operations ------------------------------------------------------

    def read_registers(self, function: int, start: int, count: int = 1) -> tuple[int, ...]:
        """Read *count* 16-bit registers with function 0x03 or 0x04."""
        request = read_request(self.unit, function, start, count)
        reply = self._transaction(function, request.payload)
        values = reply.registers()
        if len(values) != count:
            raise ProtocolError(
                f"Expected {count} registers from unit {self.unit}, got {len(values)}"
            )
        return values

    def read_bits(self, function: int, start: int, count: int = 1) -> tuple[bool, ...]:
        """Read *count* coils or discrete inputs with function 0x01 or 0x02."""
        request = read_request(self.unit, function, start, count)
        reply = self._transaction(function, request.payload)
        return reply.bits(count)

    def write_register(self, number: int, value: int) -> None:
        """Write one holding register (function 0x06).

        Raises:
            ValueError: If *value* does not fit in 16 bits.
        """
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"Register value out of range: {value}")
        self._write(FunctionCode.WRITE_SINGLE_REGISTER, number, value)

    def write_coil(self, number: int, state: bool) -> None:
        """Switch one coil on or off (function 0x05)."""
        self._write(FunctionCode.WRITE_SINGLE_COIL, number, COIL_ON if state else COIL_OFF)

    # -- Lifecycle -----------------------------------------------------------

    def close(self) -> None:
        """Release this device's share of the bus.

        Raises:
            ConnectionStateError: If the device was already closed.
        """
        bus = self._require()
        self._bus = None
        bus.release()

    def __enter__(self) -> ModbusDevice:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.is_open:
            self.close()

    def __repr__(self) -> str:
        return f"ModbusDevice({str(self._address)!r})"

    # -- Private helpers -----------------------------------------------------

    def _require(self) -> ModbusBus:
        if self._bus is None:
            raise ConnectionStateError(f"Modbus device {self._address} is closed")
        return self._bus

    def _transaction(self, function: int, data: bytes) -> ModbusFrame:
        return self._require().transaction(self.unit, function, data, self._timeout_ms)

    def _write(self, function: int, number: int, value: int) -> None:
        data = write_single_request(self.unit, function, number, value).payload
        reply = self._transaction(function, data)
        if reply.payload != data:
            raise ProtocolError(
                f"Modbus unit {self.unit} echoed {reply.payload.hex()} to write {data.hex()}"
            )


class _Accessor:
    """Binds one register or coil number to a device."""

    function: FunctionCode

    def __init__(self, device: ModbusDevice, number: int) -> None:
        if not 0 <= number <= 0xFFFF:
            raise ValueError(f"Modbus register number out of range: {number}")
        self._device = device
        self._number = number

    @property
    def number(self) -> int:
        """Register or coil number."""
        return self._number

    def __repr__(self) -> str:
        return f"{type(self).__name__}(unit={self._device.unit}, number={self._number:#06x})"


class InputRegister(_Accessor):
    """Read-only 16-bit input register."""

    function = FunctionCode.READ_INPUT_REGISTERS

    def get(self) -> int:
        """Read the register."""
        return self._device.read_registers(self.function, self._number)[0]


class HoldingRegister(InputRegister):
    """Read-write 16-bit holding register."""

    function = FunctionCode.READ_HOLDING_REGISTERS

    def set(self, value: int) -> None:
        """Write the register."""
        self._device.write_register(self._number, value)


class DiscreteInput(_Accessor):
    """Read-only single-bit input."""

    function = FunctionCode.READ_DISCRETE_INPUTS

    def get(self) -> bool:
        """Read the input."""
        return self._device.read_bits(self.function, self._number)[0]


class Coil(DiscreteInput):
    """Read-write single-bit coil."""

    function = FunctionCode.READ_COILS

    def set(self, state: bool) -> None:
        """Switch the coil."""
        self._device.write_coil(self._number, state)
