"""Modbus RTU support for labio.

This package talks to Modbus RTU slaves (temperature controllers,
thermocouple readers, PLC I/O) over a shared serial bus. It includes:

- CRC-16 and frame encoding/decoding
- A per-port bus manager with a reader thread and per-unit reply queues
- Devices exposing input/holding registers, discrete inputs and coils

Typical usage::

    from labio_modbus import ModbusDevice

    device = ModbusDevice("MODBUS::/dev/ttyUSB0::1::INSTR")
    print(device.identify())
    print(device.register_ro(0).get())
    device.close()
"""

from labio_modbus.bus import ModbusBus
from labio_modbus.device import (
    Coil,
    DiscreteInput,
    HoldingRegister,
    InputRegister,
    ModbusDevice,
)
from labio_modbus.frame import (
    COIL_OFF,
    COIL_ON,
    FunctionCode,
    ModbusFrame,
    crc16,
    read_request,
    write_single_request,
)

__all__ = [
    # Framing
    "COIL_OFF",
    "COIL_ON",
    "FunctionCode",
    "ModbusFrame",
    "crc16",
    "read_request",
    "write_single_request",
    # Bus
    "ModbusBus",
    # Devices
    "Coil",
    "DiscreteInput",
    "HoldingRegister",
    "InputRegister",
    "ModbusDevice",
]
