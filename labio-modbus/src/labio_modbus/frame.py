"""Modbus RTU framing and CRC-16.

An RTU frame on the wire is ``[unit][function][payload...][crc_lo][crc_hi]``.
The CRC is the Modbus CRC-16 (reflected polynomial 0xA001, initial value
0xFFFF) over every byte before it, transmitted low byte first.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

from labio_core.errors import ProtocolError


class FunctionCode(IntEnum):
    """Modbus function codes used by labio."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06


READ_FUNCTIONS = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)
WRITE_FUNCTIONS = frozenset({FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER})

EXCEPTION_FLAG = 0x80
COIL_ON = 0xFF00
COIL_OFF = 0x0000


def crc16(data: bytes) -> int:
    """Compute the Modbus CRC-16 of *data*.

    Args:
        data: Bytes to checksum.

    Returns:
        The 16-bit CRC. On the wire it is sent low byte first.

    Example:
        >>> crc16(bytes([0x01, 0x03, 0x00, 0x00, 0x00, 0x01])).to_bytes(2, "little").hex()
        '840a'
    """
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc


@dataclass(frozen=True)
class ModbusFrame:
    """One Modbus RTU frame.

    Attributes:
        address: Slave unit address.
        function: Function code, with bit 7 set for exception replies.
        payload: Bytes between the function code and the CRC.
        crc: CRC as carried by the frame.
    """

    address: int
    function: int
    payload: bytes
    crc: int

    @classmethod
    def build(cls, address: int, function: int, data: bytes) -> ModbusFrame:
        """Build a frame and compute its CRC.

        Raises:
            ValueError: If *address* or *function* does not fit in one byte.
        """
        if not 0 <= address <= 0xFF:
            raise ValueError(f"Modbus address out of range: {address}")
        if not 0 <= function <= 0xFF:
            raise ValueError(f"Modbus function code out of range: {function}")
        payload = bytes(data)
        return cls(address, function, payload, crc16(bytes([address, function]) + payload))

    @classmethod
    def parse(cls, raw: bytes) -> ModbusFrame:
        """Split received bytes into a frame.

        The CRC is kept as received and is not checked here; see
        :attr:`crc_valid`.

        Raises:
            ProtocolError: If *raw* is shorter than four bytes.
        """
        if len(raw) < 4:
            raise ProtocolError(f"Modbus frame too short ({len(raw)} bytes): {bytes(raw).hex()}")
        return cls(raw[0], raw[1], bytes(raw[2:-2]), raw[-2] | (raw[-1] << 8))

    def to_bytes(self) -> bytes:
        """Render the frame as it goes on the wire."""
        return bytes([self.address, self.function]) + self.payload + struct.pack("<H", self.crc)

    @property
    def crc_valid(self) -> bool:
        """True if the carried CRC matches the frame content."""
        return self.crc == crc16(bytes([self.address, self.function]) + self.payload)

    @property
    def is_exception(self) -> bool:
        """True if this is an exception reply."""
        return bool(self.function & EXCEPTION_FLAG)

    @property
    def exception_code(self) -> int | None:
        """The exception code of an exception reply, else None."""
        if self.is_exception and self.payload:
            return self.payload[0]
        return None

    def _data(self) -> bytes:
        if not self.payload:
            raise ProtocolError("Modbus read reply has no byte count")
        count = self.payload[0]
        data = self.payload[1:]
        if len(data) != count:
            raise ProtocolError(
                f"Modbus byte count {count} does not match {len(data)} data bytes"
            )
        return data

    def registers(self) -> tuple[int, ...]:
        """Decode a register read reply into 16-bit values.

        Raises:
            ProtocolError: If the byte count is inconsistent or odd.
        """
        data = self._data()
        if len(data) % 2:
            raise ProtocolError(f"Modbus register reply has odd length {len(data)}")
        return struct.unpack(f">{len(data) // 2}H", data)

    def bits(self, count: int) -> tuple[bool, ...]:
        """Decode a coil or discrete-input read reply into *count* booleans.

        Raises:
            ProtocolError: If the reply holds fewer than *count* bits.
        """
        data = self._data()
        if len(data) * 8 < count:
            raise ProtocolError(f"Modbus bit reply holds {len(data) * 8} bits, {count} requested")
        return tuple(bool(data[i // 8] >> (i % 8) & 1) for i in range(count))

    def __str__(self) -> str:
        return self.to_bytes().hex(" ").upper()


def read_request(unit: int, function: int, start: int, count: int) -> ModbusFrame:
    """Build a read request (functions 0x01-0x04).

    Args:
        unit: Slave unit address.
        function: One of the read function codes.
        start: First register or coil number.
        count: Number of registers or coils.

    Raises:
        ValueError: If *function* is not a read function or a field is out of range.
    """
    if function not in READ_FUNCTIONS:
        raise ValueError(f"Not a Modbus read function: {function:#04x}")
    if not 0 <= start <= 0xFFFF:
        raise ValueError(f"Start address out of range: {start}")
    if not 1 <= count <= 0x7D0:
        raise ValueError(f"Read count out of range: {count}")
    return ModbusFrame.build(unit, function, struct.pack(">HH", start, count))


def write_single_request(unit: int, function: int, register: int, value: int) -> ModbusFrame:
    """Build a single-coil (0x05) or single-register (0x06) write request.

    For coils, *value* must already be ``COIL_ON`` or ``COIL_OFF``.

    Raises:
        ValueError: If *function* is not a write function or a field is out of range.
    """
    if function not in WRITE_FUNCTIONS:
        raise ValueError(f"Not a Modbus single write function: {function:#04x}")
    if not 0 <= register <= 0xFFFF:
        raise ValueError(f"Register address out of range: {register}")
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Register value out of range: {value}")
    if function == FunctionCode.WRITE_SINGLE_COIL and value not in (COIL_ON, COIL_OFF):
        raise ValueError(f"Coil value must be 0xFF00 or 0x0000, got {value:#06x}")
    return ModbusFrame.build(unit, function, struct.pack(">HH", register, value))
