"""Instrument communication layer for labio.

This package turns GPIB, RS-232 serial and raw TCP/IP links into one uniform
synchronous write/read/query primitive. It includes:

- Typed instrument addresses parsed from VISA-style resource strings
- Pluggable driver backends (pyvisa, pyserial, stdlib sockets) and a registry
  that resolves an address to the first driver that can open it
- The Connection session with termination framing, IO spacing and retries
- The Instrument wrapper that performs an identity handshake on open
- YAML configuration for named instruments

Typical usage::

    from labio_comm import Instrument

    smu = Instrument.open("GPIB0::22::INSTR")
    print(f"Connected to {smu.identity.manufacturer} {smu.identity.model}")
    smu.connection.write(":SOUR:VOLT %g", 1.5)
    smu.close()
"""

from labio_comm.address import (
    Address,
    AddressKind,
    GPIBAddress,
    LXIAddress,
    ModbusAddress,
    SerialAddress,
    TCPIPAddress,
    parse_address,
)
from labio_comm.config import (
    ConnectionSettings,
    ExpectedIdentity,
    InstrumentConfig,
    LabioConfig,
    load_config,
    parse_config,
)
from labio_comm.connection import Connection
from labio_comm.driver import (
    Driver,
    FlowControl,
    Handle,
    Parity,
    SerialHandle,
    SerialParameters,
    StopBits,
)
from labio_comm.framing import TerminatorScanner, terminator_from_int
from labio_comm.instrument import Instrument, Readable, Writable, parse_idn_response
from labio_comm.number import parse_bool, parse_int, parse_number, parse_numbers
from labio_comm.policy import IOLimiter, RetryPolicy
from labio_comm.registry import DriverRegistry, default_registry
from labio_comm.serial_driver import SerialDriver
from labio_comm.tcpip import TcpipDriver
from labio_comm.visa import VisaDriver

__all__ = [
    # Addresses
    "Address",
    "AddressKind",
    "GPIBAddress",
    "LXIAddress",
    "ModbusAddress",
    "SerialAddress",
    "TCPIPAddress",
    "parse_address",
    # Configuration
    "ConnectionSettings",
    "ExpectedIdentity",
    "InstrumentConfig",
    "LabioConfig",
    "load_config",
    "parse_config",
    # Connection
    "Connection",
    "TerminatorScanner",
    "terminator_from_int",
    "IOLimiter",
    "RetryPolicy",
    # Drivers
    "Driver",
    "DriverRegistry",
    "FlowControl",
    "Handle",
    "Parity",
    "SerialDriver",
    "SerialHandle",
    "SerialParameters",
    "StopBits",
    "TcpipDriver",
    "VisaDriver",
    "default_registry",
    # Instruments
    "Instrument",
    "Readable",
    "Writable",
    "parse_idn_response",
    # Number parsing
    "parse_bool",
    "parse_int",
    "parse_number",
    "parse_numbers",
]
