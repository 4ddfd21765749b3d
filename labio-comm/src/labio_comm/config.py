"""YAML configuration for named instrument connections.

This module loads a file describing the instruments on a bench and the
connection settings each one needs. A ``defaults`` section supplies settings
shared by every instrument; each instrument entry may override any of them.

Example YAML configuration:
    defaults:
      timeout_ms: 2000

    instruments:
      smu:
        address: "GPIB0::22::INSTR"
        read_terminator: "\\n"
        eoi: true
        identity:
          manufacturer: "KEITHLEY INSTRUMENTS INC."
          model: "MODEL 2450"
      tc:
        address: "ASRL::/dev/ttyUSB0::INSTR"
        timeout_ms: 500
        io_interval_ms: 50
        retry: {attempts: 2, backoff_ms: 10}
        serial: {baud_rate: 9600, data_bits: 8, parity: none, stop_bits: 1, flow: none}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from labio_comm.address import Address, parse_address
from labio_comm.driver import FlowControl, Parity, SerialParameters, StopBits
from labio_comm.policy import RetryPolicy

_SETTING_KEYS = frozenset(
    {
        "timeout_ms",
        "read_terminator",
        "write_terminator",
        "eoi",
        "buffer_size",
        "io_interval_ms",
        "retry",
        "serial",
        "auto_remove",
    }
)
_INSTRUMENT_KEYS = _SETTING_KEYS | {"address", "driver", "identity"}


@dataclass(frozen=True)
class ConnectionSettings:
    """Settings applied to a connection right after it opens.

    Attributes:
        timeout_ms: Overall read deadline in milliseconds.
        read_terminator: Response termination, as text or integer code.
        write_terminator: String appended to every command.
        eoi: Assert GPIB EOI on the last byte of each write.
        buffer_size: Maximum response length in bytes.
        io_interval_ms: Minimum spacing between writes; 0 disables it.
        retry: Retry policy for malformed responses.
        serial: Serial line settings, for serial addresses only.
        auto_remove: Phrases deleted from every response.
    """

    timeout_ms: int = 2000
    read_terminator: str | int = "\n"
    write_terminator: str = "\n"
    eoi: bool = True
    buffer_size: int = 1024
    io_interval_ms: int = 0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    serial: SerialParameters | None = None
    auto_remove: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        if self.io_interval_ms < 0:
            raise ValueError("io_interval_ms must be >= 0")


@dataclass(frozen=True)
class ExpectedIdentity:
    """Identity an instrument must report when it is opened.

    Attributes:
        manufacturer: Expected manufacturer (case-insensitive).
        model: Expected model (case-insensitive).
    """

    manufacturer: str
    model: str


@dataclass(frozen=True)
class InstrumentConfig:
    """One named instrument.

    Attributes:
        name: Unique instrument name (e.g. ``"smu"``).
        address: Parsed instrument address.
        settings: Connection settings after applying defaults.
        driver: Name of a driver to try first, if any.
        identity: Identity to verify on open, if any.
    """

    name: str
    address: Address
    settings: ConnectionSettings = field(default_factory=ConnectionSettings)
    driver: str | None = None
    identity: ExpectedIdentity | None = None


@dataclass(frozen=True)
class LabioConfig:
    """All instruments described by one configuration file.

    Attributes:
        instruments: Instrument configurations in file order.
    """

    instruments: tuple[InstrumentConfig, ...] = ()

    def get(self, name: str) -> InstrumentConfig:
        """Return the instrument called *name*.

        Raises:
            KeyError: If no instrument has that name.
        """
        for instrument in self.instruments:
            if instrument.name == name:
                return instrument
        raise KeyError(f"Unknown instrument: {name!r}")

    @property
    def names(self) -> tuple[str, ...]:
        """Instrument names in file order."""
        return tuple(i.name for i in self.instruments)


def _parse_serial(where: str, data: Any) -> SerialParameters:
    if not isinstance(data, dict):
        raise ValueError(f"{where}.serial must be a mapping")
    try:
        return SerialParameters(
            baud_rate=int(data.get("baud_rate", 9600)),
            data_bits=int(data.get("data_bits", 8)),
            parity=Parity(str(data.get("parity", "none")).lower()),
            stop_bits=StopBits(float(data.get("stop_bits", 1))),
            flow=FlowControl(str(data.get("flow", "none")).lower()),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{where}.serial is invalid: {exc}") from exc


def _parse_retry(where: str, data: Any) -> RetryPolicy:
    if not isinstance(data, dict):
        raise ValueError(f"{where}.retry must be a mapping")
    try:
        return RetryPolicy(
            attempts=int(data.get("attempts", 2)),
            backoff_ms=int(data.get("backoff_ms", 0)),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{where}.retry is invalid: {exc}") from exc


def _parse_settings(where: str, data: dict[str, Any]) -> ConnectionSettings:
    kwargs: dict[str, Any] = {}
    for key in ("timeout_ms", "buffer_size", "io_interval_ms"):
        if key in data:
            if not isinstance(data[key], int) or isinstance(data[key], bool):
                raise ValueError(f"{where}.{key} must be an integer")
            kwargs[key] = data[key]
    if "read_terminator" in data:
        if not isinstance(data["read_terminator"], (str, int)):
            raise ValueError(f"{where}.read_terminator must be a string or integer")
        kwargs["read_terminator"] = data["read_terminator"]
    if "write_terminator" in data:
        if not isinstance(data["write_terminator"], str):
            raise ValueError(f"{where}.write_terminator must be a string")
        kwargs["write_terminator"] = data["write_terminator"]
    if "eoi" in data:
        if not isinstance(data["eoi"], bool):
            raise ValueError(f"{where}.eoi must be true or false")
        kwargs["eoi"] = data["eoi"]
    if "retry" in data:
        kwargs["retry"] = _parse_retry(where, data["retry"])
    if "serial" in data:
        kwargs["serial"] = _parse_serial(where, data["serial"])
    if "auto_remove" in data:
        phrases = data["auto_remove"]
        if isinstance(phrases, str):
            phrases = [phrases]
        if not isinstance(phrases, list) or not all(isinstance(p, str) for p in phrases):
            raise ValueError(f"{where}.auto_remove must be a string or list of strings")
        kwargs["auto_remove"] = tuple(phrases)
    try:
        return ConnectionSettings(**kwargs)
    except ValueError as exc:
        raise ValueError(f"{where}: {exc}") from exc


def parse_config(data: Any) -> LabioConfig:
    """Build a configuration from already-loaded YAML data.

    Args:
        data: The mapping produced by ``yaml.safe_load``.

    Returns:
        Parsed configuration.

    Raises:
        ValueError: If the data is invalid; the message names the offending key.
    """
    if not isinstance(data, dict):
        raise ValueError("Config must be a YAML mapping")

    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ValueError("defaults must be a mapping")
    unknown = set(defaults) - _SETTING_KEYS
    if unknown:
        raise ValueError(f"Unknown key(s) in defaults: {', '.join(sorted(unknown))}")

    instruments_data = data.get("instruments") or {}
    if not isinstance(instruments_data, dict):
        raise ValueError("instruments must be a mapping")

    instruments: list[InstrumentConfig] = []
    for name, inst_data in instruments_data.items():
        where = f"instruments.{name}"
        if not isinstance(inst_data, dict):
            raise ValueError(f"Instrument '{name}' must be a mapping")
        unknown = set(inst_data) - _INSTRUMENT_KEYS
        if unknown:
            raise ValueError(f"Unknown key(s) in {where}: {', '.join(sorted(unknown))}")

        raw_address = inst_data.get("address")
        if not raw_address:
            raise ValueError(f"Instrument '{name}' missing required field: address")
        try:
            address = parse_address(str(raw_address))
        except ValueError as exc:
            raise ValueError(f"{where}.address: {exc}") from exc

        identity: ExpectedIdentity | None = None
        identity_data = inst_data.get("identity")
        if identity_data is not None:
            if not isinstance(identity_data, dict):
                raise ValueError(f"{where}.identity must be a mapping")
            if not identity_data.get("manufacturer"):
                raise ValueError(
                    f"Instrument '{name}' missing required field: identity.manufacturer"
                )
            if not identity_data.get("model"):
                raise ValueError(f"Instrument '{name}' missing required field: identity.model")
            identity = ExpectedIdentity(
                manufacturer=str(identity_data["manufacturer"]),
                model=str(identity_data["model"]),
            )

        merged = {**defaults, **{k: v for k, v in inst_data.items() if k in _SETTING_KEYS}}
        instruments.append(
            InstrumentConfig(
                name=str(name),
                address=address,
                settings=_parse_settings(where, merged),
                driver=inst_data.get("driver"),
                identity=identity,
            )
        )

    return LabioConfig(instruments=tuple(instruments))


def load_config(path: str | Path) -> LabioConfig:
    """Load instrument configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Parsed configuration.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the config is invalid or missing required fields.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return parse_config(data)
