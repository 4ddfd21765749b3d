"""Termination detection for transports with no message framing.

Serial lines and raw sockets deliver an unbroken byte stream. The
:class:`TerminatorScanner` consumes that stream one byte at a time and keeps
only a sliding window as long as the termination sequence, so detecting the
end of a message costs constant memory beyond the message itself.
"""

from __future__ import annotations

from collections import deque


def terminator_from_int(value: int) -> bytes:
    """Unpack an integer termination code into bytes.

    The value is read big-endian with leading zero bytes dropped, so
    ``0x0D0A`` becomes ``b"\\r\\n"`` and ``0x0A`` becomes ``b"\\n"``.

    Args:
        value: Non-negative integer holding up to eight bytes.

    Returns:
        The termination sequence (empty for zero).

    Raises:
        ValueError: If *value* is negative or wider than eight bytes.
    """
    if value < 0 or value >= 1 << 64:
        raise ValueError(f"Terminator code out of range: {value:#x}")
    return value.to_bytes(8, "big").lstrip(b"\x00")


class TerminatorScanner:
    """Sliding-window matcher for a termination sequence.

    Args:
        terminator: The sequence that ends a message. Must not be empty.

    Example:
        >>> scanner = TerminatorScanner(b"\\r\\n")
        >>> [scanner.feed(b) for b in b"1.2\\r\\n"]
        [False, False, False, False, True]
        >>> scanner.message()
        b'1.2'
    """

    def __init__(self, terminator: bytes) -> None:
        if not terminator:
            raise ValueError("terminator must not be empty")
        self._terminator = terminator
        self._window: deque[int] = deque(maxlen=len(terminator))
        self._buffer = bytearray()
        self._matched = False

    @property
    def terminator(self) -> bytes:
        """The sequence being scanned for."""
        return self._terminator

    @property
    def matched(self) -> bool:
        """True once the termination sequence has been seen."""
        return self._matched

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, byte: int) -> bool:
        """Consume one byte.

        Returns:
            True if this byte completed the termination sequence.

        Raises:
            RuntimeError: If called after a match without :meth:`reset`.
        """
        if self._matched:
            raise RuntimeError("terminator already matched; call reset() first")
        self._buffer.append(byte)
        self._window.append(byte)
        if len(self._window) == len(self._terminator) and bytes(self._window) == self._terminator:
            self._matched = True
        return self._matched

    def message(self) -> bytes:
        """Return the bytes received so far, minus a matched terminator."""
        if self._matched:
            return bytes(self._buffer[: -len(self._terminator)])
        return bytes(self._buffer)

    def reset(self) -> None:
        """Forget all received bytes."""
        self._window.clear()
        self._buffer.clear()
        self._matched = False
