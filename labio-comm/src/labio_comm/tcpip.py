"""Raw TCP/IP socket driver.

Opens plain stream sockets to instruments that speak their command language
directly over TCP (``TCPIP::host::port::SOCKET``). Sockets have no message
framing, so handles report ``native_framing = False`` and the connection scans
for the termination sequence.
"""

from __future__ import annotations

import logging
import socket

from labio_core.errors import ConnectionStateError, InstrumentConnectionError

from labio_comm.address import Address, AddressKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000


class TcpipHandle:
    """Handle on one connected TCP socket.

    Args:
        sock: A connected stream socket.
        peer: ``host:port`` string used in messages.
    """

    native_framing = False

    def __init__(self, sock: socket.socket, peer: str) -> None:
        self._sock: socket.socket | None = sock
        self._peer = peer

    @property
    def is_open(self) -> bool:
        """Return True if the socket is open."""
        return self._sock is not None

    def _require(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionStateError(f"Socket to {self._peer} is not open")
        return self._sock

    def write(self, data: bytes) -> int:
        """Send all of *data*."""
        sock = self._require()
        try:
            sock.sendall(data)
        except OSError as exc:
            raise InstrumentConnectionError(f"Error writing to {self._peer}: {exc}") from exc
        return len(data)

    def read(self, size: int) -> bytes:
        """Receive up to *size* bytes; empty when the socket timeout expires.

        Raises:
            InstrumentConnectionError: If the peer closed the connection.
        """
        sock = self._require()
        try:
            data = sock.recv(size)
        except socket.timeout:
            return b""
        except OSError as exc:
            raise InstrumentConnectionError(f"Error reading from {self._peer}: {exc}") from exc
        if not data:
            raise InstrumentConnectionError(f"Connection closed by {self._peer}")
        return data

    def clear(self) -> None:
        """Discard whatever the instrument has already sent."""
        sock = self._require()
        previous = sock.gettimeout()
        sock.settimeout(0.0)
        try:
            while sock.recv(4096):
                pass
        except (BlockingIOError, socket.timeout):
            pass
        except OSError as exc:
            raise InstrumentConnectionError(f"Error clearing {self._peer}: {exc}") from exc
        finally:
            sock.settimeout(previous)

    def set_timeout(self, timeout_ms: int) -> None:
        """Set the socket receive timeout."""
        self._require().settimeout(timeout_ms / 1000.0)

    def set_eoi(self, enabled: bool) -> None:
        """Sockets have no EOI; accepted and ignored."""

    def set_eos(self, terminator: bytes) -> None:
        """Termination is scanned by the connection; accepted and ignored."""

    def set_keep_alive(self, enabled: bool) -> None:
        """Enable or disable TCP keep-alive probes."""
        self._require().setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, int(enabled))

    def is_keep_alive(self) -> bool:
        """Return True if TCP keep-alive is enabled."""
        return bool(self._require().getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE))

    def close(self) -> None:
        """Close the socket.

        Raises:
            ConnectionStateError: If the handle was already closed.
        """
        sock = self._require()
        self._sock = None
        try:
            sock.close()
        except OSError as exc:
            raise InstrumentConnectionError(f"Error closing socket to {self._peer}: {exc}") from exc
        logger.info("Closed socket to %s", self._peer)


class TcpipDriver:
    """Driver for raw TCP/IP socket instruments.

    Args:
        timeout_ms: Connect timeout and initial receive timeout.
    """

    name = "tcpip"

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        self._timeout_ms = timeout_ms

    def works_with(self, address: Address) -> bool:
        """Serve ``TCPIP::host::port::SOCKET`` addresses only."""
        return address.kind is AddressKind.TCPIP

    def open(self, address: Address) -> TcpipHandle:
        """Connect to the host and port named by *address*.

        Raises:
            InstrumentConnectionError: If the connection cannot be made.
        """
        tcpip = address.to_tcpip()
        if tcpip is None:
            raise InstrumentConnectionError(
                "Raw TCP-IP driver can only be used to open raw TCP-IP sockets"
            )
        peer = f"{tcpip.host}:{tcpip.port}"
        try:
            sock = socket.create_connection((tcpip.host, tcpip.port), self._timeout_ms / 1000.0)
        except OSError as exc:
            raise InstrumentConnectionError(f"Cannot connect to {peer}: {exc}") from exc
        logger.info("Connected to %s", peer)
        return TcpipHandle(sock, peer)

    def search(self) -> list[Address]:
        """Raw sockets cannot be discovered."""
        return []
