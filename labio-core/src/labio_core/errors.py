"""Exception types for labio-core.

This module defines the exception hierarchy used throughout the labio
instrument I/O layer. All labio exceptions inherit from LabioError, allowing
consumers to catch every framework-specific error with a single except clause.
Where a builtin exception describes the same failure, the labio type also
inherits from it so that generic ``except TimeoutError`` handlers still work.

Exception hierarchy:
    LabioError (base)
    +-- AddressFormatError: Unparseable resource locator
    +-- InstrumentConnectionError: Open/close/transport failures
    |   +-- InstrumentTimeoutError: Read or write deadline exceeded
    |   +-- ConnectionStateError: Use after close, double close
    +-- CommunicationError: Malformed response that survived every retry
    +-- ProtocolError: Malformed Modbus frame or device exception reply
    +-- IdentityMismatchError: Instrument identity does not match expectation
"""


class LabioError(Exception):
    """Base exception for all labio errors.

    This is the root of the labio exception hierarchy. Catch this to handle
    any framework-specific error.
    """


class AddressFormatError(LabioError, ValueError):
    """Raised when a resource locator string matches no known address grammar.

    Also raised when a grammar matches but a field is out of range, such as a
    GPIB primary address above 30.
    """

    def __init__(self, text: str, reason: str | None = None) -> None:
        """Initialize the error with the offending locator.

        Args:
            text: The locator string that could not be parsed.
            reason: Optional detail about which field was invalid.
        """
        self.text = text
        message = f"Invalid instrument address {text!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InstrumentConnectionError(LabioError, ConnectionError):
    """Raised when opening, closing, or using a transport fails.

    Driver backends wrap their library-specific exceptions (pyvisa, pyserial,
    socket errors) in this type at the driver boundary.
    """


class InstrumentTimeoutError(InstrumentConnectionError, TimeoutError):
    """Raised when a read or write does not complete before its deadline.

    Partial data received before the deadline is discarded, never returned.
    """


class ConnectionStateError(InstrumentConnectionError):
    """Raised for lifecycle violations on a connection or handle.

    This includes I/O on a closed connection and closing a connection twice.
    """


class CommunicationError(LabioError):
    """Raised when an instrument response stays malformed after every retry.

    The last parse failure is available as ``__cause__``.
    """


class ProtocolError(LabioError):
    """Raised for malformed Modbus frames and device exception replies.

    Attributes:
        exception_code: Modbus exception code reported by the slave, or None
            when the error is a framing problem rather than a device reply.
    """

    def __init__(self, message: str, exception_code: int | None = None) -> None:
        self.exception_code = exception_code
        super().__init__(message)


class IdentityMismatchError(LabioError):
    """Raised when an opened instrument reports an unexpected identity."""
