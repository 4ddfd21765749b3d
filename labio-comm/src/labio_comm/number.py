"""Parsing of numeric and boolean instrument responses.

Instruments answer queries with plain text: integers (``"42"``), fixed point
(``"1.2345"``), scientific notation (``"+1.23E-04"``) and the IEEE 488.2
overflow tokens. A failure to parse is reported as :class:`ValueError`,
which the connection treats as a malformed response and retries.
"""

from __future__ import annotations

# float() already accepts NAN, INF, +INF and -INF in any case.
_NEGATIVE_INFINITY = "NINF"

_TRUE_TOKENS = frozenset({"1", "ON", "TRUE"})
_FALSE_TOKENS = frozenset({"0", "OFF", "FALSE"})


def parse_number(text: str) -> float:
    """Convert one numeric reply to a float.

    Besides plain and exponent notation, the overflow tokens ``NAN``,
    ``INF``, ``+INF``, ``-INF`` and ``NINF`` are recognized in any case.
    Digit-grouping underscores are not instrument syntax and are refused.

    Args:
        text: The raw reply. Leading and trailing whitespace is ignored.

    Returns:
        The value as a float.

    Raises:
        ValueError: If *text* is empty or does not hold a number.
    """
    token = text.strip()
    if token.upper() == _NEGATIVE_INFINITY:
        return float("-inf")
    if token and "_" not in token:
        try:
            return float(token)
        except ValueError:
            pass
    raise ValueError(f"Response {text!r} is not a number")


def parse_numbers(text: str, separator: str = ",") -> tuple[float, ...]:
    """Parse a separated list of numbers, e.g. ``"1.0,2.0,3.0"``.

    Raises:
        ValueError: If any element cannot be parsed.
    """
    return tuple(parse_number(part) for part in text.split(separator))


def parse_int(text: str) -> int:
    """Parse an integer response.

    Raises:
        ValueError: If *text* is not a valid integer.
    """
    token = text.strip()
    try:
        return int(token)
    except ValueError:
        raise ValueError(f"Invalid integer response: {text!r}") from None


def parse_bool(text: str) -> bool:
    """Parse a boolean response.

    Accepts ``1``/``0``, ``ON``/``OFF`` and ``TRUE``/``FALSE`` in any case.

    Raises:
        ValueError: If *text* is not a recognized boolean token.
    """
    token = text.strip().upper()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    raise ValueError(f"Invalid boolean response: {text!r}")
