"""Tests for response number parsing."""

from __future__ import annotations

import math

import pytest

from labio_comm.number import parse_bool, parse_int, parse_number, parse_numbers


class TestParseNumber:
    """Tests for parse_number."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("42", 42.0),
            ("-0.5", -0.5),
            ("+1.2345E+00", 1.2345),
            ("5E-3", 0.005),
            ("  273.15\r", 273.15),
            ("INF", float("inf")),
            ("+INF", float("inf")),
            ("ninf", float("-inf")),
            ("-INF", float("-inf")),
        ],
    )
    def test_valid(self, text: str, expected: float) -> None:
        assert parse_number(text) == expected

    def test_nan(self) -> None:
        assert math.isnan(parse_number("nan"))

    @pytest.mark.parametrize("text", ["", "abc", "1.2.3", "OVLD", "1_000"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValueError, match="is not a number"):
            parse_number(text)


class TestParseNumbers:
    """Tests for parse_numbers."""

    def test_comma_separated(self) -> None:
        assert parse_numbers(" 1.0 , 2.5,1E3") == (1.0, 2.5, 1000.0)

    def test_custom_separator(self) -> None:
        assert parse_numbers("1;2;3", separator=";") == (1.0, 2.0, 3.0)

    def test_invalid_element(self) -> None:
        with pytest.raises(ValueError):
            parse_numbers("1.0,abc")


class TestParseInt:
    """Tests for parse_int."""

    def test_valid(self) -> None:
        assert parse_int(" -17\n") == -17

    def test_float_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid integer response"):
            parse_int("1.5")


class TestParseBool:
    """Tests for parse_bool."""

    @pytest.mark.parametrize("text", ["1", "on", "ON", "true", " TRUE "])
    def test_true(self, text: str) -> None:
        assert parse_bool(text) is True

    @pytest.mark.parametrize("text", ["0", "off", "OFF", "false"])
    def test_false(self, text: str) -> None:
        assert parse_bool(text) is False

    def test_invalid(self) -> None:
        with pytest.raises(ValueError, match="Invalid boolean response"):
            parse_bool("maybe")
