"""
Money helpers.

All pipeline arithmetic runs on integer minor units (cents). Conversion to
and from Decimal happens only at the edges: when reading extraction output
and when serializing for display.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

MINOR_UNITS_PER_UNIT = 100
_CENT = Decimal("0.01")

# Currency symbols and codes that may prefix or suffix an amount string
_CURRENCY_NOISE = re.compile(r"(?i)\b(?:[A-Z]{3})\b|[$€£¥₹]|S\$")


def parse_amount(value: Any) -> Decimal:
    """
    Parse a monetary value into a Decimal.

    Accepts ints, floats (via their shortest string form), and strings with
    thousands separators, currency symbols, a leading minus, or accounting
    parentheses for negatives: "(1,234.50)" -> Decimal("-1234.50").

    Raises:
        ValueError: If the value is not a recognizable amount.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if not isinstance(value, str):
        raise ValueError(f"Not an amount: {value!r}")

    text = value.strip()
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = _CURRENCY_NOISE.sub("", text).replace(",", "").replace(" ", "")
    if text.endswith("-"):
        negative = True
        text = text[:-1]
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    elif text.startswith("+"):
        text = text[1:]

    if not text:
        raise ValueError(f"Not an amount: {value!r}")
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return -amount if negative else amount


def to_minor(amount: Decimal) -> int:
    """Convert a Decimal amount to integer minor units (half-up rounding)."""
    return int((amount * MINOR_UNITS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(minor: int) -> Decimal:
    """Convert integer minor units back to a two-place Decimal."""
    return (Decimal(minor) / MINOR_UNITS_PER_UNIT).quantize(_CENT)


def format_minor(minor: int) -> str:
    """Format minor units for display, e.g. -123456 -> "-1,234.56"."""
    return f"{from_minor(minor):,.2f}"


def round_to_units(minor: int) -> int:
    """Round minor units to whole currency units (half away from zero)."""
    return int(from_minor(minor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
