"""
Token quantities in base units.

Every quantity handled by the conversion engine is an ``Amount``: an exact,
non-negative integer counted in the token's smallest unit. Display formatting
lives outside the core; this module only parses user input into base units.
"""

from __future__ import annotations

import re
from typing import Optional

# Fixed-point scale used for per-unit prices.
UNIT_SCALE = 10**18

_INPUT_RE = re.compile(r"^(\d*)(?:\.(\d*))?$")


class Amount(int):
    """Unsigned arbitrary-precision integer."""

    def __new__(cls, value: int | str = 0) -> "Amount":
        if isinstance(value, bool):
            raise TypeError("Amount cannot be built from a bool")
        if isinstance(value, float):
            raise TypeError("Amount cannot be built from a float")
        if isinstance(value, str):
            raw = value.strip().lower()
            number = int(raw, 16) if raw.startswith("0x") else int(raw, 10)
        else:
            number = int(value)
        if number < 0:
            raise ValueError(f"Amount must be non-negative, got {number}")
        return super().__new__(cls, number)

    def __repr__(self) -> str:
        return f"Amount({int(self)})"


ZERO = Amount(0)


def one_unit(decimals: int) -> Amount:
    """One whole token expressed in base units."""
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    return Amount(10**decimals)


def to_base_units(whole: int, decimals: int) -> Amount:
    return Amount(whole * 10**decimals)


def parse_amount(text: str, decimals: Optional[int]) -> Optional[Amount]:
    """Parse a user-entered decimal string into base units.

    Returns ``None`` when the input cannot be accepted (unknown decimals,
    non-numeric, negative or too many fractional digits); callers keep their
    previous value in that case. An empty field parses to zero.
    """
    if decimals is None or decimals < 0:
        return None

    value = text.strip().replace(",", "")
    if not value:
        return ZERO

    match = _INPUT_RE.match(value)
    if not match:
        return None

    whole, fraction = match.group(1), match.group(2) or ""
    if not whole and not fraction and "." in value:
        return ZERO
    if len(fraction) > decimals:
        return None

    whole_units = int(whole) if whole else 0
    fraction_units = int(fraction.ljust(decimals, "0")) if decimals else 0
    return Amount(whole_units * 10**decimals + fraction_units)
