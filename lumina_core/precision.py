"""
Fixed-point amounts for Lumina.

All token amounts are held as non-negative integers counted in *units*,
the smallest indivisible part of a token:

    1 LMT = 100,000,000 units

Floating point never touches a balance.  User input is parsed through
:class:`decimal.Decimal` and rejected when it carries more precision than
``TOKEN_DECIMALS`` allows; arithmetic helpers refuse to produce a negative
or overflowing result.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from lumina_core.errors import InsufficientFunds, InvalidAmount

# Number of decimal places for every token amount.
TOKEN_DECIMALS: int = 8

# Smallest representable unit: 1 unit = 0.00000001 LMT.
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS  # 100_000_000

# Largest amount that fits a signed 64-bit SQLite INTEGER column.
MAX_UNITS: int = 2 ** 63 - 1

DEFAULT_TOKEN: str = "LMT"


def parse_amount(value: str | int | Decimal) -> int:
    """Convert a human amount (``"1.5"``, ``3``, ``Decimal("0.1")``) to units.

    Floats are rejected outright; ``bool`` too, since it is an ``int``.

    >>> parse_amount("1.5")
    150000000
    >>> parse_amount(3)
    300000000
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a decimal string or integer, got {type(value).__name__}")
    try:
        dec = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Invalid amount: {value!r}") from None
    if not dec.is_finite():
        raise InvalidAmount("Amount must be finite")
    scaled = dec * UNITS_PER_TOKEN
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(f"Amount {value} has more than {TOKEN_DECIMALS} decimal places")
    units = int(scaled)
    if units > MAX_UNITS or units < -MAX_UNITS:
        raise InvalidAmount(f"Amount {value} is out of range")
    return units


def format_amount(units: int, token: str = DEFAULT_TOKEN) -> str:
    """Return a human-readable string with 8 decimal places.

    >>> format_amount(150000000)
    '1.50000000 LMT'
    """
    sign = "-" if units < 0 else ""
    whole, frac = divmod(abs(units), UNITS_PER_TOKEN)
    return f"{sign}{whole}.{frac:0{TOKEN_DECIMALS}d} {token}"


def units_to_decimal(units: int) -> Decimal:
    return Decimal(units) / UNITS_PER_TOKEN


def check_units(units: int, name: str = "amount") -> int:
    """Validate a stored/received unit count (int, non-negative, in range)."""
    if isinstance(units, bool) or not isinstance(units, int):
        raise InvalidAmount(f"{name} must be an integer unit count")
    if units < 0 or units > MAX_UNITS:
        raise InvalidAmount(f"{name} out of range: {units}")
    return units


def add_units(balance: int, amount: int) -> int:
    """Overflow-checked credit."""
    total = balance + amount
    if total > MAX_UNITS:
        raise InvalidAmount("Balance would overflow")
    return total


def sub_units(balance: int, amount: int) -> int:
    """Debit that never goes below zero."""
    if amount > balance:
        raise InsufficientFunds(
            f"Insufficient balance: have {format_amount(balance, '')}".rstrip()
        )
    return balance - amount
