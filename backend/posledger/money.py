# Overview: Currency helpers; all money is stored as integer cents.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def round_currency(value) -> Decimal:
    """Round to 2 decimals, half-up (12.345 -> 12.35, -12.345 -> -12.35)."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    """Convert a decimal amount (str, int, float, Decimal) to integer cents."""
    return int(round_currency(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int) -> str:
    """42_50 -> "42.50" (used in user-facing messages)."""
    return f"{from_cents(cents):.2f}"
