"""
Money helpers: integer cents in storage, exact decimals in between,
two-digit fixed point on the way out.

Rounding happens only at reporting boundaries (half-up to whole cents).
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("1")
QUANTIZE_PATTERN = Decimal("0.01")
BPS_PER_UNIT = Decimal("10000")

# 100% in basis points
MAX_PERCENT_BPS = 10_000


def bps_of(amount, bps: int) -> Decimal:
    """Exact share of amount for a basis-point rate (no rounding)."""
    return Decimal(amount) * Decimal(bps) / BPS_PER_UNIT


def round_cents(value: Decimal) -> int:
    """Round an exact cents amount half-up to a whole cent."""
    return int(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def format_cents(cents: int | None) -> str | None:
    """232_00 -> "232.00"."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP))


def format_bps(bps: int | None) -> str | None:
    """1600 -> "16.00" (percent)."""
    if bps is None:
        return None
    return str((Decimal(bps) / 100).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP))


def format_quantity(quantity) -> str | None:
    """Decimal("1.500") -> "1.5", Decimal("2.000") -> "2"."""
    if quantity is None:
        return None
    return format(Decimal(quantity).normalize(), "f")
