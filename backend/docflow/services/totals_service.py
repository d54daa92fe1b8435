# Overview: Pure totals calculation shared by quotations, invoices and work orders.

"""
Totals Calculator

WHY: Quotation and invoice totals are derived from their lines, never
typed in. One function computes them for every document type so a
converted invoice always agrees with the quotation it came from.

ALGORITHM (per line):
    gross    = quantity * unit_price_cents
    discount = discount_cents            (flat, if set)
             | gross * discount_bps / 10000
    net      = gross - discount
    tax      = net * tax_bps / 10000

DOCUMENT:
    subtotal = sum(gross)               (pre-discount)
    discount = sum(line discounts) + document discount
    tax      = sum(line tax)
    total    = subtotal - line discounts + tax - document discount

The document discount is applied on top of the taxed total, either as a
percentage (bps) or a flat amount capped at that total.

PRECISION:
- Intermediate values are exact Decimals (bps division always terminates)
- Only the reported figures are rounded, half-up, to whole cents
- Summation is exact, so item order never changes the result
- Quantities may be fractional (up to 3 places); gross stays exact
- Each reported figure is rounded on its own, so subtotal - discount + tax
  can differ from total by at most one cent. total is the exact figure
  rounded once and is the amount that gets invoiced and paid.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..money import bps_of, round_cents


@dataclass(frozen=True)
class LineInput:
    """Plain line used by callers that don't have ORM rows (tests, previews)."""
    quantity: int | Decimal
    unit_price_cents: int
    discount_bps: int | None = None
    discount_cents: int | None = None
    tax_bps: int = 0


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount: Decimal
    net: Decimal
    tax: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


ZERO_TOTALS = DocumentTotals(0, 0, 0, 0)


def compute_line(item) -> LineAmounts:
    """Exact amounts for one line (any object with the line item attributes)."""
    gross = Decimal(item.quantity) * Decimal(item.unit_price_cents)

    if item.discount_cents is not None:
        discount = Decimal(item.discount_cents)
    elif item.discount_bps:
        discount = bps_of(gross, item.discount_bps)
    else:
        discount = Decimal(0)

    net = gross - discount
    tax = bps_of(net, item.tax_bps or 0)
    return LineAmounts(gross=gross, discount=discount, net=net, tax=tax)


def compute_totals(
    items: Iterable,
    *,
    discount_bps: int | None = None,
    discount_flat_cents: int | None = None,
) -> DocumentTotals:
    """
    Compute document totals from its lines.

    Args:
        items: Line objects exposing quantity, unit_price_cents,
            discount_bps, discount_cents and tax_bps
        discount_bps: Optional document-level percentage discount
        discount_flat_cents: Optional document-level flat discount

    Returns:
        DocumentTotals in whole cents
    """
    subtotal = Decimal(0)
    discount = Decimal(0)
    tax = Decimal(0)

    for item in items:
        line = compute_line(item)
        subtotal += line.gross
        discount += line.discount
        tax += line.tax

    total = subtotal - discount + tax

    if discount_flat_cents:
        document_discount = min(Decimal(discount_flat_cents), total)
    elif discount_bps:
        document_discount = bps_of(total, discount_bps)
    else:
        document_discount = Decimal(0)

    total -= document_discount
    discount += document_discount

    return DocumentTotals(
        subtotal_cents=round_cents(subtotal),
        discount_cents=round_cents(discount),
        tax_cents=round_cents(tax),
        total_cents=round_cents(total),
    )


def apply_totals(document, totals: DocumentTotals) -> None:
    """Copy computed totals onto a quotation/invoice row."""
    document.subtotal_cents = totals.subtotal_cents
    document.discount_cents = totals.discount_cents
    document.tax_cents = totals.tax_cents
    document.total_cents = totals.total_cents


def recompute_document(document, lines) -> DocumentTotals:
    """Recompute and store totals for a document from the given lines."""
    totals = compute_totals(
        lines,
        discount_bps=document.discount_bps,
        discount_flat_cents=document.discount_flat_cents,
    )
    apply_totals(document, totals)
    return totals
