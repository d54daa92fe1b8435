from __future__ import annotations

from ..extensions import db
from ..money import format_bps, format_cents, format_quantity, round_cents
from docflow.time_utils import to_utc_z


LINE_KIND_PRODUCT = "PRODUCT"
LINE_KIND_SERVICE = "SERVICE"
VALID_LINE_KINDS = (LINE_KIND_PRODUCT, LINE_KIND_SERVICE)

# Columns a client may set on any line item
LINE_ITEM_FIELDS = (
    "kind",
    "reference_id",
    "description",
    "quantity",
    "unit_price_cents",
    "discount_bps",
    "discount_cents",
    "tax_bps",
    "notes",
)


class LineItemMixin:
    """
    Shared line item shape for quotation, invoice and work order lines.

    DESIGN:
    - quantity is a positive decimal with up to 3 places (1.5 labour hours)
    - unit_price_cents >= 0
    - discount_bps (0-10000) and discount_cents are mutually exclusive
    - tax_bps applies to the line net (after its own discount)
    - reference_id points at a product or service in the catalog (external)
    """
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, default=LINE_KIND_SERVICE)
    reference_id = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=True)
    tax_bps = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def line_fields(self) -> dict:
        """Plain copy of the client-settable columns (used for snapshots)."""
        return {field: getattr(self, field) for field in LINE_ITEM_FIELDS}

    def line_dict(self) -> dict:
        from ..services.totals_service import compute_line

        amounts = compute_line(self)
        return {
            "id": self.id,
            "kind": self.kind,
            "reference_id": self.reference_id,
            "description": self.description,
            "quantity": format_quantity(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "discount_bps": self.discount_bps,
            "discount_percent": format_bps(self.discount_bps),
            "discount_cents": self.discount_cents,
            "tax_bps": self.tax_bps,
            "tax_percent": format_bps(self.tax_bps),
            "line_total_cents": round_cents(amounts.net),
            "line_total": format_cents(round_cents(amounts.net)),
            "line_tax_cents": round_cents(amounts.tax),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentTotalsMixin:
    """Stored totals and document-level discount shared by quotations and invoices."""
    discount_bps = db.Column(db.Integer, nullable=True)
    discount_flat_cents = db.Column(db.Integer, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    def totals_dict(self) -> dict:
        return {
            "document_discount_bps": self.discount_bps,
            "document_discount_flat_cents": self.discount_flat_cents,
            "subtotal_cents": self.subtotal_cents,
            "subtotal": format_cents(self.subtotal_cents),
            "discount_cents": self.discount_cents,
            "discount": format_cents(self.discount_cents),
            "tax_cents": self.tax_cents,
            "tax": format_cents(self.tax_cents),
            "total_cents": self.total_cents,
            "total": format_cents(self.total_cents),
        }
