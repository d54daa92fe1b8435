# Overview: Line item and document discount edits shared by quotations and invoices.

"""
Line Item Edits

WHY: Quotations and invoices carry the same line shape and the same
document discount. Both state machines decide WHETHER an edit is allowed;
this module decides WHAT the edited values are and recomputes totals.

All functions run inside the caller's transaction (no commit here).
"""

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..validation import (
    DISCOUNT_POLICY,
    LINE_ITEM_POLICY,
    enforce_rules_document_discount,
    enforce_rules_line_item,
    merge_exclusive,
    validate_payload,
)
from .totals_service import recompute_document


def build_line(line_model, payload: dict, **parent) -> object:
    """Validate a new line payload and return an unsaved line row."""
    patch = validate_payload(model=line_model, payload=payload, policy=LINE_ITEM_POLICY, partial=False)
    values = enforce_rules_line_item(patch)
    return line_model(**parent, **values)


def add_line(document, line_model, payload: dict, *, recompute: bool = True):
    line = build_line(line_model, payload)
    document.lines.append(line)
    db.session.flush()
    if recompute:
        recompute_document(document, document.lines)
    return line


def update_line(document, line_id: int, payload: dict):
    line = find_line(document, line_id)
    patch = validate_payload(model=type(line), payload=payload, policy=LINE_ITEM_POLICY, partial=True)
    merged = merge_exclusive(line.line_fields(), patch, "discount_bps", "discount_cents")
    values = enforce_rules_line_item(merged)
    for key, value in values.items():
        setattr(line, key, value)
    recompute_document(document, document.lines)
    return line


def delete_line(document, line_id: int) -> None:
    line = find_line(document, line_id)
    document.lines.remove(line)
    db.session.flush()
    recompute_document(document, document.lines)


def find_line(document, line_id: int):
    """Lines are looked up through their (already tenant-scoped) parent."""
    for line in document.lines:
        if line.id == line_id:
            return line
    raise NotFoundError("Item not found", {"item_id": line_id})


def set_document_discount(document, payload: dict) -> None:
    """
    Set (or clear) the document-level discount.

    Payload carries discount_bps or discount_flat_cents; sending one clears
    the other, sending both nulls clears the discount.
    """
    patch = validate_payload(model=type(document), payload=payload, policy=DISCOUNT_POLICY, partial=True)
    current = {
        "discount_bps": document.discount_bps,
        "discount_flat_cents": document.discount_flat_cents,
    }
    merged = merge_exclusive(current, patch, "discount_bps", "discount_flat_cents")
    enforce_rules_document_discount(merged)
    document.discount_bps = merged["discount_bps"]
    document.discount_flat_cents = merged["discount_flat_cents"]
    recompute_document(document, document.lines)
