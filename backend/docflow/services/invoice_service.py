# Overview: Invoice state machine, line items and status derivation.

"""
Invoice Service

WHY: Invoices request payment. They are created directly (DRAFT) or by the
conversion pipeline (ISSUED), and their payment status is always derived
from the payment ledger, never set by hand.

LIFECYCLE:
    DRAFT -> ISSUED -> PARTIALLY_PAID -> PAID
    ISSUED | PARTIALLY_PAID -> OVERDUE      (due_date passed)
    DRAFT | ISSUED | PARTIALLY_PAID | OVERDUE -> CANCELLED

STATUS DERIVATION:
- DRAFT and CANCELLED are explicit and never derived away
- otherwise PAID iff paid >= total, PARTIALLY_PAID iff paid > 0, else ISSUED
- OVERDUE is only applied when a clock is supplied (sweeper, reads);
  writes re-derive without one, which clears a stored OVERDUE

OVERPAYMENT:
- paid > total resolves to PAID, is exposed as overpaid_cents and logged
  at WARNING. It is not rejected; refunds happen outside this service.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import and_, or_

from ..errors import EmptyDocumentError, InvalidStateError, ValidationError
from ..extensions import db
from ..models import Invoice, InvoiceLine
from ..money import format_cents
from ..validation import (
    INVOICE_CREATE_POLICY,
    INVOICE_UPDATE_POLICY,
    enforce_rules_document_discount,
    validate_payload,
)
from docflow.time_utils import is_past, utcnow
from .concurrency import begin_write, run_with_retry
from .document_service import DOC_TYPE_INVOICE, next_document_number
from .line_item_service import add_line, build_line, delete_line, set_document_discount, update_line
from .tenant_service import get_scoped, scoped_query
from .totals_service import recompute_document


# =============================================================================
# STATUSES
# =============================================================================

INVOICE_DRAFT = "DRAFT"
INVOICE_ISSUED = "ISSUED"
INVOICE_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_PAID = "PAID"
INVOICE_OVERDUE = "OVERDUE"
INVOICE_CANCELLED = "CANCELLED"

INVOICE_STATUSES = (
    INVOICE_DRAFT,
    INVOICE_ISSUED,
    INVOICE_PARTIALLY_PAID,
    INVOICE_PAID,
    INVOICE_OVERDUE,
    INVOICE_CANCELLED,
)

EDITABLE_STATUSES = {INVOICE_DRAFT, INVOICE_ISSUED, INVOICE_PARTIALLY_PAID, INVOICE_OVERDUE}
CANCELLABLE_STATUSES = EDITABLE_STATUSES
OVERDUE_CANDIDATE_STATUSES = (INVOICE_ISSUED, INVOICE_PARTIALLY_PAID)


# =============================================================================
# STATUS DERIVATION
# =============================================================================

def derive_status(invoice: Invoice, now=None) -> str:
    """
    Status implied by the invoice's totals and payments.

    Pure: reads invoice.status, paid_amount_cents, total_cents and due_date.
    Pass now to apply OVERDUE.
    """
    if invoice.status in (INVOICE_DRAFT, INVOICE_CANCELLED):
        return invoice.status

    paid = invoice.paid_amount_cents or 0
    total = invoice.total_cents or 0

    if paid >= total:
        status = INVOICE_PAID
    elif paid > 0:
        status = INVOICE_PARTIALLY_PAID
    else:
        status = INVOICE_ISSUED

    if now is not None and status in OVERDUE_CANDIDATE_STATUSES and is_past(invoice.due_date, now):
        status = INVOICE_OVERDUE
    return status


def effective_status(invoice: Invoice, now=None) -> str:
    """Status as seen on read (OVERDUE computed against the current clock)."""
    return derive_status(invoice, now or utcnow())


def settle_status(invoice: Invoice, now=None) -> str:
    """
    Re-derive and store the status after totals or payments changed.

    Stamps paid_at when the invoice becomes PAID and clears it when a
    payment deletion takes it back.
    """
    previous = invoice.status
    status = derive_status(invoice, now)
    stamp = now or utcnow()

    if status == INVOICE_PAID and invoice.paid_at is None:
        invoice.paid_at = stamp
    elif status != INVOICE_PAID and invoice.status != INVOICE_CANCELLED:
        invoice.paid_at = None
    if status == INVOICE_OVERDUE and previous != INVOICE_OVERDUE:
        invoice.overdue_at = stamp

    invoice.status = status

    if invoice.overpaid_cents > 0:
        current_app.logger.warning(
            "invoice.overpaid org=%s id=%s number=%s total=%s paid=%s",
            invoice.org_id, invoice.id, invoice.number, invoice.total_cents, invoice.paid_amount_cents,
        )
    return status


def issue_locked(invoice: Invoice, user_id: int | None = None) -> None:
    """DRAFT -> ISSUED for an invoice already locked by the caller."""
    if invoice.status != INVOICE_DRAFT:
        raise InvalidStateError(
            f"Only DRAFT invoices can be issued (invoice is {invoice.status})",
            invoice.status,
        )
    if not invoice.lines:
        raise EmptyDocumentError("Cannot issue an invoice without items")

    invoice.status = INVOICE_ISSUED
    invoice.issued_at = utcnow()
    settle_status(invoice)

    current_app.logger.info(
        "invoice.issued org=%s id=%s number=%s total=%s user=%s",
        invoice.org_id, invoice.id, invoice.number, invoice.total_cents, user_id,
    )


# =============================================================================
# HELPERS
# =============================================================================

def default_due_date(now):
    return now + timedelta(days=current_app.config["INVOICE_DUE_DAYS"])


def validate_due_date(due_date, now):
    """Past due dates are rejected; None means the configured default."""
    if due_date is None:
        return default_due_date(now)
    if due_date < now:
        raise ValidationError("due_date cannot be in the past", {"field": "due_date"})
    return due_date


def _require_editable(invoice: Invoice, action: str) -> None:
    if invoice.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot {action} an invoice in status {invoice.status}",
            invoice.status,
        )


def _load_for_write(org_id: int, invoice_id: int) -> Invoice:
    begin_write()
    return get_scoped(Invoice, invoice_id, org_id, for_update=True, label="Invoice")


# =============================================================================
# CREATE / READ
# =============================================================================

def create_invoice(org_id: int, user_id: int | None, payload: dict) -> Invoice:
    """
    Create a DRAFT invoice, optionally with inline items.

    Args:
        payload: customer_id (required), due_date, notes, discount_bps |
            discount_flat_cents, items (list of line payloads)
    """
    payload = dict(payload or {})
    items = payload.pop("items", None) or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    patch = validate_payload(model=Invoice, payload=payload, policy=INVOICE_CREATE_POLICY, partial=False)
    enforce_rules_document_discount(patch)

    def _op():
        begin_write()
        now = utcnow()

        invoice = Invoice(
            org_id=org_id,
            customer_id=patch["customer_id"],
            number=next_document_number(org_id=org_id, document_type=DOC_TYPE_INVOICE),
            status=INVOICE_DRAFT,
            paid_amount_cents=0,
            due_date=validate_due_date(patch.get("due_date"), now),
            notes=patch.get("notes"),
            discount_bps=patch.get("discount_bps"),
            discount_flat_cents=patch.get("discount_flat_cents"),
            created_by_user_id=user_id,
        )
        for item in items:
            invoice.lines.append(build_line(InvoiceLine, item))
        recompute_document(invoice, invoice.lines)

        db.session.add(invoice)
        db.session.commit()

        current_app.logger.info(
            "invoice.created org=%s id=%s number=%s total=%s",
            org_id, invoice.id, invoice.number, invoice.total_cents,
        )
        return invoice

    return run_with_retry(_op)


def get_invoice(org_id: int, invoice_id: int) -> Invoice:
    return get_scoped(Invoice, invoice_id, org_id, label="Invoice")


def list_invoices(
    org_id: int,
    *,
    status: str | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    """
    List invoices for a tenant, newest first.

    The status filter matches the status seen on read: OVERDUE includes
    unpaid invoices past due that the sweeper has not materialized yet,
    and ISSUED/PARTIALLY_PAID exclude them.
    """
    query = scoped_query(Invoice, org_id)
    now = utcnow()
    past_due = and_(Invoice.due_date.isnot(None), Invoice.due_date < now)

    if status:
        status = status.upper()
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}")
        if status == INVOICE_OVERDUE:
            query = query.filter(or_(
                Invoice.status == INVOICE_OVERDUE,
                and_(Invoice.status.in_(OVERDUE_CANDIDATE_STATUSES), past_due),
            ))
        elif status in OVERDUE_CANDIDATE_STATUSES:
            query = query.filter(Invoice.status == status, ~past_due)
        else:
            query = query.filter(Invoice.status == status)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Invoice.number.ilike(pattern), Invoice.notes.ilike(pattern)))

    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)

    total = query.count()
    rows = (
        query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


# Statuses whose balance is still owed
OPEN_STATUSES = (INVOICE_ISSUED, INVOICE_PARTIALLY_PAID, INVOICE_OVERDUE)


def get_invoice_summary(org_id: int, *, customer_id: int | None = None, now=None) -> dict:
    """
    Counts per effective status plus billed, paid and outstanding amounts.

    DRAFT invoices are counted but not billed; CANCELLED ones are counted
    and excluded from every amount. OVERDUE is computed against now, so an
    unswept invoice past its due date already counts as overdue.
    """
    now = now or utcnow()
    query = scoped_query(Invoice, org_id)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)

    by_status = {status: 0 for status in INVOICE_STATUSES}
    billed = paid = outstanding = overdue = 0
    overdue_count = 0

    for invoice in query.all():
        status = derive_status(invoice, now)
        by_status[status] += 1
        if status in (INVOICE_DRAFT, INVOICE_CANCELLED):
            continue

        billed += invoice.total_cents
        paid += invoice.paid_amount_cents
        if status in OPEN_STATUSES:
            outstanding += invoice.balance_cents
        if status == INVOICE_OVERDUE:
            overdue += invoice.balance_cents
            overdue_count += 1

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "billed_cents": billed,
        "billed": format_cents(billed),
        "paid_cents": paid,
        "paid": format_cents(paid),
        "outstanding_cents": outstanding,
        "outstanding": format_cents(outstanding),
        "overdue_cents": overdue,
        "overdue": format_cents(overdue),
        "overdue_count": overdue_count,
    }


# =============================================================================
# HEADER EDITS
# =============================================================================

def update_invoice(org_id: int, user_id: int | None, invoice_id: int, payload: dict) -> Invoice:
    """Patch customer_id, due_date or notes."""
    patch = validate_payload(model=Invoice, payload=payload, policy=INVOICE_UPDATE_POLICY, partial=True)

    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        _require_editable(invoice, "update")

        if "due_date" in patch:
            patch["due_date"] = validate_due_date(patch["due_date"], utcnow())
        for key, value in patch.items():
            setattr(invoice, key, value)

        settle_status(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def set_invoice_discount(org_id: int, user_id: int | None, invoice_id: int, payload: dict) -> Invoice:
    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        _require_editable(invoice, "change the discount of")
        set_document_discount(invoice, payload)
        settle_status(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# ITEMS
# =============================================================================

def add_invoice_item(org_id: int, user_id: int | None, invoice_id: int, payload: dict) -> Invoice:
    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        _require_editable(invoice, "add items to")
        add_line(invoice, InvoiceLine, payload)
        settle_status(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def update_invoice_item(
    org_id: int, user_id: int | None, invoice_id: int, item_id: int, payload: dict
) -> Invoice:
    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        _require_editable(invoice, "edit items of")
        update_line(invoice, item_id, payload)
        settle_status(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def delete_invoice_item(org_id: int, user_id: int | None, invoice_id: int, item_id: int) -> Invoice:
    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        _require_editable(invoice, "remove items from")
        if invoice.status != INVOICE_DRAFT and len(invoice.lines) == 1 and invoice.lines[0].id == item_id:
            raise EmptyDocumentError("An issued invoice must keep at least one item")
        delete_line(invoice, item_id)
        settle_status(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def issue_invoice(org_id: int, user_id: int | None, invoice_id: int) -> Invoice:
    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        issue_locked(invoice, user_id)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def cancel_invoice(org_id: int, user_id: int | None, invoice_id: int, reason: str | None = None) -> Invoice:
    """
    Cancel an unpaid or partially paid invoice.

    Recorded payments are left untouched; refunding them is the caller's
    responsibility.
    """
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", {"field": "reason"})
    if reason is not None and len(reason) > 255:
        raise ValidationError("reason exceeds max length 255", {"field": "reason"})

    def _op():
        invoice = _load_for_write(org_id, invoice_id)
        if invoice.status not in CANCELLABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel an invoice in status {invoice.status}",
                invoice.status,
            )

        previous = invoice.status
        invoice.status = INVOICE_CANCELLED
        invoice.cancelled_at = utcnow()
        invoice.cancelled_by_user_id = user_id
        invoice.cancel_reason = reason
        db.session.commit()

        current_app.logger.info(
            "invoice.cancelled org=%s id=%s from=%s paid=%s user=%s",
            org_id, invoice.id, previous, invoice.paid_amount_cents, user_id,
        )
        return invoice

    return run_with_retry(_op)
