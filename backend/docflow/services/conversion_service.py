# Overview: Quotation/work order to invoice conversion with at-most-once guarantees.

"""
Conversion Pipeline

WHY: An approved quotation or a completed work order becomes exactly one
invoice. Two users clicking "Convert" at the same moment must not produce
two invoices.

DESIGN:
- The source row is locked for the whole operation (FOR UPDATE, or
  BEGIN IMMEDIATE on SQLite)
- invoices.source_quotation_id / source_work_order_id are UNIQUE; an
  IntegrityError on insert is reported as AlreadyConverted. The status
  checks before the insert only produce better error messages.
- Source lines are deep-copied into new invoice lines (snapshots)
- Invoice insert and source stamping (CONVERTED / invoiced_at) commit
  together or not at all

PRECONDITION ORDER (quotation):
    NotFound -> AlreadyConverted -> InvalidState -> Expired -> EmptyDocument
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyConvertedError,
    DocumentError,
    EmptyDocumentError,
    ExpiredError,
    InvalidStateError,
)
from ..extensions import db
from ..models import Invoice, InvoiceLine, Quotation, WorkOrder
from docflow.time_utils import is_past, to_utc_z, utcnow
from .concurrency import RetryableConflict, begin_write, run_with_retry
from .document_service import DOC_TYPE_INVOICE, next_document_number
from .invoice_service import INVOICE_ISSUED, settle_status, validate_due_date
from .quotation_service import QUOTATION_APPROVED, QUOTATION_CONVERTED
from .tenant_service import get_scoped
from .totals_service import recompute_document


def _check_quotation(quotation: Quotation, now) -> None:
    """Raise the first failing conversion precondition."""
    if quotation.status == QUOTATION_CONVERTED:
        raise AlreadyConvertedError(
            f"Quotation {quotation.number} has already been converted",
            {"quotation_id": quotation.id},
        )
    if quotation.status != QUOTATION_APPROVED:
        raise InvalidStateError(
            f"Only APPROVED quotations can be converted (quotation is {quotation.status})",
            quotation.status,
        )
    if is_past(quotation.valid_until, now):
        raise ExpiredError(
            f"Quotation {quotation.number} expired on {to_utc_z(quotation.valid_until)}",
            {"valid_until": to_utc_z(quotation.valid_until)},
        )
    if not quotation.lines:
        raise EmptyDocumentError("Cannot convert a quotation without items")


def _check_work_order(work_order: WorkOrder) -> None:
    if work_order.invoiced_at is not None:
        raise AlreadyConvertedError(
            f"Work order {work_order.number} has already been invoiced",
            {"work_order_id": work_order.id},
        )
    completed = current_app.config["COMPLETED_WORK_ORDER_STATUSES"]
    if work_order.status not in completed:
        raise InvalidStateError(
            f"Only completed work orders can be invoiced (work order is {work_order.status})",
            work_order.status,
        )
    if not work_order.lines:
        raise EmptyDocumentError("Cannot invoice a work order without items")


def _build_invoice(*, org_id, user_id, source, due_date, now, **source_ids) -> Invoice:
    """Snapshot the source's lines and discount into a new ISSUED invoice."""
    invoice = Invoice(
        org_id=org_id,
        customer_id=source.customer_id,
        number=next_document_number(org_id=org_id, document_type=DOC_TYPE_INVOICE),
        status=INVOICE_ISSUED,
        paid_amount_cents=0,
        due_date=due_date,
        discount_bps=getattr(source, "discount_bps", None),
        discount_flat_cents=getattr(source, "discount_flat_cents", None),
        created_by_user_id=user_id,
        issued_at=now,
        **source_ids,
    )
    for line in source.lines:
        invoice.lines.append(InvoiceLine(**line.line_fields()))
    recompute_document(invoice, invoice.lines)
    settle_status(invoice)
    return invoice


def _insert_invoice(invoice: Invoice, **source_filter) -> None:
    """
    Flush the invoice; a unique-constraint hit on the source means another
    transaction converted it first.
    """
    db.session.add(invoice)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        existing = db.session.query(Invoice.id).filter_by(**source_filter).first()
        if existing is not None:
            raise AlreadyConvertedError(
                "Source has already been converted",
                {"invoice_id": existing.id, **source_filter},
            ) from exc
        raise RetryableConflict("invoice insert collided") from exc


# =============================================================================
# QUOTATION -> INVOICE
# =============================================================================

def convert_quotation(org_id: int, user_id: int | None, quotation_id: int, due_date=None) -> Invoice:
    """
    Convert an APPROVED quotation into an ISSUED invoice.

    Raises:
        NotFoundError, AlreadyConvertedError, InvalidStateError,
        ExpiredError, EmptyDocumentError, ValidationError (past due_date)
    """
    def _op():
        begin_write()
        quotation = get_scoped(Quotation, quotation_id, org_id, for_update=True, label="Quotation")
        now = utcnow()
        _check_quotation(quotation, now)

        invoice = _build_invoice(
            org_id=org_id,
            user_id=user_id,
            source=quotation,
            due_date=validate_due_date(due_date, now),
            now=now,
            source_quotation_id=quotation.id,
        )
        _insert_invoice(invoice, source_quotation_id=quotation.id)

        quotation.status = QUOTATION_CONVERTED
        quotation.converted_at = now
        db.session.commit()

        current_app.logger.info(
            "quotation.converted org=%s quotation=%s invoice=%s number=%s total=%s user=%s",
            org_id, quotation.id, invoice.id, invoice.number, invoice.total_cents, user_id,
        )
        return invoice

    return run_with_retry(_op)


def check_quotation_conversion(org_id: int, quotation_id: int) -> dict:
    """
    Report whether a quotation could be converted right now, without writing.

    Returns {"can_convert": bool, "reason": error code or None, "message": ...}.
    NotFound still raises.
    """
    quotation = get_scoped(Quotation, quotation_id, org_id, label="Quotation")
    result = {
        "quotation_id": quotation.id,
        "status": quotation.status,
        "total_cents": quotation.total_cents,
        "can_convert": True,
        "reason": None,
        "message": None,
    }
    try:
        _check_quotation(quotation, utcnow())
    except DocumentError as exc:
        result.update(can_convert=False, reason=exc.code, message=exc.message)
    return result


# =============================================================================
# WORK ORDER -> INVOICE
# =============================================================================

def convert_work_order(org_id: int, user_id: int | None, work_order_id: int, due_date=None) -> Invoice:
    """
    Invoice a completed work order.

    Raises:
        NotFoundError, AlreadyConvertedError, InvalidStateError,
        EmptyDocumentError, ValidationError (past due_date)
    """
    def _op():
        begin_write()
        work_order = get_scoped(WorkOrder, work_order_id, org_id, for_update=True, label="Work order")
        now = utcnow()
        _check_work_order(work_order)

        invoice = _build_invoice(
            org_id=org_id,
            user_id=user_id,
            source=work_order,
            due_date=validate_due_date(due_date, now),
            now=now,
            source_work_order_id=work_order.id,
        )
        _insert_invoice(invoice, source_work_order_id=work_order.id)

        work_order.invoiced_at = now
        db.session.commit()

        current_app.logger.info(
            "work_order.invoiced org=%s work_order=%s invoice=%s number=%s total=%s user=%s",
            org_id, work_order.id, invoice.id, invoice.number, invoice.total_cents, user_id,
        )
        return invoice

    return run_with_retry(_op)
