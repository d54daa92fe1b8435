# Overview: Payment ledger for invoices; paid amounts are always re-summed from the ledger.

"""
Payment Ledger

WHY: Invoices are settled by one or more partial payments (deposits,
instalments, split tenders) and mistakes are corrected by deleting a
payment.

DESIGN PRINCIPLES:
- Payments are separate rows (many-to-one with invoices)
- paid_amount_cents = SUM(payments) re-read inside the same transaction
  after every insert/delete; never incremented in place
- Payments are immutable; correction = delete + re-derive status
- A client-supplied idempotency_key makes RecordPayment safe to retry
- Overpayment is accepted (status PAID, overpaid_cents > 0, WARNING log)
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Payment
from ..money import format_cents, round_cents
from ..validation import VALID_PAYMENT_METHODS, enforce_rules_payment
from docflow.time_utils import utcnow
from .concurrency import RetryableConflict, begin_write, run_with_retry
from .invoice_service import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    effective_status,
    issue_locked,
    settle_status,
)
from .tenant_service import get_scoped


def recompute_paid_amount(invoice: Invoice) -> int:
    """Re-sum the ledger onto the invoice and re-derive its status."""
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.org_id == invoice.org_id, Payment.invoice_id == invoice.id)
        .scalar()
    )
    invoice.paid_amount_cents = int(paid)
    settle_status(invoice)
    return invoice.paid_amount_cents


def _replay(existing: Payment, invoice: Invoice, amount_cents: int) -> Invoice:
    """Return the invoice for a repeated idempotency key, or reject misuse."""
    if existing.invoice_id != invoice.id:
        raise ValidationError(
            "idempotency_key was already used for a different invoice",
            {"idempotency_key": existing.idempotency_key},
        )
    if existing.amount_cents != amount_cents:
        raise ValidationError(
            "idempotency_key was already used with a different amount",
            {"idempotency_key": existing.idempotency_key},
        )
    current_app.logger.info(
        "payment.replayed org=%s invoice=%s payment=%s key=%s",
        invoice.org_id, invoice.id, existing.id, existing.idempotency_key,
    )
    return invoice


def record_payment(
    org_id: int,
    user_id: int | None,
    invoice_id: int,
    amount_cents: int,
    method: str,
    *,
    paid_at=None,
    reference: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
) -> Invoice:
    """
    Record a payment and return the invoice in its new state.

    A DRAFT invoice is issued in the same transaction before the payment
    is applied.

    Raises:
        NotFoundError: invoice not in tenant
        InvalidStateError: invoice is CANCELLED
        EmptyDocumentError: DRAFT invoice without items
        ValidationError: amount <= 0, unknown method, reused idempotency key
    """
    values = enforce_rules_payment({
        "amount_cents": amount_cents,
        "method": method,
        "idempotency_key": idempotency_key,
    })

    def _op():
        begin_write()
        invoice = get_scoped(Invoice, invoice_id, org_id, for_update=True, label="Invoice")

        key = values["idempotency_key"]
        if key:
            existing = db.session.query(Payment).filter_by(org_id=org_id, idempotency_key=key).first()
            if existing is not None:
                result = _replay(existing, invoice, values["amount_cents"])
                db.session.commit()
                return result

        if invoice.status == INVOICE_CANCELLED:
            raise InvalidStateError(
                f"Cannot record a payment on an invoice in status {invoice.status}",
                invoice.status,
            )
        if invoice.status == INVOICE_DRAFT:
            issue_locked(invoice, user_id)

        payment = Payment(
            org_id=org_id,
            invoice_id=invoice.id,
            amount_cents=values["amount_cents"],
            method=values["method"],
            paid_at=paid_at or utcnow(),
            reference=reference,
            notes=notes,
            idempotency_key=key,
            created_by_user_id=user_id,
        )
        db.session.add(payment)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another request inserted the same key first; the retry replays it
            raise RetryableConflict("idempotency key inserted concurrently") from exc

        recompute_paid_amount(invoice)
        db.session.commit()

        current_app.logger.info(
            "payment.recorded org=%s invoice=%s payment=%s amount=%s method=%s paid=%s status=%s user=%s",
            org_id, invoice.id, payment.id, payment.amount_cents, payment.method,
            invoice.paid_amount_cents, invoice.status, user_id,
        )
        return invoice

    return run_with_retry(_op)


def delete_payment(org_id: int, user_id: int | None, invoice_id: int, payment_id: int) -> Invoice:
    """
    Remove a payment (corrective deletion) and re-derive the invoice.

    Allowed on cancelled invoices too; their status stays CANCELLED.
    """
    def _op():
        begin_write()
        invoice = get_scoped(Invoice, invoice_id, org_id, for_update=True, label="Invoice")
        payment = (
            db.session.query(Payment)
            .filter_by(id=payment_id, org_id=org_id, invoice_id=invoice.id)
            .first()
        )
        if payment is None:
            raise NotFoundError("Payment not found", {"id": payment_id})

        amount = payment.amount_cents
        db.session.delete(payment)
        db.session.flush()

        recompute_paid_amount(invoice)
        db.session.commit()

        current_app.logger.info(
            "payment.deleted org=%s invoice=%s payment=%s amount=%s paid=%s status=%s user=%s",
            org_id, invoice.id, payment_id, amount, invoice.paid_amount_cents, invoice.status, user_id,
        )
        return invoice

    return run_with_retry(_op)


def list_payments(org_id: int, invoice_id: int) -> list[Payment]:
    invoice = get_scoped(Invoice, invoice_id, org_id, label="Invoice")
    return (
        db.session.query(Payment)
        .filter_by(org_id=org_id, invoice_id=invoice.id)
        .order_by(Payment.paid_at.asc(), Payment.id.asc())
        .all()
    )


def get_payment_summary(org_id: int, invoice_id: int) -> dict:
    """Totals, balance and per-method breakdown for one invoice."""
    invoice = get_scoped(Invoice, invoice_id, org_id, label="Invoice")
    payments = list_payments(org_id, invoice.id)

    by_method = {method: 0 for method in VALID_PAYMENT_METHODS}
    for payment in payments:
        by_method[payment.method] = by_method.get(payment.method, 0) + payment.amount_cents

    return {
        "invoice_id": invoice.id,
        "status": effective_status(invoice),
        "total_cents": invoice.total_cents,
        "total": format_cents(invoice.total_cents),
        "paid_cents": invoice.paid_amount_cents,
        "paid": format_cents(invoice.paid_amount_cents),
        "balance_cents": invoice.balance_cents,
        "balance": format_cents(invoice.balance_cents),
        "overpaid_cents": invoice.overpaid_cents,
        "payment_count": len(payments),
        "by_method_cents": by_method,
        "payments": [p.to_dict() for p in payments],
    }


def get_payment_stats(
    org_id: int,
    start=None,
    end=None,
    *,
    customer_id: int | None = None,
) -> dict:
    """
    Tenant-wide payment statistics over an optional paid_at window.

    Args:
        start, end: Inclusive UTC bounds on paid_at (either may be None)
        customer_id: Only payments on this customer's invoices

    Returns:
        count, amount and average, per-method amount and count, and a
        per-month (YYYY-MM) breakdown in ascending month order.
    """
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end", {"start": str(start), "end": str(end)})

    query = db.session.query(Payment).filter(Payment.org_id == org_id)
    if start is not None:
        query = query.filter(Payment.paid_at >= start)
    if end is not None:
        query = query.filter(Payment.paid_at <= end)
    if customer_id is not None:
        query = query.join(Invoice, Invoice.id == Payment.invoice_id).filter(
            Invoice.org_id == org_id, Invoice.customer_id == customer_id
        )

    by_method_cents = {method: 0 for method in VALID_PAYMENT_METHODS}
    by_method_count = {method: 0 for method in VALID_PAYMENT_METHODS}
    by_month: dict[str, dict] = {}
    count = 0
    amount = 0

    for payment in query.all():
        count += 1
        amount += payment.amount_cents
        by_method_cents[payment.method] = by_method_cents.get(payment.method, 0) + payment.amount_cents
        by_method_count[payment.method] = by_method_count.get(payment.method, 0) + 1

        month = payment.paid_at.strftime("%Y-%m")
        bucket = by_month.setdefault(month, {"month": month, "count": 0, "amount_cents": 0})
        bucket["count"] += 1
        bucket["amount_cents"] += payment.amount_cents

    average = round_cents(Decimal(amount) / count) if count else 0

    return {
        "count": count,
        "amount_cents": amount,
        "amount": format_cents(amount),
        "average_cents": average,
        "average": format_cents(average),
        "by_method_cents": by_method_cents,
        "by_method_count": by_method_count,
        "by_month": [by_month[month] for month in sorted(by_month)],
    }
