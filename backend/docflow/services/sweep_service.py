# Overview: Batch pass that demotes stale quotations to EXPIRED and unpaid invoices to OVERDUE.

"""
Expiry/Overdue Sweeper

WHY: Validity and due dates pass without anyone touching the document.
A periodic sweep materializes EXPIRED and OVERDUE so lists, reports and
the conversion pipeline see them.

DESIGN:
- Idempotent: a second run with the same clock changes nothing
- Touches only status, the matching timestamp and version_id
  (never totals or payments)
- Scoped to one tenant, or every tenant when org_id is None
- Reads compute OVERDUE on the fly as well (invoice_service.effective_status),
  so the sweep is not required for correctness of invoice reads
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Invoice, Quotation
from docflow.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .invoice_service import INVOICE_OVERDUE, OVERDUE_CANDIDATE_STATUSES
from .quotation_service import EXPIRABLE_STATUSES, QUOTATION_EXPIRED


@dataclass
class SweepResult:
    expired_quotation_ids: list[int] = field(default_factory=list)
    overdue_invoice_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "expired_quotation_ids": self.expired_quotation_ids,
            "overdue_invoice_ids": self.overdue_invoice_ids,
            "expired_quotations": len(self.expired_quotation_ids),
            "overdue_invoices": len(self.overdue_invoice_ids),
        }


def _stale_quotations(org_id, now):
    conditions = [
        Quotation.status.in_(EXPIRABLE_STATUSES),
        Quotation.valid_until.isnot(None),
        Quotation.valid_until < now,
        Quotation.deleted_at.is_(None),
    ]
    if org_id is not None:
        conditions.append(Quotation.org_id == org_id)
    return conditions


def _stale_invoices(org_id, now):
    conditions = [
        Invoice.status.in_(OVERDUE_CANDIDATE_STATUSES),
        Invoice.due_date.isnot(None),
        Invoice.due_date < now,
    ]
    if org_id is not None:
        conditions.append(Invoice.org_id == org_id)
    return conditions


def run_sweep(org_id: int | None = None, now=None) -> SweepResult:
    """
    Expire quotations past valid_until and mark unpaid invoices past
    due_date as OVERDUE.

    Args:
        org_id: Tenant to sweep (None = all tenants)
        now: Clock override (tests, backfills)
    """
    now = now or utcnow()

    def _op():
        begin_write()
        result = SweepResult()

        quotation_conditions = _stale_quotations(org_id, now)
        result.expired_quotation_ids = [
            row.id for row in lock_for_update(
                db.session.query(Quotation.id).filter(*quotation_conditions).order_by(Quotation.id)
            ).all()
        ]
        if result.expired_quotation_ids:
            (
                db.session.query(Quotation)
                .filter(Quotation.id.in_(result.expired_quotation_ids), *quotation_conditions)
                .update(
                    {
                        Quotation.status: QUOTATION_EXPIRED,
                        Quotation.expired_at: now,
                        Quotation.version_id: Quotation.version_id + 1,
                    },
                    synchronize_session=False,
                )
            )

        invoice_conditions = _stale_invoices(org_id, now)
        result.overdue_invoice_ids = [
            row.id for row in lock_for_update(
                db.session.query(Invoice.id).filter(*invoice_conditions).order_by(Invoice.id)
            ).all()
        ]
        if result.overdue_invoice_ids:
            (
                db.session.query(Invoice)
                .filter(Invoice.id.in_(result.overdue_invoice_ids), *invoice_conditions)
                .update(
                    {
                        Invoice.status: INVOICE_OVERDUE,
                        Invoice.overdue_at: now,
                        Invoice.version_id: Invoice.version_id + 1,
                    },
                    synchronize_session=False,
                )
            )

        db.session.commit()

        current_app.logger.info(
            "sweep.completed org=%s expired_quotations=%s overdue_invoices=%s",
            org_id if org_id is not None else "*",
            len(result.expired_quotation_ids),
            len(result.overdue_invoice_ids),
        )
        return result

    return run_with_retry(_op)
