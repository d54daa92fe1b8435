# Overview: Pytest coverage for the expiry/overdue sweeper.

"""
Expiry/Overdue Sweeper Tests

Covers which statuses are demoted, tenant scoping, idempotency and that
totals/payments are never touched.
"""

from docflow.models import Invoice, Quotation
from docflow.services import invoice_service, payment_service, quotation_service
from docflow.services.sweep_service import run_sweep

from conftest import days_from_now


class TestExpireQuotations:
    def test_expires_open_quotations(self, db_session, org_a, user_a, make_quotation):
        draft = make_quotation()
        sent = make_quotation("SENT")
        approved = make_quotation("APPROVED")
        rejected = make_quotation("REJECTED")

        result = run_sweep(now=days_from_now(31))

        assert sorted(result.expired_quotation_ids) == sorted([draft.id, sent.id, approved.id])
        for quotation in (draft, sent, approved):
            db_session.refresh(quotation)
            assert quotation.status == "EXPIRED"
            assert quotation.expired_at is not None
        db_session.refresh(rejected)
        assert rejected.status == "REJECTED"

    def test_converted_and_deleted_are_left_alone(self, db_session, org_a, user_a, make_invoice, make_quotation):
        invoice = make_invoice()
        deleted = make_quotation()
        quotation_service.delete_quotation(org_a.id, user_a.id, deleted.id)

        result = run_sweep(now=days_from_now(31))

        assert result.expired_quotation_ids == []
        converted = db_session.get(Quotation, invoice.source_quotation_id)
        assert converted.status == "CONVERTED"

    def test_quotation_still_valid(self, db_session, make_quotation):
        make_quotation("SENT")
        assert run_sweep().expired_quotation_ids == []

    def test_version_is_bumped(self, db_session, make_quotation):
        quotation = make_quotation()
        version = quotation.version_id

        run_sweep(now=days_from_now(31))

        db_session.refresh(quotation)
        assert quotation.version_id == version + 1


class TestOverdueInvoices:
    def test_scenario_d(self, db_session, org_a, user_a, make_invoice):
        """ISSUED invoice due yesterday -> OVERDUE; paying in full -> PAID."""
        invoice = make_invoice()
        invoice.due_date = days_from_now(-1)
        db_session.commit()

        result = run_sweep()

        assert result.overdue_invoice_ids == [invoice.id]
        db_session.refresh(invoice)
        assert invoice.status == "OVERDUE"
        assert invoice.overdue_at is not None

        invoice = payment_service.record_payment(org_a.id, user_a.id, invoice.id, 23200, "CASH")
        assert invoice.status == "PAID"

    def test_partially_paid_becomes_overdue(self, db_session, org_a, user_a, make_invoice):
        invoice = make_invoice()
        payment_service.record_payment(org_a.id, user_a.id, invoice.id, 1000, "CASH")

        result = run_sweep(now=days_from_now(31))

        assert result.overdue_invoice_ids == [invoice.id]

    def test_paid_draft_and_cancelled_are_skipped(self, db_session, org_a, user_a, make_invoice, make_draft_invoice):
        paid = make_invoice()
        payment_service.record_payment(org_a.id, user_a.id, paid.id, 23200, "CASH")
        make_draft_invoice()
        cancelled = make_invoice()
        invoice_service.cancel_invoice(org_a.id, user_a.id, cancelled.id)

        assert run_sweep(now=days_from_now(31)).overdue_invoice_ids == []

    def test_totals_and_payments_untouched(self, db_session, org_a, user_a, make_invoice):
        invoice = make_invoice()
        payment_service.record_payment(org_a.id, user_a.id, invoice.id, 1000, "CASH")
        before = (invoice.total_cents, invoice.paid_amount_cents, invoice.subtotal_cents, invoice.tax_cents)

        run_sweep(now=days_from_now(31))

        db_session.refresh(invoice)
        assert (invoice.total_cents, invoice.paid_amount_cents, invoice.subtotal_cents, invoice.tax_cents) == before
        assert len(payment_service.list_payments(org_a.id, invoice.id)) == 1


class TestSweepScope:
    def test_idempotent(self, db_session, make_quotation, make_invoice):
        make_quotation("SENT")
        make_invoice()
        now = days_from_now(31)

        first = run_sweep(now=now)
        second = run_sweep(now=now)

        assert len(first.expired_quotation_ids) == 1
        assert len(first.overdue_invoice_ids) == 1
        assert second.expired_quotation_ids == []
        assert second.overdue_invoice_ids == []

    def test_scoped_to_one_tenant(self, db_session, org_a, org_b, user_b, make_quotation, make_invoice):
        mine = make_invoice()
        theirs = make_invoice(org_id=org_b.id, user_id=user_b.id)

        result = run_sweep(org_id=org_a.id, now=days_from_now(31))

        assert result.overdue_invoice_ids == [mine.id]
        assert db_session.get(Invoice, theirs.id).status == "ISSUED"

    def test_result_dict(self, db_session, make_quotation):
        make_quotation()
        data = run_sweep(now=days_from_now(31)).to_dict()
        assert data["expired_quotations"] == 1
        assert data["overdue_invoices"] == 0
