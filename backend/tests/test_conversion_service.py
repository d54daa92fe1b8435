# Overview: Pytest coverage for quotation and work order conversion into invoices.

"""
Conversion Pipeline Tests

Covers the precondition order, line snapshots, source stamping, the
at-most-once guarantee (status and unique constraint) and the dry-run
check.
"""

import pytest

from docflow.errors import (
    AlreadyConvertedError,
    EmptyDocumentError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from docflow.models import Invoice
from docflow.services import conversion_service, invoice_service, quotation_service, work_order_service

from conftest import BRAKE_PADS, days_from_now


class TestConvertQuotation:
    def test_scenario_b(self, db_session, org_a, user_a, make_quotation):
        """Approved 232.00 quotation -> ISSUED invoice; second convert is refused."""
        quotation = make_quotation("APPROVED")

        invoice = conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)

        assert invoice.status == "ISSUED"
        assert invoice.total_cents == 23200
        assert invoice.paid_amount_cents == 0
        assert invoice.source_quotation_id == quotation.id
        assert invoice.source["type"] == "quotation"
        assert invoice.customer_id == quotation.customer_id
        assert invoice.issued_at is not None

        db_session.refresh(quotation)
        assert quotation.status == "CONVERTED"
        assert quotation.converted_at is not None

        with pytest.raises(AlreadyConvertedError):
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)
        assert db_session.query(Invoice).filter_by(source_quotation_id=quotation.id).count() == 1

    def test_lines_are_snapshots(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        source_line = quotation.lines[0]

        invoice = conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)
        invoice_line = invoice.lines[0]

        assert invoice_line.description == source_line.description
        assert invoice_line.quantity == source_line.quantity
        assert invoice_line.unit_price_cents == source_line.unit_price_cents
        assert invoice_line.tax_bps == source_line.tax_bps
        assert invoice_line.invoice_id == invoice.id

        # Editing the invoice leaves the quotation untouched
        invoice_service.update_invoice_item(org_a.id, user_a.id, invoice.id, invoice_line.id, {"quantity": 5})
        db_session.refresh(source_line)
        assert source_line.quantity == 2

    def test_document_discount_carried_over(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation(discount_bps=1000)
        quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "SENT")
        quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "APPROVED")

        invoice = conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)

        assert invoice.discount_bps == 1000
        assert invoice.total_cents == 20880

    def test_custom_due_date(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        due = days_from_now(10)
        invoice = conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id, due_date=due)
        assert invoice.due_date == due

    def test_past_due_date_rejected(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        with pytest.raises(ValidationError):
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id, due_date=days_from_now(-1))

        db_session.refresh(quotation)
        assert quotation.status == "APPROVED"

    @pytest.mark.parametrize("status", ["DRAFT", "SENT", "REJECTED"])
    def test_requires_approved(self, db_session, org_a, user_a, make_quotation, status):
        quotation = make_quotation(status)

        with pytest.raises(InvalidStateError) as exc_info:
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)

        assert exc_info.value.current_status == status
        assert status in exc_info.value.message

    def test_expired_validity(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        quotation.valid_until = days_from_now(-1)
        db_session.commit()

        with pytest.raises(ExpiredError):
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)
        assert db_session.query(Invoice).count() == 0

    def test_empty_quotation(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        line_id = quotation.lines[0].id
        # Remove the line behind the state machine's back
        db_session.delete(db_session.get(type(quotation.lines[0]), line_id))
        db_session.commit()

        with pytest.raises(EmptyDocumentError):
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)

    def test_not_found(self, db_session, org_a, user_a):
        with pytest.raises(NotFoundError):
            conversion_service.convert_quotation(org_a.id, user_a.id, 424242)

    def test_unique_constraint_guards_conversion(self, db_session, org_a, user_a, make_quotation):
        """Even if the status check is bypassed, the source column stays unique."""
        quotation = make_quotation("APPROVED")
        conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)

        # Simulate a racer that read APPROVED before the first commit
        quotation.status = "APPROVED"
        db_session.commit()

        with pytest.raises(AlreadyConvertedError):
            conversion_service.convert_quotation(org_a.id, user_a.id, quotation.id)
        assert db_session.query(Invoice).filter_by(source_quotation_id=quotation.id).count() == 1


class TestCheckConversion:
    def test_convertible(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        result = conversion_service.check_quotation_conversion(org_a.id, quotation.id)

        assert result["can_convert"] is True
        assert result["reason"] is None
        assert result["total_cents"] == 23200

    def test_reports_reason_without_writing(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        result = conversion_service.check_quotation_conversion(org_a.id, quotation.id)

        assert result["can_convert"] is False
        assert result["reason"] == "INVALID_STATE"
        assert db_session.query(Invoice).count() == 0

    def test_already_converted(self, db_session, org_a, user_a, make_invoice):
        invoice = make_invoice()
        result = conversion_service.check_quotation_conversion(org_a.id, invoice.source_quotation_id)
        assert result["reason"] == "ALREADY_CONVERTED"


class TestConvertWorkOrder:
    def test_completed_work_order(self, db_session, org_a, user_a, make_work_order):
        work_order = make_work_order()

        invoice = conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)

        assert invoice.status == "ISSUED"
        assert invoice.source == {
            "type": "work_order",
            "id": work_order.id,
            "quotation_id": None,
            "work_order_id": work_order.id,
        }
        assert invoice.customer_id == 7
        assert invoice.total_cents == 28200
        assert len(invoice.lines) == 2

        db_session.refresh(work_order)
        assert work_order.invoiced_at is not None

    def test_second_conversion_refused(self, db_session, org_a, user_a, make_work_order):
        work_order = make_work_order()
        conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)

        with pytest.raises(AlreadyConvertedError):
            conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)

    @pytest.mark.parametrize("status", ["PENDING", "IN_PROGRESS", "CANCELLED"])
    def test_requires_completed(self, db_session, org_a, user_a, make_work_order, status):
        work_order = make_work_order(status)
        with pytest.raises(InvalidStateError):
            conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)

    def test_empty_work_order(self, db_session, org_a, user_a, make_work_order):
        work_order = make_work_order(items=[])
        with pytest.raises(EmptyDocumentError):
            conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)

    def test_items_locked_after_completion(self, db_session, org_a, user_a, make_work_order):
        work_order = make_work_order()
        with pytest.raises(InvalidStateError):
            work_order_service.add_work_order_item(org_a.id, user_a.id, work_order.id, dict(BRAKE_PADS))

    def test_completed_statuses_are_configurable(self, app, db_session, org_a, user_a, make_work_order):
        work_order = make_work_order("IN_PROGRESS")
        original = app.config["COMPLETED_WORK_ORDER_STATUSES"]
        app.config["COMPLETED_WORK_ORDER_STATUSES"] = ("COMPLETED", "IN_PROGRESS")
        try:
            invoice = conversion_service.convert_work_order(org_a.id, user_a.id, work_order.id)
        finally:
            app.config["COMPLETED_WORK_ORDER_STATUSES"] = original
        assert invoice.source_work_order_id == work_order.id
