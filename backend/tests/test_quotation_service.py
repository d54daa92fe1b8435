# Overview: Pytest coverage for the quotation state machine, item edits and statistics.

"""
Quotation State Machine Tests

Covers creation/numbering, item edits with totals recompute, the allowed
transitions, reopening expired quotations, soft delete, listing filters and
the summary endpoint data.
"""

from decimal import Decimal

import pytest

from docflow.errors import (
    EmptyDocumentError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from docflow.extensions import db
from docflow.services import quotation_service
from docflow.services.sweep_service import run_sweep

from conftest import BRAKE_PADS, LABOUR, days_from_now


class TestCreateQuotation:
    def test_create_computes_totals_and_number(self, db_session, org_a, user_a):
        quotation = quotation_service.create_quotation(
            org_a.id, user_a.id, {"customer_id": 3, "items": [dict(BRAKE_PADS)]}
        )

        assert quotation.status == "DRAFT"
        assert quotation.number == "Q-0001"
        assert quotation.org_id == org_a.id
        assert quotation.created_by_user_id == user_a.id
        assert quotation.subtotal_cents == 20000
        assert quotation.tax_cents == 3200
        assert quotation.total_cents == 23200
        assert quotation.valid_until > days_from_now(29)

    def test_numbers_are_sequential_per_tenant(self, db_session, org_a, org_b, user_a, user_b, make_quotation):
        first = make_quotation()
        second = make_quotation()
        other = make_quotation(org_id=org_b.id, user_id=user_b.id)

        assert first.number == "Q-0001"
        assert second.number == "Q-0002"
        assert other.number == "Q-0001"

    def test_create_without_items(self, db_session, org_a, user_a):
        quotation = quotation_service.create_quotation(org_a.id, user_a.id, {"customer_id": 3})
        assert quotation.lines == []
        assert quotation.total_cents == 0

    def test_customer_required(self, db_session, org_a, user_a):
        with pytest.raises(ValidationError):
            quotation_service.create_quotation(org_a.id, user_a.id, {"notes": "no customer"})

    def test_unknown_field_rejected(self, db_session, org_a, user_a):
        with pytest.raises(ValidationError):
            quotation_service.create_quotation(org_a.id, user_a.id, {"customer_id": 1, "status": "APPROVED"})

    def test_tenant_keys_are_ignored(self, db_session, org_a, org_b, user_a):
        """A payload org_id never moves the document to another tenant."""
        quotation = quotation_service.create_quotation(
            org_a.id, user_a.id, {"customer_id": 1, "org_id": org_b.id, "tenant_id": org_b.id}
        )
        assert quotation.org_id == org_a.id

    def test_past_valid_until_rejected(self, db_session, org_a, user_a):
        with pytest.raises(ValidationError):
            quotation_service.create_quotation(
                org_a.id, user_a.id, {"customer_id": 1, "valid_until": days_from_now(-1)}
            )

    @pytest.mark.parametrize("item", [
        {"description": "x", "quantity": 0, "unit_price_cents": 100},
        {"description": "x", "quantity": 1, "unit_price_cents": -1},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "discount_bps": 10001},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "discount_bps": 100, "discount_cents": 5},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "discount_cents": 101},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "tax_bps": -1},
        {"description": "x", "quantity": -0.5, "unit_price_cents": 100},
        {"description": "x", "quantity": "1.2345", "unit_price_cents": 100},
        {"description": "x", "quantity": "NaN", "unit_price_cents": 100},
        {"description": "x", "quantity": "Infinity", "unit_price_cents": 100},
        {"description": "x", "quantity": "abc", "unit_price_cents": 100},
        {"description": "x", "quantity": True, "unit_price_cents": 100},
        {"description": "x", "quantity": 1, "unit_price_cents": 100, "kind": "GIFT"},
        {"quantity": 1, "unit_price_cents": 100},
    ])
    def test_invalid_items_rejected(self, db_session, org_a, user_a, item):
        with pytest.raises(ValidationError):
            quotation_service.create_quotation(org_a.id, user_a.id, {"customer_id": 1, "items": [item]})

    def test_fractional_quantity(self, db_session, org_a, user_a):
        """1.5 labour hours at 100.00 -> 150.00."""
        quotation = quotation_service.create_quotation(org_a.id, user_a.id, {
            "customer_id": 1,
            "items": [{"description": "Diagnosis", "quantity": 1.5, "unit_price_cents": 10000}],
        })

        assert quotation.total_cents == 15000
        db_session.expire_all()
        line = quotation_service.get_quotation(org_a.id, quotation.id).lines[0]
        assert line.quantity == Decimal("1.5")
        assert line.line_dict()["quantity"] == "1.5"

    def test_fractional_quantity_as_string(self, db_session, org_a, user_a):
        quotation = quotation_service.create_quotation(org_a.id, user_a.id, {
            "customer_id": 1,
            "items": [{"description": "Oil", "quantity": "4.25", "unit_price_cents": 1200, "tax_bps": 1600}],
        })
        # 4.25 x 12.00 = 51.00, +16% = 59.16
        assert quotation.total_cents == 5916


class TestQuotationItems:
    def test_add_update_delete_recompute_totals(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()

        quotation = quotation_service.add_quotation_item(org_a.id, user_a.id, quotation.id, dict(LABOUR))
        assert quotation.total_cents == 28200

        labour = quotation.lines[-1]
        quotation = quotation_service.update_quotation_item(
            org_a.id, user_a.id, quotation.id, labour.id, {"quantity": 2}
        )
        assert quotation.total_cents == 33200

        quotation = quotation_service.delete_quotation_item(org_a.id, user_a.id, quotation.id, labour.id)
        assert quotation.total_cents == 23200
        assert len(quotation.lines) == 1

    def test_update_switches_discount_kind(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation(items=[{"description": "Tyre", "quantity": 1, "unit_price_cents": 10000, "discount_bps": 1000}])
        line = quotation.lines[0]

        quotation = quotation_service.update_quotation_item(
            org_a.id, user_a.id, quotation.id, line.id, {"discount_cents": 500}
        )
        line = quotation.lines[0]
        assert line.discount_cents == 500
        assert line.discount_bps is None
        assert quotation.total_cents == 9500

    def test_unknown_item_is_not_found(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()
        with pytest.raises(NotFoundError):
            quotation_service.delete_quotation_item(org_a.id, user_a.id, quotation.id, 99999)

    def test_items_frozen_after_approval(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")

        with pytest.raises(InvalidStateError) as exc_info:
            quotation_service.add_quotation_item(org_a.id, user_a.id, quotation.id, dict(LABOUR))

        assert exc_info.value.current_status == "APPROVED"
        assert "APPROVED" in exc_info.value.message

    def test_items_editable_while_sent(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        quotation = quotation_service.add_quotation_item(org_a.id, user_a.id, quotation.id, dict(LABOUR))
        assert len(quotation.lines) == 2

    def test_document_discount(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()

        quotation = quotation_service.set_quotation_discount(org_a.id, user_a.id, quotation.id, {"discount_bps": 1000})
        assert quotation.total_cents == 20880

        quotation = quotation_service.set_quotation_discount(
            org_a.id, user_a.id, quotation.id, {"discount_flat_cents": 3200}
        )
        assert quotation.discount_bps is None
        assert quotation.total_cents == 20000

        quotation = quotation_service.set_quotation_discount(
            org_a.id, user_a.id, quotation.id, {"discount_bps": None, "discount_flat_cents": None}
        )
        assert quotation.total_cents == 23200


class TestQuotationTransitions:
    def test_happy_path_to_approved(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("APPROVED")
        assert quotation.status == "APPROVED"
        assert quotation.sent_at is not None
        assert quotation.approved_at is not None

    def test_reject(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("REJECTED")
        assert quotation.status == "REJECTED"
        assert quotation.rejected_at is not None

    def test_send_requires_items(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation(items=[])
        with pytest.raises(EmptyDocumentError):
            quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "SENT")

    def test_cannot_skip_sent(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()
        with pytest.raises(InvalidStateError) as exc_info:
            quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "APPROVED")
        assert exc_info.value.current_status == "DRAFT"

    @pytest.mark.parametrize("target", ["CONVERTED", "EXPIRED"])
    def test_system_statuses_cannot_be_requested(self, db_session, org_a, user_a, make_quotation, target):
        quotation = make_quotation("APPROVED")
        with pytest.raises(InvalidStateError):
            quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, target)

    def test_unknown_status_rejected(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()
        with pytest.raises(ValidationError):
            quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "ARCHIVED")

    def test_rejected_is_terminal(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("REJECTED")
        for target in ("DRAFT", "SENT", "APPROVED"):
            with pytest.raises(InvalidStateError):
                quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, target)

    def test_approve_after_validity_is_expired(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        quotation.valid_until = days_from_now(-1)
        db_session.commit()

        with pytest.raises(ExpiredError):
            quotation_service.transition_quotation(org_a.id, user_a.id, quotation.id, "APPROVED")

    def test_reopen_expired_quotation(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        run_sweep(now=days_from_now(60))
        db_session.refresh(quotation)
        assert quotation.status == "EXPIRED"

        reopened = quotation_service.transition_quotation(
            org_a.id, user_a.id, quotation.id, "DRAFT", valid_until=days_from_now(90)
        )
        assert reopened.status == "DRAFT"
        assert reopened.expired_at is None
        assert reopened.valid_until > days_from_now(89)

    def test_reopen_requires_future_validity(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        run_sweep(now=days_from_now(60))

        with pytest.raises(ValidationError):
            quotation_service.transition_quotation(
                org_a.id, user_a.id, quotation.id, "DRAFT", valid_until=days_from_now(-2)
            )


class TestQuotationDelete:
    def test_soft_delete_draft(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation()
        quotation_id = quotation.id

        quotation_service.delete_quotation(org_a.id, user_a.id, quotation_id)

        with pytest.raises(NotFoundError):
            quotation_service.get_quotation(org_a.id, quotation_id)
        # Row is kept
        assert db_session.get(type(quotation), quotation_id).deleted_at is not None

    def test_only_draft_can_be_deleted(self, db_session, org_a, user_a, make_quotation):
        quotation = make_quotation("SENT")
        with pytest.raises(InvalidStateError):
            quotation_service.delete_quotation(org_a.id, user_a.id, quotation.id)


class TestQuotationQueries:
    def test_list_filters(self, db_session, org_a, user_a, make_quotation):
        make_quotation()
        make_quotation("SENT", notes="Fleet contract")
        make_quotation("APPROVED")

        rows, total = quotation_service.list_quotations(org_a.id)
        assert total == 3

        rows, total = quotation_service.list_quotations(org_a.id, status="sent")
        assert total == 1
        assert rows[0].status == "SENT"

        rows, total = quotation_service.list_quotations(org_a.id, search="fleet")
        assert total == 1

        rows, total = quotation_service.list_quotations(org_a.id, limit=2)
        assert len(rows) == 2
        assert total == 3

    def test_list_expired_only(self, db_session, org_a, user_a, make_quotation):
        stale = make_quotation("SENT")
        make_quotation("SENT")
        stale.valid_until = days_from_now(-1)
        db_session.commit()

        rows, total = quotation_service.list_quotations(org_a.id, expired_only=True)
        assert total == 1
        assert rows[0].id == stale.id

    def test_invalid_status_filter(self, db_session, org_a):
        with pytest.raises(ValidationError):
            quotation_service.list_quotations(org_a.id, status="BOGUS")

    def test_summary(self, db_session, org_a, user_a, make_quotation):
        make_quotation()
        make_quotation("SENT", items=[dict(BRAKE_PADS), dict(LABOUR)])
        deleted = make_quotation()
        quotation_service.delete_quotation(org_a.id, user_a.id, deleted.id)

        summary = quotation_service.get_quotation_summary(org_a.id)

        assert summary["total"] == 2
        assert summary["by_status"]["DRAFT"] == 1
        assert summary["by_status"]["SENT"] == 1
        assert summary["total_value_cents"] == 23200 + 28200
        assert summary["average_value_cents"] == 25700
        assert summary["average_value"] == "257.00"

    def test_summary_empty(self, db_session, org_a):
        summary = quotation_service.get_quotation_summary(org_a.id)
        assert summary["total"] == 0
        assert summary["average_value_cents"] == 0

    def test_list_by_customer(self, db_session, org_a, user_a, make_quotation):
        make_quotation(customer_id=5)
        make_quotation("SENT", customer_id=5)
        make_quotation(customer_id=6)

        rows, total = quotation_service.list_quotations(org_a.id, customer_id=5)
        assert total == 2
        assert {q.customer_id for q in rows} == {5}

        rows, total = quotation_service.list_quotations(org_a.id, customer_id=5, status="SENT")
        assert total == 1


class TestBulkTransition:
    def test_mixed_results_are_reported_per_id(self, db_session, org_a, org_b, user_a, user_b, make_quotation):
        first = make_quotation("SENT")
        second = make_quotation("SENT")
        draft = make_quotation()
        theirs = make_quotation("SENT", org_id=org_b.id, user_id=user_b.id)

        result = quotation_service.bulk_transition_quotations(
            org_a.id, user_a.id, [first.id, draft.id, second.id, theirs.id, first.id], "approved"
        )

        assert result["status"] == "APPROVED"
        assert result["requested"] == 4
        assert result["succeeded"] == [first.id, second.id]
        assert [f["id"] for f in result["failed"]] == [draft.id, theirs.id]
        assert result["failed"][0]["error"] == "INVALID_STATE"
        assert result["failed"][0]["details"]["current_status"] == "DRAFT"
        assert result["failed"][1]["error"] == "NOT_FOUND"

        db_session.expire_all()
        assert quotation_service.get_quotation(org_a.id, second.id).status == "APPROVED"
        assert quotation_service.get_quotation(org_a.id, draft.id).status == "DRAFT"
        assert quotation_service.get_quotation(org_b.id, theirs.id).status == "SENT"

    def test_failure_does_not_undo_earlier_ids(self, db_session, org_a, user_a, make_quotation):
        empty = make_quotation(items=[])
        full = make_quotation()

        result = quotation_service.bulk_transition_quotations(org_a.id, user_a.id, [full.id, empty.id], "SENT")

        assert result["succeeded"] == [full.id]
        assert result["failed"][0]["error"] == "EMPTY_DOCUMENT"
        db_session.expire_all()
        assert quotation_service.get_quotation(org_a.id, full.id).status == "SENT"

    @pytest.mark.parametrize("ids,status", [
        ([], "SENT"),
        ("1,2", "SENT"),
        ([1, "2"], "SENT"),
        ([True], "SENT"),
        ([1], "ARCHIVED"),
        ([1], None),
        (list(range(1, 102)), "SENT"),
    ])
    def test_bad_requests_attempt_nothing(self, db_session, org_a, user_a, make_quotation, ids, status):
        quotation = make_quotation()
        with pytest.raises(ValidationError):
            quotation_service.bulk_transition_quotations(org_a.id, user_a.id, ids, status)

        db_session.expire_all()
        assert quotation_service.get_quotation(org_a.id, quotation.id).status == "DRAFT"
