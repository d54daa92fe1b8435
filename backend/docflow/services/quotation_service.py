# Overview: Quotation state machine, line items and statistics.

"""
Quotation Service

WHY: A quotation is the priced proposal a customer approves before work is
authorized. Approved quotations become invoices through the conversion
pipeline (see conversion_service.py).

LIFECYCLE:
    DRAFT -> SENT -> APPROVED -> CONVERTED   (conversion pipeline only)
                  -> REJECTED
    DRAFT | SENT | APPROVED -> EXPIRED       (sweeper only)
    EXPIRED -> DRAFT                         (reopen with a future valid_until)

DESIGN:
- Items and the document discount are editable only in DRAFT and SENT
- Every item mutation recomputes totals in the same transaction
- Only DRAFT quotations may be deleted, and only softly (deleted_at)
- CONVERTED and REJECTED are terminal
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..errors import (
    DocumentError,
    EmptyDocumentError,
    ExpiredError,
    InvalidStateError,
    ValidationError,
)
from ..extensions import db
from ..models import Quotation, QuotationLine
from ..money import format_cents, round_cents
from ..validation import (
    QUOTATION_CREATE_POLICY,
    QUOTATION_UPDATE_POLICY,
    enforce_rules_document_discount,
    validate_payload,
)
from docflow.time_utils import is_past, utcnow
from .concurrency import begin_write, run_with_retry
from .document_service import DOC_TYPE_QUOTATION, next_document_number
from .line_item_service import add_line, build_line, delete_line, set_document_discount, update_line
from .tenant_service import get_scoped, scoped_query
from .totals_service import recompute_document


# =============================================================================
# STATUSES
# =============================================================================

QUOTATION_DRAFT = "DRAFT"
QUOTATION_SENT = "SENT"
QUOTATION_APPROVED = "APPROVED"
QUOTATION_REJECTED = "REJECTED"
QUOTATION_EXPIRED = "EXPIRED"
QUOTATION_CONVERTED = "CONVERTED"

QUOTATION_STATUSES = (
    QUOTATION_DRAFT,
    QUOTATION_SENT,
    QUOTATION_APPROVED,
    QUOTATION_REJECTED,
    QUOTATION_EXPIRED,
    QUOTATION_CONVERTED,
)

# Transitions a caller may request directly
ALLOWED_TRANSITIONS = {
    QUOTATION_DRAFT: {QUOTATION_SENT},
    QUOTATION_SENT: {QUOTATION_APPROVED, QUOTATION_REJECTED},
    QUOTATION_EXPIRED: {QUOTATION_DRAFT},
}

# Set only by the conversion pipeline and the sweeper
SYSTEM_ONLY_STATUSES = {QUOTATION_CONVERTED, QUOTATION_EXPIRED}

EDITABLE_STATUSES = {QUOTATION_DRAFT, QUOTATION_SENT}
EXPIRABLE_STATUSES = (QUOTATION_DRAFT, QUOTATION_SENT, QUOTATION_APPROVED)

# Upper bound for one bulk status request
MAX_BULK_IDS = 100


def _default_valid_until(now):
    return now + timedelta(days=current_app.config["QUOTATION_VALIDITY_DAYS"])


def _require_future(valid_until, now) -> None:
    if valid_until is not None and valid_until <= now:
        raise ValidationError("valid_until must be in the future", {"field": "valid_until"})


def _require_editable(quotation: Quotation, action: str) -> None:
    if quotation.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Cannot {action} a quotation in status {quotation.status}",
            quotation.status,
        )


def _load_for_write(org_id: int, quotation_id: int) -> Quotation:
    begin_write()
    return get_scoped(Quotation, quotation_id, org_id, for_update=True, label="Quotation")


# =============================================================================
# CREATE / READ
# =============================================================================

def create_quotation(org_id: int, user_id: int | None, payload: dict) -> Quotation:
    """
    Create a DRAFT quotation, optionally with inline items.

    Args:
        payload: customer_id (required), valid_until, notes, discount_bps |
            discount_flat_cents, items (list of line payloads)
    """
    payload = dict(payload or {})
    items = payload.pop("items", None) or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    patch = validate_payload(model=Quotation, payload=payload, policy=QUOTATION_CREATE_POLICY, partial=False)
    enforce_rules_document_discount(patch)

    def _op():
        begin_write()
        now = utcnow()
        valid_until = patch.get("valid_until") or _default_valid_until(now)
        _require_future(valid_until, now)

        quotation = Quotation(
            org_id=org_id,
            customer_id=patch["customer_id"],
            number=next_document_number(org_id=org_id, document_type=DOC_TYPE_QUOTATION),
            status=QUOTATION_DRAFT,
            valid_until=valid_until,
            notes=patch.get("notes"),
            discount_bps=patch.get("discount_bps"),
            discount_flat_cents=patch.get("discount_flat_cents"),
            created_by_user_id=user_id,
        )
        for item in items:
            quotation.lines.append(build_line(QuotationLine, item))
        recompute_document(quotation, quotation.lines)

        db.session.add(quotation)
        db.session.commit()

        current_app.logger.info(
            "quotation.created org=%s id=%s number=%s total=%s",
            org_id, quotation.id, quotation.number, quotation.total_cents,
        )
        return quotation

    return run_with_retry(_op)


def get_quotation(org_id: int, quotation_id: int) -> Quotation:
    return get_scoped(Quotation, quotation_id, org_id, label="Quotation")


def list_quotations(
    org_id: int,
    *,
    status: str | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    expired_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Quotation], int]:
    """
    List quotations for a tenant, newest first.

    expired_only returns quotations whose validity has passed but that the
    sweeper has not demoted yet.
    customer_id narrows the list to one customer.

    Returns (rows, total_count).
    """
    query = scoped_query(Quotation, org_id)

    if status:
        status = status.upper()
        if status not in QUOTATION_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}")
        query = query.filter(Quotation.status == status)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Quotation.number.ilike(pattern), Quotation.notes.ilike(pattern)))

    if customer_id is not None:
        query = query.filter(Quotation.customer_id == customer_id)

    if expired_only:
        query = query.filter(
            Quotation.status.in_(EXPIRABLE_STATUSES),
            Quotation.valid_until.isnot(None),
            Quotation.valid_until < utcnow(),
        )

    total = query.count()
    rows = (
        query.order_by(Quotation.created_at.desc(), Quotation.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def get_quotation_summary(org_id: int) -> dict:
    """Counts per status plus total and average value (soft-deleted excluded)."""
    rows = (
        scoped_query(Quotation, org_id)
        .with_entities(Quotation.status, func.count(Quotation.id), func.coalesce(func.sum(Quotation.total_cents), 0))
        .group_by(Quotation.status)
        .all()
    )

    by_status = {status: 0 for status in QUOTATION_STATUSES}
    count = 0
    total_value = 0
    for status, status_count, status_value in rows:
        by_status[status] = status_count
        count += status_count
        total_value += int(status_value)

    average_value = round_cents(Decimal(total_value) / count) if count else 0

    return {
        "total": count,
        "by_status": by_status,
        "total_value_cents": total_value,
        "total_value": format_cents(total_value),
        "average_value_cents": average_value,
        "average_value": format_cents(average_value),
    }


# =============================================================================
# HEADER EDITS
# =============================================================================

def update_quotation(org_id: int, user_id: int | None, quotation_id: int, payload: dict) -> Quotation:
    """Patch customer_id, valid_until or notes (DRAFT/SENT only)."""
    patch = validate_payload(model=Quotation, payload=payload, policy=QUOTATION_UPDATE_POLICY, partial=True)

    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        _require_editable(quotation, "update")

        if "valid_until" in patch:
            _require_future(patch["valid_until"], utcnow())
        for key, value in patch.items():
            setattr(quotation, key, value)

        db.session.commit()
        return quotation

    return run_with_retry(_op)


def set_quotation_discount(org_id: int, user_id: int | None, quotation_id: int, payload: dict) -> Quotation:
    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        _require_editable(quotation, "change the discount of")
        set_document_discount(quotation, payload)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


# =============================================================================
# ITEMS
# =============================================================================

def add_quotation_item(org_id: int, user_id: int | None, quotation_id: int, payload: dict) -> Quotation:
    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        _require_editable(quotation, "add items to")
        add_line(quotation, QuotationLine, payload)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def update_quotation_item(
    org_id: int, user_id: int | None, quotation_id: int, item_id: int, payload: dict
) -> Quotation:
    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        _require_editable(quotation, "edit items of")
        update_line(quotation, item_id, payload)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def delete_quotation_item(org_id: int, user_id: int | None, quotation_id: int, item_id: int) -> Quotation:
    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        _require_editable(quotation, "remove items from")
        delete_line(quotation, item_id)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def transition_quotation(
    org_id: int,
    user_id: int | None,
    quotation_id: int,
    target_status: str,
    *,
    valid_until=None,
) -> Quotation:
    """
    Move a quotation along its lifecycle.

    Args:
        target_status: SENT, APPROVED, REJECTED, or DRAFT (reopen an EXPIRED one)
        valid_until: New validity when reopening; defaults to the configured
            validity window from now

    Raises:
        ValidationError: unknown target status, or reopen with a past valid_until
        InvalidStateError: transition not allowed from the current status
        EmptyDocumentError: sending a quotation without items
        ExpiredError: sending/approving after valid_until
    """
    target = (target_status or "").upper()
    if target not in QUOTATION_STATUSES:
        raise ValidationError(f"Invalid status: {target_status}", {"field": "status"})

    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        current = quotation.status
        now = utcnow()

        if target in SYSTEM_ONLY_STATUSES:
            raise InvalidStateError(
                f"Status {target} cannot be set directly (quotation is {current})",
                current,
            )
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStateError(
                f"Cannot move quotation from {current} to {target}",
                current,
            )

        if target == QUOTATION_SENT:
            if not quotation.lines:
                raise EmptyDocumentError("Cannot send a quotation without items")
            if is_past(quotation.valid_until, now):
                raise ExpiredError("Quotation validity has passed", {"valid_until": str(quotation.valid_until)})
            quotation.sent_at = now
        elif target == QUOTATION_APPROVED:
            if is_past(quotation.valid_until, now):
                raise ExpiredError("Quotation validity has passed", {"valid_until": str(quotation.valid_until)})
            quotation.approved_at = now
        elif target == QUOTATION_REJECTED:
            quotation.rejected_at = now
        elif target == QUOTATION_DRAFT:
            new_valid_until = valid_until or _default_valid_until(now)
            _require_future(new_valid_until, now)
            quotation.valid_until = new_valid_until
            quotation.expired_at = None

        quotation.status = target
        db.session.commit()

        current_app.logger.info(
            "quotation.transition org=%s id=%s %s->%s user=%s",
            org_id, quotation.id, current, target, user_id,
        )
        return quotation

    return run_with_retry(_op)


def bulk_transition_quotations(
    org_id: int,
    user_id: int | None,
    quotation_ids,
    target_status: str,
) -> dict:
    """
    Apply one transition to many quotations.

    Each id runs through transition_quotation in its own transaction, so
    one bad id never rolls back the others. Failures are reported per id
    with the same error code a single transition would return.

    Returns:
        {"status", "requested", "succeeded": [ids], "failed": [{"id", "error", "message", ...}]}

    Raises:
        ValidationError: empty or oversized id list, non-integer ids, or an
            unknown target status (nothing is attempted)
    """
    if not isinstance(quotation_ids, list) or not quotation_ids:
        raise ValidationError("quotation_ids must be a non-empty list", {"field": "quotation_ids"})
    if len(quotation_ids) > MAX_BULK_IDS:
        raise ValidationError(f"At most {MAX_BULK_IDS} quotations per request", {"field": "quotation_ids"})
    if any(isinstance(i, bool) or not isinstance(i, int) for i in quotation_ids):
        raise ValidationError("quotation_ids must contain integers", {"field": "quotation_ids"})

    target = (target_status or "").upper() if isinstance(target_status, str) else ""
    if target not in QUOTATION_STATUSES:
        raise ValidationError(f"Invalid status: {target_status}", {"field": "status"})

    succeeded = []
    failed = []
    for quotation_id in dict.fromkeys(quotation_ids):
        try:
            transition_quotation(org_id, user_id, quotation_id, target)
            succeeded.append(quotation_id)
        except DocumentError as e:
            failed.append({"id": quotation_id, **e.to_dict()})

    current_app.logger.info(
        "quotation.bulk_transition org=%s target=%s ok=%s failed=%s user=%s",
        org_id, target, len(succeeded), len(failed), user_id,
    )
    return {
        "status": target,
        "requested": len(succeeded) + len(failed),
        "succeeded": succeeded,
        "failed": failed,
    }


def delete_quotation(org_id: int, user_id: int | None, quotation_id: int) -> None:
    """Soft-delete a DRAFT quotation. Deleted quotations read as NotFound."""
    def _op():
        quotation = _load_for_write(org_id, quotation_id)
        if quotation.status != QUOTATION_DRAFT:
            raise InvalidStateError(
                f"Only DRAFT quotations can be deleted (quotation is {quotation.status})",
                quotation.status,
            )
        quotation.deleted_at = utcnow()
        db.session.commit()

        current_app.logger.info("quotation.deleted org=%s id=%s user=%s", org_id, quotation.id, user_id)

    return run_with_retry(_op)
