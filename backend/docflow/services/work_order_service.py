# Overview: Minimal work order records that the conversion pipeline invoices.

"""
Work Order Service

The fulfillment workflow (scheduling, technicians, parts picking) lives in
another system. This module keeps only what invoicing needs: customer,
lines and a status that eventually reaches COMPLETED.

LIFECYCLE:
    PENDING -> IN_PROGRESS -> COMPLETED
    PENDING -> COMPLETED
    PENDING | IN_PROGRESS -> CANCELLED
"""

from __future__ import annotations

from flask import current_app

from ..errors import InvalidStateError, ValidationError
from ..extensions import db
from ..models import WorkOrder, WorkOrderLine
from ..validation import WORK_ORDER_CREATE_POLICY, validate_payload
from docflow.time_utils import utcnow
from .concurrency import begin_write, run_with_retry
from .document_service import DOC_TYPE_WORK_ORDER, next_document_number
from .line_item_service import add_line, build_line
from .tenant_service import get_scoped, scoped_query


WORK_ORDER_PENDING = "PENDING"
WORK_ORDER_IN_PROGRESS = "IN_PROGRESS"
WORK_ORDER_COMPLETED = "COMPLETED"
WORK_ORDER_CANCELLED = "CANCELLED"

WORK_ORDER_STATUSES = (
    WORK_ORDER_PENDING,
    WORK_ORDER_IN_PROGRESS,
    WORK_ORDER_COMPLETED,
    WORK_ORDER_CANCELLED,
)

ALLOWED_TRANSITIONS = {
    WORK_ORDER_PENDING: {WORK_ORDER_IN_PROGRESS, WORK_ORDER_COMPLETED, WORK_ORDER_CANCELLED},
    WORK_ORDER_IN_PROGRESS: {WORK_ORDER_COMPLETED, WORK_ORDER_CANCELLED},
}

OPEN_STATUSES = {WORK_ORDER_PENDING, WORK_ORDER_IN_PROGRESS}


def create_work_order(org_id: int, user_id: int | None, payload: dict) -> WorkOrder:
    payload = dict(payload or {})
    items = payload.pop("items", None) or []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    patch = validate_payload(model=WorkOrder, payload=payload, policy=WORK_ORDER_CREATE_POLICY, partial=False)

    def _op():
        begin_write()
        work_order = WorkOrder(
            org_id=org_id,
            customer_id=patch["customer_id"],
            number=next_document_number(org_id=org_id, document_type=DOC_TYPE_WORK_ORDER),
            status=WORK_ORDER_PENDING,
            description=patch.get("description"),
            created_by_user_id=user_id,
        )
        for item in items:
            work_order.lines.append(build_line(WorkOrderLine, item))

        db.session.add(work_order)
        db.session.commit()

        current_app.logger.info(
            "work_order.created org=%s id=%s number=%s", org_id, work_order.id, work_order.number
        )
        return work_order

    return run_with_retry(_op)


def get_work_order(org_id: int, work_order_id: int) -> WorkOrder:
    return get_scoped(WorkOrder, work_order_id, org_id, label="Work order")


def list_work_orders(org_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0):
    query = scoped_query(WorkOrder, org_id)
    if status:
        status = status.upper()
        if status not in WORK_ORDER_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}")
        query = query.filter(WorkOrder.status == status)

    total = query.count()
    rows = (
        query.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def add_work_order_item(org_id: int, user_id: int | None, work_order_id: int, payload: dict) -> WorkOrder:
    def _op():
        begin_write()
        work_order = get_scoped(WorkOrder, work_order_id, org_id, for_update=True, label="Work order")
        if work_order.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot add items to a work order in status {work_order.status}",
                work_order.status,
            )
        add_line(work_order, WorkOrderLine, payload, recompute=False)
        db.session.commit()
        return work_order

    return run_with_retry(_op)


def set_work_order_status(org_id: int, user_id: int | None, work_order_id: int, target_status: str) -> WorkOrder:
    target = (target_status or "").upper()
    if target not in WORK_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {target_status}", {"field": "status"})

    def _op():
        begin_write()
        work_order = get_scoped(WorkOrder, work_order_id, org_id, for_update=True, label="Work order")
        current = work_order.status
        if target not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStateError(f"Cannot move work order from {current} to {target}", current)

        now = utcnow()
        if target == WORK_ORDER_IN_PROGRESS:
            work_order.started_at = now
        elif target == WORK_ORDER_COMPLETED:
            work_order.completed_at = now
        elif target == WORK_ORDER_CANCELLED:
            work_order.cancelled_at = now

        work_order.status = target
        db.session.commit()

        current_app.logger.info(
            "work_order.transition org=%s id=%s %s->%s user=%s",
            org_id, work_order.id, current, target, user_id,
        )
        return work_order

    return run_with_retry(_op)
