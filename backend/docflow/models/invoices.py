from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from .line_items import LineItemMixin, DocumentTotalsMixin
from docflow.time_utils import to_utc_z


class Invoice(DocumentTotalsMixin, db.Model):
    """
    Billable document requesting payment.

    LIFECYCLE:
        DRAFT -> ISSUED -> PARTIALLY_PAID -> PAID
        ISSUED | PARTIALLY_PAID -> OVERDUE   (due_date passed, non-sticky)
        DRAFT | ISSUED | PARTIALLY_PAID | OVERDUE -> CANCELLED

    SOURCE:
    - source_quotation_id / source_work_order_id stamp where the invoice came
      from. Both are UNIQUE: this constraint is the at-most-once guard for
      conversion, not an application pre-check.
    - At most one source is set; direct invoices have neither.

    PAYMENTS:
    - paid_amount_cents is always SUM(payments.amount_cents), recomputed
      from the ledger after every insert/delete
    - paid_amount_cents may exceed total_cents (overpayment is flagged, not
      rejected)
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_invoices_org_number"),
        db.CheckConstraint(
            "source_quotation_id IS NULL OR source_work_order_id IS NULL",
            name="ck_invoices_single_source",
        ),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_invoices_paid_non_negative"),
        db.Index("ix_invoices_org_status_created", "org_id", "status", "created_at"),
        db.Index("ix_invoices_org_due_date", "org_id", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable document number (e.g., "INV-0042")
    number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Conversion traceability (unique: one invoice per source)
    source_quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=True, unique=True)
    source_work_order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=True, unique=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Lifecycle audit trail
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    overdue_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("invoices", lazy=True))
    source_quotation = db.relationship("Quotation", backref=db.backref("invoice", uselist=False, lazy=True))
    source_work_order = db.relationship("WorkOrder", backref=db.backref("invoice", uselist=False, lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.number!r} status={self.status}>"

    @property
    def balance_cents(self) -> int:
        return max(self.total_cents - self.paid_amount_cents, 0)

    @property
    def overpaid_cents(self) -> int:
        return max(self.paid_amount_cents - self.total_cents, 0)

    @property
    def source(self) -> dict:
        if self.source_quotation_id is not None:
            source_type, source_id = "quotation", self.source_quotation_id
        elif self.source_work_order_id is not None:
            source_type, source_id = "work_order", self.source_work_order_id
        else:
            source_type, source_id = None, None
        return {
            "type": source_type,
            "id": source_id,
            "quotation_id": self.source_quotation_id,
            "work_order_id": self.source_work_order_id,
        }

    def to_dict(self, include_lines: bool = True) -> dict:
        from ..services.invoice_service import effective_status

        data = {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "number": self.number,
            "status": effective_status(self),
            "stored_status": self.status,
            "paid_amount_cents": self.paid_amount_cents,
            "paid_amount": format_cents(self.paid_amount_cents),
            "balance_cents": self.balance_cents,
            "balance": format_cents(self.balance_cents),
            "overpaid_cents": self.overpaid_cents,
            "due_date": to_utc_z(self.due_date),
            "notes": self.notes,
            "source": self.source,
            "created_by_user_id": self.created_by_user_id,
            "issued_at": to_utc_z(self.issued_at),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        data.update(self.totals_dict())
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(LineItemMixin, db.Model):
    """
    Individual line items on an invoice.

    Lines copied from a quotation or work order are independent rows
    (snapshots), never references to the source lines.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["invoice_id"] = self.invoice_id
        return data


class Payment(db.Model):
    """
    Payment recorded against an invoice.

    WHY: Invoices are settled by one or more partial payments (deposits,
    instalments, split tenders).

    DESIGN:
    - Immutable once created; corrections are deletions that re-trigger
      invoice recomputation
    - idempotency_key (optional, unique per org) lets clients retry a
      payment submission safely
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_payments_org_idempotency_key"),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_invoice_paid_at", "invoice_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)

    # CASH, CARD, TRANSFER, CHECK, OTHER
    method = db.Column(db.String(16), nullable=False, index=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Reference info (card auth code, transfer id, check number)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("payments", lazy=True, order_by="Payment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "method": self.method,
            "paid_at": to_utc_z(self.paid_at),
            "reference": self.reference,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
