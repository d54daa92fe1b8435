from __future__ import annotations

from ..extensions import db
from .line_items import LineItemMixin, DocumentTotalsMixin
from docflow.time_utils import to_utc_z


class Quotation(DocumentTotalsMixin, db.Model):
    """
    Priced proposal sent to a customer before work is authorized.

    LIFECYCLE:
        DRAFT -> SENT -> APPROVED -> CONVERTED
                      -> REJECTED
        DRAFT | SENT | APPROVED -> EXPIRED   (sweeper, valid_until passed)
        EXPIRED -> DRAFT                     (reopen with a new valid_until)

    DESIGN:
    - Totals are derived from lines (see totals_service)
    - Lines are editable only in DRAFT and SENT
    - CONVERTED is set only by the conversion pipeline
    - Only DRAFT quotations may be (soft) deleted
    """
    __tablename__ = "quotations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_quotations_org_number"),
        db.Index("ix_quotations_org_status_created", "org_id", "status", "created_at"),
        db.Index("ix_quotations_org_valid_until", "org_id", "valid_until"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable document number (e.g., "Q-0042")
    number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Lifecycle audit trail
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("quotations", lazy=True))
    lines = db.relationship(
        "QuotationLine",
        back_populates="quotation",
        order_by="QuotationLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Quotation id={self.id} number={self.number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "number": self.number,
            "status": self.status,
            "valid_until": to_utc_z(self.valid_until),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "sent_at": to_utc_z(self.sent_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "expired_at": to_utc_z(self.expired_at),
            "converted_at": to_utc_z(self.converted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        data.update(self.totals_dict())
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class QuotationLine(LineItemMixin, db.Model):
    """Individual line items on a quotation."""
    __tablename__ = "quotation_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)

    quotation = db.relationship("Quotation", back_populates="lines")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["quotation_id"] = self.quotation_id
        return data
