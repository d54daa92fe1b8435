from __future__ import annotations

from ..extensions import db
from .line_items import LineItemMixin
from docflow.time_utils import to_utc_z


class WorkOrder(db.Model):
    """
    Record of work performed for a customer.

    The fulfillment workflow that drives these records lives outside this
    service; only what invoicing needs is kept here.

    LIFECYCLE:
        PENDING -> IN_PROGRESS -> COMPLETED
        PENDING | IN_PROGRESS -> CANCELLED

    invoiced_at is stamped by the conversion pipeline (at most once).
    """
    __tablename__ = "work_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "number", name="uq_work_orders_org_number"),
        db.Index("ix_work_orders_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    description = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoiced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization", backref=db.backref("work_orders", lazy=True))
    lines = db.relationship(
        "WorkOrderLine",
        back_populates="work_order",
        order_by="WorkOrderLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<WorkOrder id={self.id} number={self.number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "number": self.number,
            "status": self.status,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "invoiced_at": to_utc_z(self.invoiced_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class WorkOrderLine(LineItemMixin, db.Model):
    """Parts and labour recorded on a work order."""
    __tablename__ = "work_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    work_order_id = db.Column(db.Integer, db.ForeignKey("work_orders.id"), nullable=False, index=True)

    work_order = db.relationship("WorkOrder", back_populates="lines")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["work_order_id"] = self.work_order_id
        return data
