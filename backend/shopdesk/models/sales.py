from __future__ import annotations

from ..extensions import db
from shopdesk.time_utils import to_utc_z

PAYMENT_TYPES = ("CASH", "UPI")


class Sale(db.Model):
    """
    Completed point-of-sale transaction.

    WHY: Sales are the source documents for invoices. They are written once at
    checkout and never edited afterwards, except for payment_type/is_paid.
    Invoices copy what they need, so nothing here is a live dependency.
    """
    __tablename__ = "sales"
    __table_args__ = (
        # Composite index for outlet-scoped queries by date
        db.Index("ix_sales_org_store_sold_at", "org_id", "store_id", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Sum of line subtotals (cents)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    sold_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Payment tracking: the only mutable part of a sale
    payment_type = db.Column(db.String(16), nullable=False, default="CASH")  # CASH, UPI
    is_paid = db.Column(db.Boolean, nullable=False, default=False)

    # Dining table reference (tables are managed elsewhere)
    table_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    sold_by = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "sold_at": to_utc_z(self.sold_at),
            "total_amount_cents": self.total_amount_cents,
            "sold_by_user_id": self.sold_by_user_id,
            "payment_type": self.payment_type,
            "is_paid": self.is_paid,
            "table_id": self.table_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in sorted(self.lines, key=lambda l: l.id)]
        return data

class SaleLine(db.Model):
    """Individual line items on a sale."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    selling_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "selling_price_cents": self.selling_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }
