from __future__ import annotations

from ..extensions import db
from shopdesk.time_utils import to_utc_z

class Product(db.Model):
    """
    Product master data (read-only from the invoicing point of view).

    Sales copy price_cents into their lines at checkout and invoices copy the
    name at creation time, so later edits here never reach an existing
    invoice.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.Index("ix_products_org_active", "org_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    # Selling price in minor units (paise/cents)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
