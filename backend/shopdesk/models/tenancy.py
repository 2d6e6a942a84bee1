# Overview: Tenant models; organizations own outlets and every business record.

from __future__ import annotations

from ..extensions import db
from shopdesk.time_utils import to_utc_z


class Organization(db.Model):
    """
    A retail business using the system (one tenant).

    Sales, invoices, counters and settings all carry org_id, and every
    lookup filters on it, so one tenant's records are invisible to another.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Store(db.Model):
    """
    An outlet of an organization; sales are rung up at a store.

    code is the branch code used in invoice numbers when branch prefixing is
    on (falls back to the numeric id). phone and gstin print on invoices for
    outlets registered separately from the head office.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_stores_org_name"),
        db.UniqueConstraint("org_id", "code", name="uq_stores_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(16), nullable=True)
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    gstin = db.Column(db.String(15), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("stores", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def branch_code(self) -> str:
        return self.code or str(self.id)

    def __repr__(self) -> str:
        return f"<Store id={self.id} code={self.code!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "branch_code": self.branch_code,
            "address": self.address,
            "phone": self.phone,
            "gstin": self.gstin,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
