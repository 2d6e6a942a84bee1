from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from shopdesk.time_utils import to_utc_z

INVOICE_RESET_CYCLES = ("never", "monthly", "yearly")
INVOICE_DISPLAY_FORMATS = ("A4", "thermal")
PDF_STATUSES = ("queued", "generating", "ready")


class ImmutableSnapshotError(Exception):
    """Raised when code tries to modify an invoice's snapshot after creation."""

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details or {}


class OrganizationInvoiceSettings(db.Model):
    """
    Per-organization invoicing configuration.

    Read by numbering (prefix, branch prefix, reset cycle, padding) and by
    rendering (display format, logo). Created lazily with defaults the first
    time an organization touches invoicing.
    """
    __tablename__ = "organization_invoice_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, unique=True, index=True)

    enable_invoices = db.Column(db.Boolean, nullable=False, default=True)
    gst_enabled = db.Column(db.Boolean, nullable=False, default=False)

    invoice_prefix = db.Column(db.String(16), nullable=False, default="INV-")
    invoice_branch_prefix = db.Column(db.Boolean, nullable=False, default=False)
    invoice_reset_cycle = db.Column(db.String(16), nullable=False, default="monthly")  # never, monthly, yearly
    invoice_padding = db.Column(db.Integer, nullable=False, default=4)  # 3..10
    invoice_display_format = db.Column(db.String(16), nullable=False, default="A4")  # A4, thermal

    include_logo = db.Column(db.Boolean, nullable=False, default=True)
    logo_url = db.Column(db.String(512), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("invoice_settings", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "org_id": self.org_id,
            "enable_invoices": self.enable_invoices,
            "gst_enabled": self.gst_enabled,
            "invoice_prefix": self.invoice_prefix,
            "invoice_branch_prefix": self.invoice_branch_prefix,
            "invoice_reset_cycle": self.invoice_reset_cycle,
            "invoice_padding": self.invoice_padding,
            "invoice_display_format": self.invoice_display_format,
            "include_logo": self.include_logo,
            "logo_url": self.logo_url,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class BusinessSettings(db.Model):
    """Business identity printed on invoices (name, address, GST number, footer)."""
    __tablename__ = "business_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, unique=True, index=True)

    business_name = db.Column(db.String(255), nullable=True)
    business_address = db.Column(db.Text, nullable=True)
    contact_phone = db.Column(db.String(32), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    gst_number = db.Column(db.String(32), nullable=True)

    # GST rate applied per item when invoices have gst_enabled (basis points)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="INR")
    invoice_footer = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("business_settings", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "org_id": self.org_id,
            "business_name": self.business_name,
            "business_address": self.business_address,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "gst_number": self.gst_number,
            "tax_rate_bps": self.tax_rate_bps,
            "currency": self.currency,
            "invoice_footer": self.invoice_footer,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceCounter(db.Model):
    """
    Atomic per-scope invoice serials.

    WHY: Prevent two concurrent invoice creations in the same numbering scope
    from receiving the same serial. One row per (org, prefix, period); the
    period is "" when the reset cycle is "never".
    """
    __tablename__ = "invoice_counters"
    __table_args__ = (
        db.UniqueConstraint("org_id", "prefix", "period", name="uq_invoice_counters_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    prefix = db.Column(db.String(64), nullable=False)
    period = db.Column(db.String(16), nullable=False, default="")
    last_serial = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "prefix": self.prefix,
            "period": self.period or None,
            "last_serial": self.last_serial,
            "updated_at": to_utc_z(self.updated_at),
        }


class Invoice(db.Model):
    """
    Point-in-time invoice snapshot of a sale.

    SNAPSHOT: customer fields, items and totals are copied at creation and are
    never changed afterwards (enforced by a before_update hook). Corrections
    require a new invoice.

    PDF LIFECYCLE: pdf_status moves queued -> generating -> ready. A failed
    render goes back to queued with pdf_last_error set. pdf_url and
    pdf_storage_key are only set when ready.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
        db.UniqueConstraint("org_id", "sale_id", name="uq_invoices_org_sale"),
        db.Index("ix_invoices_org_created", "org_id", "created_at"),
        db.Index("ix_invoices_org_status", "org_id", "pdf_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    # Originating sale (lookup only)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)

    # Numbering
    invoice_number = db.Column(db.String(64), nullable=False)
    invoice_prefix = db.Column(db.String(64), nullable=False)
    invoice_serial = db.Column(db.Integer, nullable=False)
    invoice_period = db.Column(db.String(16), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Customer snapshot
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_gstin = db.Column(db.String(15), nullable=True)

    # Item snapshot: [{product_id, name, quantity, rate_cents, tax_cents, total_cents}]
    items = db.Column(db.JSON, nullable=False, default=list)

    # Amounts (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="INR")

    # PDF lifecycle
    pdf_status = db.Column(db.String(16), nullable=False, default="queued")
    pdf_url = db.Column(db.String(512), nullable=True)
    pdf_storage_key = db.Column(db.String(512), nullable=True)
    html_snapshot = db.Column(db.Text, nullable=True)
    pdf_render_attempts = db.Column(db.Integer, nullable=False, default=0)
    pdf_last_error = db.Column(db.Text, nullable=True)
    pdf_generation_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pdf_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store")
    sale = db.relationship("Sale", backref=db.backref("invoice", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    SNAPSHOT_FIELDS = (
        "org_id",
        "store_id",
        "sale_id",
        "invoice_number",
        "invoice_prefix",
        "invoice_serial",
        "invoice_period",
        "issued_at",
        "customer_name",
        "customer_phone",
        "customer_gstin",
        "items",
        "subtotal_cents",
        "tax_cents",
        "discount_cents",
        "total_cents",
        "tax_rate_bps",
        "currency",
        "created_by_user_id",
    )

    @property
    def status(self) -> str:
        return self.pdf_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "sale_id": self.sale_id,
            "invoice_number": self.invoice_number,
            "invoice_prefix": self.invoice_prefix,
            "invoice_serial": self.invoice_serial,
            "invoice_period": self.invoice_period,
            "issued_at": to_utc_z(self.issued_at),
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_gstin": self.customer_gstin,
            "items": list(self.items or []),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "currency": self.currency,
            "pdf_status": self.pdf_status,
            "pdf_url": self.pdf_url,
            "pdf_render_attempts": self.pdf_render_attempts,
            "pdf_last_error": self.pdf_last_error,
            "pdf_generated_at": to_utc_z(self.pdf_generated_at) if self.pdf_generated_at else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


@event.listens_for(Invoice, "before_update")
def _reject_snapshot_changes(mapper, connection, target):
    state = inspect(target)
    changed = [
        name for name in Invoice.SNAPSHOT_FIELDS
        if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ImmutableSnapshotError(
            "Invoice snapshot fields are immutable",
            details={"invoice_id": target.id, "fields": changed},
        )
