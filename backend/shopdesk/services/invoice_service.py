"""
Invoice Service - invoice snapshots of sales and their PDF lifecycle

CREATION: an invoice copies the sale's lines, the customer details and the
computed totals at creation time. Numbering and the insert are one unit of
work; on SQLite it runs under BEGIN IMMEDIATE, elsewhere the counter UPDATE
serializes allocations. Conflicts roll back and retry the whole unit, so a
number is never committed without its invoice (gaps are possible, duplicates
are not).

ONE INVOICE PER SALE: looked up before creating and backed by the
(org_id, sale_id) unique constraint, so a concurrent duplicate request gets
the invoice the first request created.

PDF LIFECYCLE: queued -> generating -> ready.
- A request claims the invoice (generating) in a short transaction, renders
  outside of it, then records the result.
- A fresh claim held by another request is left alone; a claim older than
  INVOICE_PDF_STALE_AFTER_SECONDS is taken over.
- Failure returns the invoice to queued with pdf_last_error set and raises
  InvoiceRenderError. There is no automatic retry.
- Forcing a re-render of a ready invoice overwrites the same storage key, so
  pdf_url never changes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Invoice, Store
from shopdesk.time_utils import utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .invoice_numbering import InvoiceNumberingConflict, allocate_invoice_number
from .invoice_pdf_service import render_invoice_html, render_invoice_pdf
from .invoice_settings_service import build_invoice_config, get_or_create_business_settings
from .sales_service import SaleNotFoundError, get_sale
from .storage_service import get_storage, invoice_pdf_key


class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceNotFoundError(InvoiceError):
    """Invoice does not exist in the requesting organization."""


class InvoicingDisabledError(InvoiceError):
    """Invoicing is switched off in the organization's settings."""


class InvoiceRenderError(InvoiceError):
    """HTML/PDF generation failed; the invoice is back in queued and may be retried."""


__all__ = [
    "InvoiceError",
    "InvoiceNotFoundError",
    "InvoicingDisabledError",
    "InvoiceRenderError",
    "InvoiceNumberingConflict",
    "SaleNotFoundError",
    "create_invoice_from_sale",
    "get_invoice",
    "list_invoices",
    "generate_invoice_pdf",
    "load_invoice_pdf",
    "retry_queued_invoices",
    "invoice_status_payload",
    "compute_item_tax_cents",
]


def compute_item_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """subtotal * rate, rounded half up to the nearest minor unit."""
    return (subtotal_cents * tax_rate_bps + 5_000) // 10_000


def _snapshot_items(sale, config) -> list[dict]:
    tax_rate = config.tax_rate_bps if config.gst_enabled else 0
    items = []
    for line in sorted(sale.lines, key=lambda l: l.id):
        subtotal = line.subtotal_cents
        tax = compute_item_tax_cents(subtotal, tax_rate) if tax_rate else 0
        items.append({
            "product_id": line.product_id,
            "name": line.product.name if line.product else f"Product {line.product_id}",
            "quantity": line.quantity,
            "rate_cents": line.selling_price_cents,
            "subtotal_cents": subtotal,
            "tax_cents": tax,
            "total_cents": subtotal + tax,
        })
    return items


def _existing_invoice_for_sale(org_id: int, sale_id: int) -> Invoice | None:
    return db.session.query(Invoice).filter_by(org_id=org_id, sale_id=sale_id).first()


def create_invoice_from_sale(
    org_id: int,
    sale_id: int,
    user_id: int | None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    customer_gstin: str | None = None,
    force_sync_pdf: bool = False,
    issued_at: datetime | None = None,
) -> tuple[Invoice, bool]:
    """
    Create the invoice for a sale, or return the one that already exists.

    Returns (invoice, created).

    Raises:
        SaleNotFoundError: sale missing or in another organization
        InvoicingDisabledError: enable_invoices is off
        InvoiceNumberingConflict: numbering retries exhausted
        InvoiceRenderError: force_sync_pdf and the render failed (the
            invoice itself was created and stays queued)
    """
    sale = get_sale(sale_id, org_id)

    config = build_invoice_config(org_id)
    if not config.enabled:
        raise InvoicingDisabledError(
            "Invoicing is disabled for this organization",
            details={"org_id": org_id},
        )

    existing = _existing_invoice_for_sale(org_id, sale.id)
    if existing:
        if force_sync_pdf and existing.pdf_status != "ready":
            existing = generate_invoice_pdf(existing.id, org_id)
        return existing, False

    business = get_or_create_business_settings(org_id)
    store = db.session.get(Store, sale.store_id)
    branch_code = store.branch_code if store else None
    issued_at = issued_at or utcnow()

    items = _snapshot_items(sale, config)
    subtotal = sum(item["subtotal_cents"] for item in items)
    tax = sum(item["tax_cents"] for item in items)
    discount = 0

    def _op():
        begin_immediate()

        # Re-check under the write lock; a concurrent request may have won
        already = _existing_invoice_for_sale(org_id, sale.id)
        if already:
            db.session.commit()
            return already, False

        allocated = allocate_invoice_number(org_id, config, issued_at, branch_code=branch_code)
        invoice = Invoice(
            org_id=org_id,
            store_id=sale.store_id,
            sale_id=sale.id,
            invoice_number=allocated.invoice_number,
            invoice_prefix=allocated.prefix,
            invoice_serial=allocated.serial,
            invoice_period=allocated.period,
            issued_at=issued_at,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_gstin=customer_gstin,
            items=items,
            subtotal_cents=subtotal,
            tax_cents=tax,
            discount_cents=discount,
            total_cents=subtotal + tax - discount,
            tax_rate_bps=config.tax_rate_bps if config.gst_enabled else 0,
            currency=config.currency,
            pdf_status="queued",
            created_by_user_id=user_id,
        )
        invoice.html_snapshot = render_invoice_html(invoice, config, business, store=store)
        db.session.add(invoice)

        try:
            db.session.commit()
        except IntegrityError as exc:
            # Duplicate number or a concurrent invoice for the same sale
            raise InvoiceNumberingConflict(
                "Invoice insert conflicted with a concurrent request",
                details={"org_id": org_id, "sale_id": sale.id},
            ) from exc
        return invoice, True

    attempts = current_app.config.get("INVOICE_NUMBERING_MAX_ATTEMPTS", 5)
    try:
        invoice, created = run_with_retry(_op, attempts=attempts, retry_on=(InvoiceNumberingConflict,))
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.warning("Invoice numbering gave up for org %s sale %s: %s", org_id, sale.id, exc)
        raise InvoiceNumberingConflict(
            "Could not allocate an invoice number, please retry",
            details={"org_id": org_id, "sale_id": sale.id, "attempts": attempts},
        ) from exc
    except InvoiceNumberingConflict as exc:
        current_app.logger.warning("Invoice numbering gave up for org %s sale %s: %s", org_id, sale.id, exc)
        exc.details.setdefault("attempts", attempts)
        raise

    if created:
        current_app.logger.info(
            "Invoice %s created for sale %s (org %s, total %s)",
            invoice.invoice_number,
            sale.id,
            org_id,
            invoice.total_cents,
        )
    if force_sync_pdf and invoice.pdf_status != "ready":
        invoice = generate_invoice_pdf(invoice.id, org_id)

    return invoice, created


def get_invoice(invoice_id: int, org_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id, org_id=org_id).first()
    if not invoice:
        raise InvoiceNotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    org_id: int,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    customer: str | None = None,
    store_id: int | None = None,
    page: int = 1,
    size: int = 20,
) -> tuple[list[Invoice], int]:
    """
    Page through an organization's invoices, newest first.

    from_date is inclusive, to_date exclusive. customer matches name or phone
    case-insensitively.
    """
    query = db.session.query(Invoice).filter(Invoice.org_id == org_id)
    if from_date is not None:
        query = query.filter(Invoice.issued_at >= from_date)
    if to_date is not None:
        query = query.filter(Invoice.issued_at < to_date)
    if customer:
        pattern = f"%{customer}%"
        query = query.filter(db.or_(
            Invoice.customer_name.ilike(pattern),
            Invoice.customer_phone.ilike(pattern),
        ))
    if store_id is not None:
        query = query.filter(Invoice.store_id == store_id)

    total = query.count()
    invoices = (
        query.order_by(Invoice.issued_at.desc(), Invoice.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return invoices, total


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _claim_for_render(invoice_id: int, org_id: int, force: bool) -> tuple[Invoice, bool]:
    """Returns (invoice, claimed). claimed=False means nothing to render."""
    stale_after = timedelta(seconds=current_app.config.get("INVOICE_PDF_STALE_AFTER_SECONDS", 300))

    def _op():
        begin_immediate()
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, org_id=org_id)
        ).first()
        if not invoice:
            db.session.rollback()
            raise InvoiceNotFoundError("Invoice not found", details={"invoice_id": invoice_id})

        now = utcnow()
        if invoice.pdf_status == "ready" and not force:
            db.session.commit()
            return invoice, False

        if invoice.pdf_status == "generating":
            started = _naive_utc(invoice.pdf_generation_started_at)
            if started and now - started < stale_after:
                db.session.commit()
                return invoice, False
            current_app.logger.warning(
                "Reclaiming stale PDF generation for invoice %s (started %s)",
                invoice.id,
                started,
            )

        if invoice.pdf_status != "ready":
            invoice.pdf_status = "generating"
        invoice.pdf_generation_started_at = now
        invoice.pdf_render_attempts = (invoice.pdf_render_attempts or 0) + 1
        db.session.commit()
        return invoice, True

    return run_with_retry(_op)


def _record_render_result(invoice_id: int, **values) -> Invoice:
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        for key, value in values.items():
            setattr(invoice, key, value)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def generate_invoice_pdf(invoice_id: int, org_id: int, force: bool = False) -> Invoice:
    """
    Render and store the invoice PDF.

    No-op for a ready invoice unless force is set, and for an invoice another
    request is currently rendering. Never touches the invoice number.
    """
    config = build_invoice_config(org_id)
    business = get_or_create_business_settings(org_id)

    invoice, claimed = _claim_for_render(invoice_id, org_id, force)
    if not claimed:
        return invoice

    was_ready = invoice.pdf_status == "ready"
    key = invoice_pdf_key(org_id, invoice.id)
    try:
        html = render_invoice_html(invoice, config, business, store=invoice.store)
        pdf_bytes = render_invoice_pdf(html, config.display_format)
        url = get_storage().put(key, pdf_bytes)
    except Exception as exc:
        current_app.logger.exception("Failed to render PDF for invoice %s", invoice.id)
        failure = {
            "pdf_last_error": f"{type(exc).__name__}: {exc}"[:1000],
            "pdf_generation_started_at": None,
        }
        if not was_ready:
            failure["pdf_status"] = "queued"
        invoice = _record_render_result(invoice.id, **failure)
        raise InvoiceRenderError(
            "Failed to generate invoice PDF",
            details={
                "invoice_id": invoice.id,
                "status": invoice.pdf_status,
                "retryable": True,
            },
        ) from exc

    invoice = _record_render_result(
        invoice.id,
        pdf_status="ready",
        pdf_url=url,
        pdf_storage_key=key,
        html_snapshot=html,
        pdf_generated_at=utcnow(),
        pdf_generation_started_at=None,
        pdf_last_error=None,
    )
    current_app.logger.info(
        "PDF %s for invoice %s (%d bytes)",
        "re-rendered" if was_ready else "rendered",
        invoice.invoice_number,
        len(pdf_bytes),
    )
    return invoice


def load_invoice_pdf(invoice_id: int, org_id: int) -> tuple[Invoice, bytes | None]:
    """
    Return the stored PDF, rendering it first if it was never generated.

    bytes is None while another request is still rendering.
    """
    invoice = get_invoice(invoice_id, org_id)
    if invoice.pdf_status != "ready":
        invoice = generate_invoice_pdf(invoice_id, org_id)
        if invoice.pdf_status != "ready":
            return invoice, None
    return invoice, get_storage().get(invoice.pdf_storage_key)


def retry_queued_invoices(org_id: int) -> tuple[list[Invoice], list[dict]]:
    """Render every queued invoice of an organization. Returns (rendered, failures)."""
    queued_ids = [
        row.id
        for row in db.session.query(Invoice.id)
        .filter(Invoice.org_id == org_id, Invoice.pdf_status == "queued")
        .order_by(Invoice.id)
    ]
    rendered, failures = [], []
    for invoice_id in queued_ids:
        try:
            rendered.append(generate_invoice_pdf(invoice_id, org_id))
        except InvoiceRenderError as exc:
            failures.append({"invoice_id": invoice_id, "error": str(exc), **exc.details})
    return rendered, failures


def invoice_status_payload(invoice: Invoice) -> dict:
    return {
        "invoice": invoice.to_dict(),
        "status": invoice.pdf_status,
        "pdf_url": invoice.pdf_url if invoice.pdf_status == "ready" else None,
    }
