"""PDF lifecycle: queued -> generating -> ready, failures, claims and storage."""

from datetime import timedelta

import pytest

from shopdesk.extensions import db
from shopdesk.models import Invoice
from shopdesk.services import invoice_service, invoice_settings_service
from shopdesk.services.invoice_pdf_service import format_money, format_percent, render_invoice_pdf
from shopdesk.services.invoice_service import InvoiceNotFoundError, InvoiceRenderError
from shopdesk.services.storage_service import LocalObjectStorage, get_storage, invoice_pdf_key
from shopdesk.time_utils import utcnow


@pytest.fixture
def invoice_a(db_session, org_a, sale_a, user_a):
    invoice, _ = invoice_service.create_invoice_from_sale(
        org_a.id, sale_a.id, user_a.id, customer_name="Ravi Kumar"
    )
    return invoice


def _boom(*args, **kwargs):
    raise RuntimeError("renderer exploded")


def test_generate_moves_queued_to_ready(db_session, org_a, invoice_a):
    number, serial = invoice_a.invoice_number, invoice_a.invoice_serial

    invoice = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)

    assert invoice.pdf_status == "ready"
    assert invoice.pdf_url == f"/uploads/invoices/{org_a.id}/{invoice.id}.pdf"
    assert invoice.pdf_storage_key == invoice_pdf_key(org_a.id, invoice.id)
    assert invoice.pdf_generated_at is not None
    assert invoice.pdf_render_attempts == 1
    assert invoice.invoice_number == number
    assert invoice.invoice_serial == serial

    data = get_storage().get(invoice.pdf_storage_key)
    assert data.startswith(b"%PDF")


def test_ready_invoice_is_not_rendered_again(db_session, org_a, invoice_a, monkeypatch):
    first = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)
    url = first.pdf_url

    monkeypatch.setattr(invoice_service, "render_invoice_pdf", _boom)
    again = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)

    assert again.pdf_status == "ready"
    assert again.pdf_url == url
    assert again.pdf_render_attempts == 1


def test_forced_rerender_keeps_number_and_url(db_session, org_a, invoice_a):
    first = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)
    url, number, serial = first.pdf_url, first.invoice_number, first.invoice_serial

    forced = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id, force=True)

    assert forced.pdf_status == "ready"
    assert forced.pdf_url == url
    assert forced.pdf_storage_key == first.pdf_storage_key
    assert forced.invoice_number == number
    assert forced.invoice_serial == serial
    assert forced.pdf_render_attempts == 2
    assert db.session.query(Invoice).count() == 1


def test_render_failure_returns_invoice_to_queued(db_session, org_a, invoice_a, monkeypatch):
    monkeypatch.setattr(invoice_service, "render_invoice_pdf", _boom)

    with pytest.raises(InvoiceRenderError) as excinfo:
        invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)

    assert excinfo.value.details["retryable"] is True
    db.session.expire_all()
    invoice = db.session.get(Invoice, invoice_a.id)
    assert invoice.pdf_status == "queued"
    assert invoice.pdf_url is None
    assert invoice.pdf_storage_key is None
    assert "renderer exploded" in invoice.pdf_last_error
    assert invoice.pdf_render_attempts == 1

    # Manual retry succeeds and clears the error
    monkeypatch.undo()
    invoice = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)
    assert invoice.pdf_status == "ready"
    assert invoice.pdf_last_error is None
    assert invoice.pdf_render_attempts == 2


def test_failed_forced_rerender_keeps_ready_pdf(db_session, org_a, invoice_a, monkeypatch):
    ready = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)
    url = ready.pdf_url

    monkeypatch.setattr(invoice_service, "render_invoice_pdf", _boom)
    with pytest.raises(InvoiceRenderError):
        invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id, force=True)

    db.session.expire_all()
    invoice = db.session.get(Invoice, invoice_a.id)
    assert invoice.pdf_status == "ready"
    assert invoice.pdf_url == url


def test_fresh_generating_claim_is_left_alone(db_session, org_a, invoice_a, monkeypatch):
    invoice_a.pdf_status = "generating"
    invoice_a.pdf_generation_started_at = utcnow()
    db.session.commit()

    monkeypatch.setattr(invoice_service, "render_invoice_pdf", _boom)
    invoice = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)

    assert invoice.pdf_status == "generating"
    assert invoice.pdf_url is None


def test_stale_generating_claim_is_reclaimed(db_session, org_a, invoice_a):
    invoice_a.pdf_status = "generating"
    invoice_a.pdf_generation_started_at = utcnow() - timedelta(hours=1)
    db.session.commit()

    invoice = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)

    assert invoice.pdf_status == "ready"
    assert invoice.pdf_url is not None


def test_generate_for_other_org_is_not_found(db_session, org_b, invoice_a):
    with pytest.raises(InvoiceNotFoundError):
        invoice_service.generate_invoice_pdf(invoice_a.id, org_b.id)


def test_force_sync_pdf_on_create(db_session, org_a, sale_a, user_a):
    invoice, created = invoice_service.create_invoice_from_sale(
        org_a.id, sale_a.id, user_a.id, force_sync_pdf=True
    )
    assert created is True
    assert invoice.pdf_status == "ready"
    assert invoice_service.invoice_status_payload(invoice)["pdf_url"] == invoice.pdf_url


def test_force_sync_pdf_failure_keeps_created_invoice(db_session, org_a, sale_a, user_a, monkeypatch):
    monkeypatch.setattr(invoice_service, "render_invoice_pdf", _boom)

    with pytest.raises(InvoiceRenderError):
        invoice_service.create_invoice_from_sale(org_a.id, sale_a.id, user_a.id, force_sync_pdf=True)

    invoice = db.session.query(Invoice).filter_by(sale_id=sale_a.id).one()
    assert invoice.pdf_status == "queued"


def test_load_invoice_pdf_renders_on_first_request(db_session, org_a, invoice_a):
    invoice, data = invoice_service.load_invoice_pdf(invoice_a.id, org_a.id)
    assert invoice.pdf_status == "ready"
    assert data.startswith(b"%PDF")


def test_retry_queued_invoices(db_session, org_a, invoice_a):
    rendered, failures = invoice_service.retry_queued_invoices(org_a.id)
    assert [i.id for i in rendered] == [invoice_a.id]
    assert failures == []


def test_thermal_format_renders(db_session, org_a, invoice_a):
    invoice_settings_service.update_invoice_settings(org_a.id, {"invoice_display_format": "thermal"})
    invoice = invoice_service.generate_invoice_pdf(invoice_a.id, org_a.id)
    assert get_storage().get(invoice.pdf_storage_key).startswith(b"%PDF")


def test_gst_invoice_html_shows_tax(db_session, org_a, sale_a, user_a):
    invoice_settings_service.update_invoice_settings(org_a.id, {"gst_enabled": True})
    invoice_settings_service.update_business_settings(
        org_a.id, {"tax_rate_bps": 1800, "gst_number": "29abcde1234f1z5", "invoice_footer": "Visit again"}
    )
    invoice, _ = invoice_service.create_invoice_from_sale(org_a.id, sale_a.id, user_a.id)

    html = invoice.html_snapshot
    assert "Tax Invoice" in html
    assert "29ABCDE1234F1Z5" in html
    assert "GST (18%)" in html
    assert "295.00" in html
    assert "Visit again" in html


def test_non_latin1_text_does_not_break_pdf():
    html = "<h1>Café ₹ नमस्ते</h1><p>Total: 250.00</p>"
    assert render_invoice_pdf(html, "A4").startswith(b"%PDF")


def test_format_helpers():
    assert format_money(25_000) == "250.00"
    assert format_money(123_456_789) == "1,234,567.89"
    assert format_money(None) == "0.00"
    assert format_percent(1800) == "18%"
    assert format_percent(1250) == "12.5%"


def test_local_storage_rejects_escaping_keys(tmp_path):
    from shopdesk.services.storage_service import StorageError

    storage = LocalObjectStorage(str(tmp_path))
    with pytest.raises(StorageError):
        storage.put("../outside.pdf", b"x")

    url = storage.put("invoices/1/2.pdf", b"first")
    assert url == "/uploads/invoices/1/2.pdf"
    assert storage.put("invoices/1/2.pdf", b"second") == url
    assert storage.get("invoices/1/2.pdf") == b"second"
