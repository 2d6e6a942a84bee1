# Overview: Flask API routes for invoices and invoice settings; parses input and returns JSON responses.

# backend/shopdesk/routes/invoices.py
"""
Invoice API routes

Status codes:
- 400 invalid input
- 403 invoicing disabled for the organization (or missing permission)
- 404 sale/invoice/organization not found, including other tenants' records
- 500 PDF render failure (retryable: the invoice stays queued)
- 503 invoice numbering retries exhausted
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..services import invoice_service, invoice_settings_service
from ..services.invoice_service import (
    InvoiceNotFoundError,
    InvoiceNumberingConflict,
    InvoiceRenderError,
    InvoicingDisabledError,
    SaleNotFoundError,
)
from ..services.storage_service import StorageError
from ..services.tenant_service import TenantAccessError, require_org_access
from ..validation import ValidationError, parse_create_invoice_payload, parse_pagination
from ..decorators import require_auth, require_permission
from shopdesk.time_utils import parse_iso_datetime, parse_range_end


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/organizations/<int:org_id>")


def _error(e, status: int, **extra):
    body = {"error": str(e)}
    details = getattr(e, "details", None)
    if details:
        body["details"] = details
    body.update(extra)
    return jsonify(body), status


def _parse_date_range(args):
    """from is inclusive; a date-only "to" covers that whole day."""
    try:
        from_date = parse_iso_datetime(args.get("from"))
        to_date = parse_range_end(args.get("to"))
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 dates")
    if from_date and to_date and from_date >= to_date:
        raise ValidationError("from must be before to")
    return from_date, to_date


@invoices_bp.post("/sales/<int:sale_id>/invoice")
@require_auth
@require_permission("CREATE_INVOICE")
def create_invoice_route(org_id: int, sale_id: int):
    """
    Create (or return the existing) invoice for a sale.

    Body: {customer_name?, customer_phone?, customer_gstin?, force_sync_pdf?}
    Returns 201 when created, 200 when the sale already had an invoice.
    """
    try:
        require_org_access(org_id)
        payload = parse_create_invoice_payload(request.get_json(silent=True))

        invoice, created = invoice_service.create_invoice_from_sale(
            org_id=org_id,
            sale_id=sale_id,
            user_id=g.current_user.id,
            **payload,
        )
        return jsonify(invoice_service.invoice_status_payload(invoice)), 201 if created else 200

    except ValidationError as e:
        return _error(e, 400)
    except (TenantAccessError, SaleNotFoundError) as e:
        return _error(e, 404)
    except InvoicingDisabledError as e:
        return _error(e, 403)
    except InvoiceNumberingConflict as e:
        return _error(e, 503, retryable=True)
    except InvoiceRenderError as e:
        return _error(e, 500, retryable=True)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/invoices")
@require_auth
@require_permission("VIEW_INVOICES")
def list_invoices_route(org_id: int):
    """Query: from, to, customer, store_id, page, size."""
    try:
        require_org_access(org_id)
        page, size = parse_pagination(request.args)
        from_date, to_date = _parse_date_range(request.args)

        invoices, total = invoice_service.list_invoices(
            org_id,
            from_date=from_date,
            to_date=to_date,
            customer=(request.args.get("customer") or "").strip() or None,
            store_id=request.args.get("store_id", type=int),
            page=page,
            size=size,
        )
        return jsonify({
            "invoices": [invoice_service.invoice_status_payload(i) for i in invoices],
            "total": total,
            "page": page,
            "size": size,
        }), 200

    except ValidationError as e:
        return _error(e, 400)
    except TenantAccessError as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/invoices/<int:invoice_id>")
@require_auth
@require_permission("VIEW_INVOICES")
def get_invoice_route(org_id: int, invoice_id: int):
    """Poll target: {invoice, status, pdf_url}."""
    try:
        require_org_access(org_id)
        invoice = invoice_service.get_invoice(invoice_id, org_id)
        return jsonify(invoice_service.invoice_status_payload(invoice)), 200

    except (TenantAccessError, InvoiceNotFoundError) as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/invoices/<int:invoice_id>/html")
@require_auth
@require_permission("VIEW_INVOICES")
def invoice_html_route(org_id: int, invoice_id: int):
    try:
        require_org_access(org_id)
        invoice = invoice_service.get_invoice(invoice_id, org_id)
        return Response(invoice.html_snapshot or "", mimetype="text/html")

    except (TenantAccessError, InvoiceNotFoundError) as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get invoice preview")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/invoices/<int:invoice_id>/pdf")
@require_auth
@require_permission("GENERATE_INVOICE_PDF")
def generate_invoice_pdf_route(org_id: int, invoice_id: int):
    """Render the PDF now. ?force=true re-renders a ready invoice in place."""
    try:
        require_org_access(org_id)
        force = request.args.get("force", "false").lower() in ("1", "true", "yes")
        invoice = invoice_service.generate_invoice_pdf(invoice_id, org_id, force=force)
        return jsonify(invoice_service.invoice_status_payload(invoice)), 200

    except (TenantAccessError, InvoiceNotFoundError) as e:
        return _error(e, 404)
    except InvoiceRenderError as e:
        return _error(e, 500, retryable=True)
    except Exception:
        current_app.logger.exception("Failed to generate invoice PDF")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/invoices/<int:invoice_id>/pdf")
@require_auth
@require_permission("VIEW_INVOICES")
def download_invoice_pdf_route(org_id: int, invoice_id: int):
    """
    Stream the PDF. Renders it on first request; answers 202 with the status
    payload while another request is still rendering.
    """
    try:
        require_org_access(org_id)
        invoice, pdf_bytes = invoice_service.load_invoice_pdf(invoice_id, org_id)
        if pdf_bytes is None:
            return jsonify(invoice_service.invoice_status_payload(invoice)), 202

        return Response(
            pdf_bytes,
            mimetype="application/pdf",
            headers={
                "Content-Disposition": f'inline; filename="{invoice.invoice_number}.pdf"',
                "Cache-Control": "private, no-store",
            },
        )

    except (TenantAccessError, InvoiceNotFoundError) as e:
        return _error(e, 404)
    except InvoiceRenderError as e:
        return _error(e, 500, retryable=True)
    except StorageError as e:
        current_app.logger.error("Stored PDF missing for invoice %s: %s", invoice_id, e.details)
        return _error(e, 500, retryable=True)
    except Exception:
        current_app.logger.exception("Failed to download invoice PDF")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/invoice-settings")
@require_auth
@require_permission("VIEW_INVOICES")
def get_invoice_settings_route(org_id: int):
    try:
        require_org_access(org_id)
        settings = invoice_settings_service.get_or_create_invoice_settings(org_id)
        return jsonify({"settings": settings.to_dict()}), 200

    except TenantAccessError as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get invoice settings")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/invoice-settings")
@require_auth
@require_permission("MANAGE_INVOICE_SETTINGS")
def update_invoice_settings_route(org_id: int):
    try:
        require_org_access(org_id)
        settings = invoice_settings_service.update_invoice_settings(org_id, request.get_json(silent=True))
        return jsonify({"settings": settings.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except TenantAccessError as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to update invoice settings")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/business-settings")
@require_auth
@require_permission("VIEW_INVOICES")
def get_business_settings_route(org_id: int):
    try:
        require_org_access(org_id)
        business = invoice_settings_service.get_or_create_business_settings(org_id)
        return jsonify({"settings": business.to_dict()}), 200

    except TenantAccessError as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to get business settings")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/business-settings")
@require_auth
@require_permission("MANAGE_INVOICE_SETTINGS")
def update_business_settings_route(org_id: int):
    try:
        require_org_access(org_id)
        business = invoice_settings_service.update_business_settings(org_id, request.get_json(silent=True))
        return jsonify({"settings": business.to_dict()}), 200

    except ValidationError as e:
        return _error(e, 400)
    except TenantAccessError as e:
        return _error(e, 404)
    except Exception:
        current_app.logger.exception("Failed to update business settings")
        return jsonify({"error": "Internal server error"}), 500
