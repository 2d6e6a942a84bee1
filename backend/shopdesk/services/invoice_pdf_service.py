# Overview: Invoice rendering; deterministic HTML from the invoice snapshot, converted to PDF with fpdf2.

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import urljoin

from flask import current_app, render_template
from fpdf import FPDF

# 80 mm roll, one A4-length page that grows via auto page break
THERMAL_PAGE_SIZE = (80, 297)

_WHITESPACE_BETWEEN_TAGS = re.compile(r">\s+<")


def format_money(cents) -> str:
    """1234567 -> "12,345.67". Registered as the "money" template filter."""
    if cents is None:
        cents = 0
    amount = (Decimal(int(cents)) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{amount:,.2f}"


def format_percent(bps) -> str:
    """1800 -> "18%", 1250 -> "12.5%"."""
    value = Decimal(int(bps or 0)) / 100
    return f"{value.normalize():f}%"


def resolve_logo_url(config) -> str | None:
    if not config.include_logo or not config.logo_url:
        return None
    if config.logo_url.startswith(("http://", "https://")):
        return config.logo_url
    base = current_app.config.get("PUBLIC_BASE_URL")
    if not base:
        # Relative path with nowhere to fetch it from
        return None
    return urljoin(base.rstrip("/") + "/", config.logo_url.lstrip("/"))


def render_invoice_html(invoice, config, business, store=None) -> str:
    """
    Render the invoice snapshot as HTML.

    Output depends only on the snapshot, the branding settings and the
    display format, so rendering the same invoice twice gives the same HTML.
    """
    template = "invoices/thermal.html" if config.display_format == "thermal" else "invoices/a4.html"
    html = render_template(
        template,
        invoice=invoice,
        business=business,
        store=store,
        logo_url=resolve_logo_url(config),
    )
    return _WHITESPACE_BETWEEN_TAGS.sub("><", html).strip()


def render_invoice_pdf(html: str, display_format: str = "A4") -> bytes:
    """Convert the invoice HTML to PDF bytes. Raises whatever fpdf2 raises."""
    if display_format == "thermal":
        pdf = FPDF(format=THERMAL_PAGE_SIZE)
        pdf.set_margins(4, 4, 4)
        pdf.set_auto_page_break(auto=True, margin=4)
        pdf.set_font("helvetica", size=8)
    else:
        pdf = FPDF(format="A4")
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.set_font("helvetica", size=10)

    pdf.add_page()
    # Core fonts are latin-1 only
    pdf.write_html(html.encode("latin-1", "replace").decode("latin-1"))
    return bytes(pdf.output())
