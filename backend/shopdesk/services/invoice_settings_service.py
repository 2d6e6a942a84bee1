# Overview: Invoice and business settings per organization; builds the frozen config passed to numbering and rendering.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import BusinessSettings, OrganizationInvoiceSettings
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_business_settings,
    enforce_rules_invoice_settings,
    validate_payload,
)


INVOICE_SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "enable_invoices",
        "gst_enabled",
        "invoice_prefix",
        "invoice_branch_prefix",
        "invoice_reset_cycle",
        "invoice_padding",
        "invoice_display_format",
        "include_logo",
        "logo_url",
    },
)

BUSINESS_SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "business_name",
        "business_address",
        "contact_phone",
        "contact_email",
        "gst_number",
        "tax_rate_bps",
        "currency",
        "invoice_footer",
    },
)


@dataclass(frozen=True)
class InvoiceConfig:
    """Snapshot of everything numbering and rendering read from settings."""
    enabled: bool
    prefix: str
    branch_prefix_enabled: bool
    reset_cycle: str
    padding: int
    display_format: str
    include_logo: bool
    logo_url: str | None
    gst_enabled: bool
    tax_rate_bps: int
    currency: str


def _get_or_create(model, org_id: int):
    row = db.session.query(model).filter_by(org_id=org_id).first()
    if row:
        return row
    row = model(org_id=org_id)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created the defaults first
        db.session.rollback()
        row = db.session.query(model).filter_by(org_id=org_id).one()
    return row


def get_or_create_invoice_settings(org_id: int) -> OrganizationInvoiceSettings:
    return _get_or_create(OrganizationInvoiceSettings, org_id)


def get_or_create_business_settings(org_id: int) -> BusinessSettings:
    return _get_or_create(BusinessSettings, org_id)


def update_invoice_settings(org_id: int, payload: dict) -> OrganizationInvoiceSettings:
    """Apply a partial update; raises ValidationError on bad input."""
    patch = validate_payload(
        model=OrganizationInvoiceSettings,
        payload=payload,
        policy=INVOICE_SETTINGS_POLICY,
        partial=True,
    )
    enforce_rules_invoice_settings(patch)

    settings = get_or_create_invoice_settings(org_id)
    for key, value in patch.items():
        setattr(settings, key, value)
    db.session.commit()
    return settings


def update_business_settings(org_id: int, payload: dict) -> BusinessSettings:
    patch = validate_payload(
        model=BusinessSettings,
        payload=payload,
        policy=BUSINESS_SETTINGS_POLICY,
        partial=True,
    )
    enforce_rules_business_settings(patch)

    business = get_or_create_business_settings(org_id)
    for key, value in patch.items():
        setattr(business, key, value)
    db.session.commit()
    return business


def build_invoice_config(org_id: int) -> InvoiceConfig:
    settings = get_or_create_invoice_settings(org_id)
    business = get_or_create_business_settings(org_id)
    return InvoiceConfig(
        enabled=settings.enable_invoices,
        prefix=settings.invoice_prefix,
        branch_prefix_enabled=settings.invoice_branch_prefix,
        reset_cycle=settings.invoice_reset_cycle,
        padding=settings.invoice_padding,
        display_format=settings.invoice_display_format,
        include_logo=settings.include_logo,
        logo_url=settings.logo_url,
        gst_enabled=settings.gst_enabled,
        tax_rate_bps=business.tax_rate_bps,
        currency=business.currency,
    )
