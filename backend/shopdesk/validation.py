from __future__ import annotations
import re
from datetime import datetime
from shopdesk.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 in major units
MAX_AMOUNT_CENTS = 999_999_999
MAX_LINE_QUANTITY = 100_000

INVOICE_PADDING_RANGE = (3, 10)
INVOICE_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9/_-]{0,16}$")
GSTIN_PATTERN = re.compile(r"^[0-9A-Z]{15}$")


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # bool is a subclass of int; reject it explicitly
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "" and k != "invoice_prefix":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_invoice_settings(patch: dict) -> None:
    """Business rules for OrganizationInvoiceSettings updates."""
    from .models.invoices import INVOICE_DISPLAY_FORMATS, INVOICE_RESET_CYCLES

    if "invoice_reset_cycle" in patch and patch["invoice_reset_cycle"] not in INVOICE_RESET_CYCLES:
        raise ValidationError(
            f"invoice_reset_cycle must be one of: {', '.join(INVOICE_RESET_CYCLES)}"
        )

    if "invoice_display_format" in patch and patch["invoice_display_format"] not in INVOICE_DISPLAY_FORMATS:
        raise ValidationError(
            f"invoice_display_format must be one of: {', '.join(INVOICE_DISPLAY_FORMATS)}"
        )

    if "invoice_padding" in patch:
        low, high = INVOICE_PADDING_RANGE
        if not low <= patch["invoice_padding"] <= high:
            raise ValidationError(f"invoice_padding must be between {low} and {high}")

    if "invoice_prefix" in patch and not INVOICE_PREFIX_PATTERN.match(patch["invoice_prefix"]):
        raise ValidationError(
            "invoice_prefix may only contain letters, digits, '-', '_' or '/' (max 16)"
        )


def enforce_rules_business_settings(patch: dict) -> None:
    if "tax_rate_bps" in patch:
        rate = patch["tax_rate_bps"]
        if rate < 0 or rate > 10_000:
            raise ValidationError("tax_rate_bps must be between 0 and 10000")

    if patch.get("gst_number"):
        patch["gst_number"] = patch["gst_number"].upper()
        if not GSTIN_PATTERN.match(patch["gst_number"]):
            raise ValidationError("gst_number must be 15 letters/digits")

    if "currency" in patch:
        patch["currency"] = patch["currency"].upper()
        if not re.match(r"^[A-Z]{3}$", patch["currency"]):
            raise ValidationError("currency must be a 3-letter ISO code")


CREATE_INVOICE_FIELDS = {"customer_name", "customer_phone", "customer_gstin", "force_sync_pdf"}


def _optional_text(payload: dict, key: str, max_length: int) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def parse_create_invoice_payload(payload: dict | None) -> dict:
    """
    Validate the body of "create invoice from sale".

    All fields are optional. Unknown fields are rejected so typos surface
    before a number is allocated.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(set(payload) - CREATE_INVOICE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    gstin = _optional_text(payload, "customer_gstin", 15)
    if gstin is not None:
        gstin = gstin.upper()
        if not GSTIN_PATTERN.match(gstin):
            raise ValidationError("customer_gstin must be 15 letters/digits")

    phone = _optional_text(payload, "customer_phone", 32)
    if phone is not None and not re.match(r"^\+?[0-9 ()-]{3,32}$", phone):
        raise ValidationError("customer_phone is not a valid phone number")

    force_sync_pdf = payload.get("force_sync_pdf", False)
    if not isinstance(force_sync_pdf, bool):
        raise ValidationError("force_sync_pdf must be true or false")

    return {
        "customer_name": _optional_text(payload, "customer_name", 255),
        "customer_phone": phone,
        "customer_gstin": gstin,
        "force_sync_pdf": force_sync_pdf,
    }


def parse_sale_lines(raw_lines: Any) -> list[dict]:
    """
    Validate checkout lines: [{product_id, quantity, selling_price_cents?}].
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")

    lines = []
    for idx, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"lines[{idx}] must be an object")
        if "product_id" not in raw or "quantity" not in raw:
            raise ValidationError(f"lines[{idx}] requires product_id and quantity")

        quantity = _coerce_int(f"lines[{idx}].quantity", raw["quantity"])
        if quantity <= 0 or quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"lines[{idx}].quantity must be between 1 and {MAX_LINE_QUANTITY}")

        price = raw.get("selling_price_cents")
        if price is not None:
            price = _coerce_int(f"lines[{idx}].selling_price_cents", price)
            if price < 0 or price > MAX_AMOUNT_CENTS:
                raise ValidationError(f"lines[{idx}].selling_price_cents is out of range")

        lines.append({
            "product_id": _coerce_int(f"lines[{idx}].product_id", raw["product_id"]),
            "quantity": quantity,
            "selling_price_cents": price,
        })
    return lines


def parse_pagination(args, default_size: int = 20, max_size: int = 100) -> tuple[int, int]:
    """page/size query parameters; page is 1-based."""
    try:
        page = int(args.get("page", 1))
        size = int(args.get("size", default_size))
    except (TypeError, ValueError):
        raise ValidationError("page and size must be integers")
    if page < 1:
        raise ValidationError("page must be >= 1")
    if size < 1 or size > max_size:
        raise ValidationError(f"size must be between 1 and {max_size}")
    return page, size
