"""
Sales Service - checkout and sale lookups

WHY: Sales are written once at checkout with their lines and totals. After
that only the payment fields may change; invoices read sales but never
write them.
"""

from ..extensions import db
from ..models import Product, Sale, SaleLine
from ..models.sales import PAYMENT_TYPES
from shopdesk.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_store_in_org


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFoundError(SaleError):
    """Sale does not exist in the requesting organization."""


def _validate_payment_type(payment_type: str) -> str:
    normalized = (payment_type or "").upper()
    if normalized not in PAYMENT_TYPES:
        raise SaleError(
            "Invalid payment_type",
            details={"payment_type": payment_type, "allowed": list(PAYMENT_TYPES)},
        )
    return normalized


def record_sale(
    org_id: int,
    store_id: int,
    user_id: int | None,
    lines: list[dict],
    payment_type: str = "CASH",
    is_paid: bool = False,
    table_id: int | None = None,
    sold_at=None,
) -> Sale:
    """
    Record a completed sale.

    lines: [{product_id, quantity, selling_price_cents?}] (already validated
    for shape by validation.parse_sale_lines). The selling price defaults to
    the product's current price.
    """
    require_store_in_org(store_id, org_id)
    payment_type = _validate_payment_type(payment_type)

    if not lines:
        raise SaleError("Cannot record a sale with no lines")

    product_ids = {line["product_id"] for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.org_id == org_id,
            Product.id.in_(product_ids),
        )
    }
    missing = sorted(pid for pid in product_ids if pid not in products)
    if missing:
        raise SaleError("Product not found", details={"product_ids": missing})
    inactive = sorted(pid for pid, p in products.items() if not p.is_active)
    if inactive:
        raise SaleError("Product is inactive", details={"product_ids": inactive})

    sale = Sale(
        org_id=org_id,
        store_id=store_id,
        sold_at=sold_at or utcnow(),
        sold_by_user_id=user_id,
        payment_type=payment_type,
        is_paid=bool(is_paid),
        table_id=table_id,
    )

    total = 0
    for line in lines:
        price = line.get("selling_price_cents")
        if price is None:
            price = products[line["product_id"]].price_cents
        subtotal = price * line["quantity"]
        total += subtotal
        sale.lines.append(SaleLine(
            product_id=line["product_id"],
            quantity=line["quantity"],
            selling_price_cents=price,
            subtotal_cents=subtotal,
        ))
    sale.total_amount_cents = total

    db.session.add(sale)
    db.session.commit()
    return sale


def get_sale(sale_id: int, org_id: int) -> Sale:
    """Fetch a sale scoped to org_id; other tenants' sales look nonexistent."""
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if not sale:
        raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(org_id: int, store_id: int | None = None, page: int = 1, size: int = 20) -> tuple[list[Sale], int]:
    query = db.session.query(Sale).filter(Sale.org_id == org_id)
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)

    total = query.count()
    sales = (
        query.order_by(Sale.sold_at.desc(), Sale.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return sales, total


def update_sale_payment(
    sale_id: int,
    org_id: int,
    payment_type: str | None = None,
    is_paid: bool | None = None,
) -> Sale:
    """Update payment_type and/or is_paid; every other sale field is frozen."""
    if payment_type is not None:
        payment_type = _validate_payment_type(payment_type)

    def _op():
        sale = lock_for_update(
            db.session.query(Sale).filter_by(id=sale_id, org_id=org_id)
        ).first()
        if not sale:
            raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})

        if payment_type is not None:
            sale.payment_type = payment_type
        if is_paid is not None:
            sale.is_paid = bool(is_paid)

        db.session.commit()
        return sale

    return run_with_retry(_op)
