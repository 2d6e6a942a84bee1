"""Sale record store: checkout, tenancy and the payment-only mutation rule."""

import pytest

from shopdesk.services import sales_service
from shopdesk.services.sales_service import SaleError, SaleNotFoundError
from shopdesk.services.tenant_service import TenantAccessError


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def test_record_sale_computes_lines_and_total(db_session, sale_a, products_a):
    tea, mug = products_a
    lines = sorted(sale_a.lines, key=lambda l: l.id)

    assert [(l.product_id, l.quantity, l.selling_price_cents, l.subtotal_cents) for l in lines] == [
        (tea.id, 2, 10_000, 20_000),
        (mug.id, 1, 5_000, 5_000),
    ]
    assert sale_a.total_amount_cents == 25_000
    assert sale_a.payment_type == "CASH"
    assert sale_a.is_paid is False


def test_selling_price_override(db_session, org_a, store_a, user_a, products_a):
    tea, _ = products_a
    sale = sales_service.record_sale(
        org_a.id, store_a.id, user_a.id,
        [{"product_id": tea.id, "quantity": 3, "selling_price_cents": 9_000}],
        payment_type="upi",
        is_paid=True,
        table_id=7,
    )
    assert sale.total_amount_cents == 27_000
    assert sale.payment_type == "UPI"
    assert sale.is_paid is True
    assert sale.table_id == 7


def test_rejects_products_from_other_org(db_session, org_a, store_a, user_a, product_b):
    with pytest.raises(SaleError) as excinfo:
        sales_service.record_sale(org_a.id, store_a.id, user_a.id, [{"product_id": product_b.id, "quantity": 1}])
    assert excinfo.value.details["product_ids"] == [product_b.id]


def test_rejects_inactive_products(db_session, org_a, store_a, user_a, products_a):
    tea, _ = products_a
    tea.is_active = False
    db_session.commit()

    with pytest.raises(SaleError):
        sales_service.record_sale(org_a.id, store_a.id, user_a.id, [{"product_id": tea.id, "quantity": 1}])


def test_rejects_store_from_other_org(db_session, org_a, store_b, user_a, products_a):
    tea, _ = products_a
    with pytest.raises(TenantAccessError):
        sales_service.record_sale(org_a.id, store_b.id, user_a.id, [{"product_id": tea.id, "quantity": 1}])


def test_rejects_unknown_payment_type(db_session, org_a, store_a, user_a, products_a):
    tea, _ = products_a
    with pytest.raises(SaleError):
        sales_service.record_sale(
            org_a.id, store_a.id, user_a.id, [{"product_id": tea.id, "quantity": 1}], payment_type="CARD"
        )


def test_get_sale_is_tenant_scoped(db_session, org_b, sale_a):
    with pytest.raises(SaleNotFoundError):
        sales_service.get_sale(sale_a.id, org_b.id)


def test_update_payment_only_touches_payment_fields(db_session, org_a, sale_a):
    before = sale_a.to_dict()

    sale = sales_service.update_sale_payment(sale_a.id, org_a.id, payment_type="UPI", is_paid=True)

    after = sale.to_dict()
    assert after["payment_type"] == "UPI"
    assert after["is_paid"] is True
    for key in ("total_amount_cents", "lines", "sold_at", "store_id", "sold_by_user_id"):
        assert after[key] == before[key]


def test_list_sales(db_session, org_a, org_b, sale_a):
    sales, total = sales_service.list_sales(org_a.id)
    assert total == 1
    assert sales[0].id == sale_a.id

    _, total_b = sales_service.list_sales(org_b.id)
    assert total_b == 0


def test_sales_routes(client, org_a, store_a, products_a, token_a):
    tea, mug = products_a
    base = f"/api/organizations/{org_a.id}/sales"

    created = client.post(
        base,
        json={"lines": [{"product_id": tea.id, "quantity": 2}, {"product_id": mug.id, "quantity": 1}]},
        headers=auth_headers(token_a),
    )
    assert created.status_code == 201
    sale = created.get_json()["sale"]
    assert sale["total_amount_cents"] == 25_000
    assert sale["store_id"] == store_a.id

    fetched = client.get(f"{base}/{sale['id']}", headers=auth_headers(token_a))
    assert fetched.status_code == 200
    assert len(fetched.get_json()["sale"]["lines"]) == 2

    paid = client.patch(f"{base}/{sale['id']}/payment", json={"is_paid": True}, headers=auth_headers(token_a))
    assert paid.status_code == 200
    assert paid.get_json()["sale"]["is_paid"] is True

    frozen = client.patch(
        f"{base}/{sale['id']}/payment", json={"total_amount_cents": 1}, headers=auth_headers(token_a)
    )
    assert frozen.status_code == 400

    listed = client.get(base, headers=auth_headers(token_a)).get_json()
    assert listed["total"] == 1


def test_sales_route_validation(client, org_a, products_a, token_a):
    base = f"/api/organizations/{org_a.id}/sales"
    tea, _ = products_a

    empty = client.post(base, json={"lines": []}, headers=auth_headers(token_a))
    zero_qty = client.post(base, json={"lines": [{"product_id": tea.id, "quantity": 0}]}, headers=auth_headers(token_a))
    float_qty = client.post(base, json={"lines": [{"product_id": tea.id, "quantity": 1.5}]}, headers=auth_headers(token_a))

    assert empty.status_code == 400
    assert zero_qty.status_code == 400
    assert float_qty.status_code == 400


def test_sales_from_other_org_are_hidden(client, org_b, sale_a, token_b):
    resp = client.get(f"/api/organizations/{org_b.id}/sales/{sale_a.id}", headers=auth_headers(token_b))
    assert resp.status_code == 404
