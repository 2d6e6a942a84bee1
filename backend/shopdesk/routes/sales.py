# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/shopdesk/routes/sales.py
"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.sales_service import SaleError, SaleNotFoundError
from ..services.tenant_service import TenantAccessError, require_org_access
from ..validation import ValidationError, parse_pagination, parse_sale_lines
from ..decorators import require_auth, require_permission
from shopdesk.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/organizations/<int:org_id>/sales")


@sales_bp.post("")
@require_auth
@require_permission("CREATE_SALE")
def record_sale_route(org_id: int):
    """
    Record a completed sale.

    Body: {store_id?, lines: [{product_id, quantity, selling_price_cents?}],
           payment_type?, is_paid?, table_id?, sold_at?}

    Requires: CREATE_SALE permission
    """
    try:
        require_org_access(org_id)
        data = request.get_json(silent=True) or {}

        store_id = data.get("store_id") or g.store_id
        if not store_id:
            return jsonify({"error": "store_id required"}), 400

        lines = parse_sale_lines(data.get("lines"))
        sold_at = data.get("sold_at")
        if sold_at is not None:
            if not isinstance(sold_at, str):
                return jsonify({"error": "sold_at must be an ISO-8601 string"}), 400
            sold_at = parse_iso_datetime(sold_at)

        sale = sales_service.record_sale(
            org_id=org_id,
            store_id=store_id,
            user_id=g.current_user.id,
            lines=lines,
            payment_type=data.get("payment_type", "CASH"),
            is_paid=bool(data.get("is_paid", False)),
            table_id=data.get("table_id"),
            sold_at=sold_at,
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("VIEW_SALES")
def list_sales_route(org_id: int):
    try:
        require_org_access(org_id)
        page, size = parse_pagination(request.args)
        store_id = request.args.get("store_id", type=int)

        sales, total = sales_service.list_sales(org_id, store_id=store_id, page=page, size=size)
        return jsonify({
            "sales": [s.to_dict(include_lines=False) for s in sales],
            "total": total,
            "page": page,
            "size": size,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except TenantAccessError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("VIEW_SALES")
def get_sale_route(org_id: int, sale_id: int):
    try:
        require_org_access(org_id)
        sale = sales_service.get_sale(sale_id, org_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except (TenantAccessError, SaleNotFoundError) as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/payment")
@require_auth
@require_permission("CREATE_SALE")
def update_sale_payment_route(org_id: int, sale_id: int):
    """Body: {payment_type?, is_paid?}. The only mutation a sale allows."""
    try:
        require_org_access(org_id)
        data = request.get_json(silent=True) or {}

        unknown = sorted(set(data) - {"payment_type", "is_paid"})
        if unknown:
            return jsonify({"error": f"Field not allowed: {', '.join(unknown)}"}), 400
        is_paid = data.get("is_paid")
        if is_paid is not None and not isinstance(is_paid, bool):
            return jsonify({"error": "is_paid must be true or false"}), 400

        sale = sales_service.update_sale_payment(
            sale_id,
            org_id,
            payment_type=data.get("payment_type"),
            is_paid=is_paid,
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except (TenantAccessError, SaleNotFoundError) as e:
        return jsonify({"error": str(e)}), 404
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to update sale payment")
        return jsonify({"error": "Internal server error"}), 500
