# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes: ring up, list, and same-day returns."""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import quota_service, sales_service
from ..services.audit_context import provenance_from_request
from ..services.quota_service import ReturnNotAllowed
from ..services.sales_service import SaleError
from ..validation import NotFoundError, ValidationError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales_route():
    """Sellers see their own sales; managers and admins see all."""
    sales = sales_service.list_sales(g.current_user)
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a sale.

    Body: {"items": [{"product_id", "quantity"}], "payment_method",
           "discount_amount" (optional)}
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.create_sale(
            actor=g.current_user,
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            discount_amount=data.get("discount_amount", 0),
            provenance=provenance_from_request(request),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<sale_id>/return")
@require_auth
def return_sale_route(sale_id: str):
    """
    Return a sale made by the caller earlier today.

    Returns 403 for someone else's sale, a sale from another day, a sale
    already returned, or when 5 returns were made in the last 2 days.
    """
    try:
        sale = sales_service.return_sale(
            sale_id=sale_id,
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
        return jsonify({"success": True, "sale_id": sale.id}), 200

    except NotFoundError:
        return jsonify({"error": "Sale not found"}), 404
    except ReturnNotAllowed as e:
        body = {"error": str(e)}
        if e.count is not None:
            body["count"] = e.count
            body["limit"] = quota_service.MAX_RETURNS_PER_WINDOW
        return jsonify(body), 403
    except Exception:
        current_app.logger.exception("Failed to return sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/returns/limit")
@require_auth
def returns_limit_route():
    return jsonify(quota_service.returns_status(g.current_user.id))
