# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product management routes.

SECURITY: All routes require authentication.
- create / update consume the daily edit quota (checked before the handler)
- delete, bulk delete and stock receipts are limited to admins and managers
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_edit_quota, require_role
from ..models import Product, ROLE_ADMIN, ROLE_MANAGER
from ..services import products_service
from ..services.audit_context import provenance_from_request
from ..services.quota_service import QuotaExceeded
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    id_list,
    positive_quantity,
    to_decimal,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "category_id", "price", "cost_price",
        "stock", "min_stock", "unit", "image",
    },
    required_on_create={"sku", "name", "price"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _quota_rejection(e: QuotaExceeded):
    return jsonify({"error": "Daily edit limit reached", "limit": e.limit}), 403


@products_bp.get("")
@require_auth
def list_products():
    """
    List all products with optional pagination.

    Query params:
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    page = request.args.get("page", type=int)
    per_page = request.args.get("per_page", type=int)
    return jsonify(products_service.list_products(page=page, per_page=per_page))


@products_bp.post("")
@require_auth
@require_edit_quota
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        created = products_service.create_product(
            patch=patch,
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except QuotaExceeded as e:
        return _quota_rejection(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(created.to_dict()), 201


@products_bp.patch("/<product_id>")
@require_auth
@require_edit_quota
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    if not patch:
        return jsonify({"error": "No fields to update"}), 400

    try:
        updated = products_service.update_product(
            product_id=product_id,
            patch=patch,
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except QuotaExceeded as e:
        return _quota_rejection(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(updated.to_dict()), 200


@products_bp.delete("/<product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: str):
    try:
        products_service.delete_products(
            product_ids=[product_id],
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"ok": True}), 200


@products_bp.post("/bulk-delete")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def bulk_delete_products_route():
    payload = request.get_json(silent=True) or {}
    try:
        ids = id_list(payload)
        deleted = products_service.delete_products(
            product_ids=ids,
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to bulk delete products")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"ok": True, "deleted": deleted}), 200


@products_bp.post("/<product_id>/increase-stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def increase_stock_route(product_id: str):
    """
    Receive stock into a product.

    Body: {"quantity": number, "price": number (optional)}
    """
    payload = request.get_json(silent=True) or {}
    try:
        quantity = positive_quantity(payload.get("quantity"))
        new_price = None
        if payload.get("price") is not None:
            new_price = to_decimal(payload["price"], "price")
            enforce_rules_product({"price": new_price})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        product = products_service.increase_stock(
            product_id=product_id,
            quantity=quantity,
            new_price=new_price,
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except NotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to increase stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(product.to_dict()), 200
