# Overview: Flask API routes for user administration; admin only.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import ROLE_ADMIN
from ..services import users_service
from ..services.audit_context import provenance_from_request
from ..validation import ConflictError, NotFoundError, ValidationError, id_list


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    users = users_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)})


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = users_service.create_user(
            name=data.get("name"),
            username=data.get("username"),
            role=data.get("role"),
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(user.to_dict()), 201


@users_bp.delete("/<user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_user_route(user_id: str):
    try:
        users_service.delete_users(
            user_ids=[user_id],
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError:
        return jsonify({"error": "User not found"}), 404
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"ok": True}), 200


@users_bp.post("/bulk-delete")
@require_auth
@require_role(ROLE_ADMIN)
def bulk_delete_users_route():
    payload = request.get_json(silent=True) or {}
    try:
        deleted = users_service.delete_users(
            user_ids=id_list(payload),
            actor=g.current_user,
            provenance=provenance_from_request(request),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to bulk delete users")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"ok": True, "deleted": deleted}), 200
