# Overview: Flask API routes for catalogue imports; parses input and returns JSON responses.

"""
Import Routes

Rows arrive either as JSON ({"products": [...], "mode": "merge"}) or as an
uploaded CSV, JSON, or Excel (.xlsx) file in the "file" form field with
"mode" as a form field. The mode is required; there is no default.

Imports are limited to admins and managers and do not consume the daily
edit quota.
"""

import json
import zipfile

from flask import Blueprint, current_app, g, jsonify, request
from openpyxl.utils.exceptions import InvalidFileException

from ..decorators import require_auth, require_role
from ..models import ROLE_ADMIN, ROLE_MANAGER
from ..services import reconciliation_service
from ..services.audit_context import provenance_from_request
from ..services.import_schemas import RowParseError, parse_rows, read_upload
from ..services.reconciliation_service import ReconciliationError


imports_bp = Blueprint("imports", __name__, url_prefix="/api/products")


def _require_mode(mode):
    if mode is None or mode == "":
        raise ReconciliationError("mode is required ('merge' or 'reset')")
    return mode


def _request_rows() -> tuple[list, str]:
    """(raw rows, mode) from either a multipart upload or a JSON body."""
    if "file" in request.files:
        upload = request.files["file"]
        try:
            rows = read_upload(upload.stream, upload.filename or "")
        except (UnicodeDecodeError, json.JSONDecodeError, zipfile.BadZipFile, InvalidFileException):
            raise RowParseError("Failed to parse upload")
        return rows, _require_mode(request.form.get("mode"))

    data = request.get_json(silent=True) or {}
    rows = data.get("products", data.get("rows"))
    if rows is None:
        raise RowParseError("products must be a list")
    return rows, _require_mode(data.get("mode"))


@imports_bp.post("/import")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def import_products_route():
    try:
        raw_rows, mode = _request_rows()
        parsed = parse_rows(raw_rows)
        result = reconciliation_service.reconcile(
            parsed.rows,
            mode,
            user_id=g.current_user.id,
            provenance=provenance_from_request(request),
            warnings=parsed.warnings,
        )
    except (RowParseError, ReconciliationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import products")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result.to_dict()), 200


@imports_bp.post("/import/preview")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def preview_import_route():
    try:
        raw_rows, mode = _request_rows()
        parsed = parse_rows(raw_rows)
        summary = reconciliation_service.preview(parsed.rows, mode)
    except (RowParseError, ReconciliationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to preview import")
        return jsonify({"error": "Internal server error"}), 500

    summary["warnings"] = parsed.warnings + summary["warnings"]
    return jsonify(summary), 200
