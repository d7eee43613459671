# Overview: Flask API routes for audit log review and CSV export.

"""
Audit log routes.

SECURITY:
- full listing is admin only
- filtering, export and import history are open to admins and managers
"""

from flask import Blueprint, Response, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..models import ROLE_ADMIN, ROLE_MANAGER
from ..services import audit_service
from ..services.audit_service import AuditFilter, AuditQueryError
from stockwatch.time_utils import parse_day


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


def _hour(value) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise AuditQueryError("hours must be integers")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AuditQueryError("hours must be integers")


def _day(value, field: str):
    try:
        day = parse_day(value)
    except ValueError:
        raise AuditQueryError(f"{field} must be YYYY-MM-DD")
    if day is None:
        raise AuditQueryError("start_date and end_date are required")
    return day


def _filter_from_body(data: dict) -> AuditFilter:
    user_id = data.get("user_id")
    if user_id in ("", "all"):
        user_id = None
    flt = AuditFilter(
        start_day=_day(data.get("start_date"), "start_date"),
        end_day=_day(data.get("end_date"), "end_date"),
        user_id=user_id,
        start_hour=_hour(data.get("start_hour")),
        end_hour=_hour(data.get("end_hour")),
        action=data.get("action") or None,
    )
    flt.validate()
    return flt


@audit_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_audit_logs_route():
    limit = max(1, min(request.args.get("limit", 100, type=int), 1000))
    entries = audit_service.latest(limit)
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})


@audit_bp.post("/filter")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def filter_audit_logs_route():
    """
    Filter by date range (local calendar days), optional user and hour range.

    Body: {"start_date", "end_date", "user_id", "start_hour", "end_hour", "action"}
    ?format=csv returns a CSV attachment instead of JSON.
    """
    data = request.get_json(silent=True) or {}
    try:
        flt = _filter_from_body(data)
        entries = audit_service.query(flt)
    except AuditQueryError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to filter audit logs")
        return jsonify({"error": "Internal server error"}), 500

    if request.args.get("format") == "csv":
        filename = f"audit_{flt.start_day.isoformat()}_{flt.end_day.isoformat()}.csv"
        return Response(
            audit_service.to_csv(entries),
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})


@audit_bp.get("/recent-imports")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def recent_imports_route():
    limit = request.args.get("limit", 20, type=int)
    entries = audit_service.recent_imports(limit)
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})


@audit_bp.get("/imports")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def imports_by_date_route():
    try:
        start = _day(request.args.get("start_date"), "start_date")
        end = _day(request.args.get("end_date"), "end_date")
        entries = audit_service.imports_between(start, end)
    except AuditQueryError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})
