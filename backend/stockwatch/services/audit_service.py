"""
Audit Recorder

WHY: Every sensitive mutation leaves one permanent entry, sufficient to
reconstruct what happened, who did it, from where, and what the entity
looked like before.

DESIGN:
- record() is the only write. There is no update or delete here and the
  AuditLog model refuses both at flush time.
- Callers record AFTER the mutation has been applied, inside the same
  transaction (commit=False) so a failed mutation leaves no orphan entry
  and a committed mutation is never left unaudited.
- Queries filter by local calendar day; an optional hour range is applied
  within each day of the span, never across midnight.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import date, datetime

from ..extensions import db
from ..models import AuditLog
from stockwatch.time_utils import local_day_bounds, to_local, utcnow
from .audit_context import Provenance, SYSTEM
from .audit_details import AuditAction, AuditDetail, jsonable


class AuditQueryError(ValueError):
    """Raised for an invalid audit filter."""


RECENT_IMPORTS_MAX = 50

CSV_HEADERS = [
    "ID",
    "Timestamp",
    "UserId",
    "Action",
    "EntityType",
    "EntityId",
    "Details (JSON)",
    "IP",
    "User-Agent",
    "RiskFlags",
    "PreviousSnapshot",
]


@dataclass(frozen=True)
class AuditFilter:
    start_day: date
    end_day: date
    user_id: str | None = None
    start_hour: int | None = None
    end_hour: int | None = None
    action: AuditAction | str | None = None

    def validate(self) -> None:
        if self.end_day < self.start_day:
            raise AuditQueryError("end_day must not be before start_day")
        hours = (self.start_hour, self.end_hour)
        if (hours[0] is None) != (hours[1] is None):
            raise AuditQueryError("start_hour and end_hour must be given together")
        if hours[0] is not None:
            for h in hours:
                if not 0 <= h <= 23:
                    raise AuditQueryError("hours must be between 0 and 23")
            if self.start_hour > self.end_hour:
                raise AuditQueryError("start_hour must not be after end_hour")


def record(
    detail: AuditDetail,
    *,
    entity_id: str | None = None,
    user_id: str | None = None,
    previous_snapshot: dict | None = None,
    provenance: Provenance = SYSTEM,
    risk_flags: list[str] | None = None,
    occurred_at: datetime | None = None,
    commit: bool = True,
) -> int:
    """
    Append one audit entry and return its id.

    With commit=False the entry joins the caller's transaction; it is
    flushed so the id is assigned.
    """
    entry = AuditLog(
        user_id=user_id,
        action=detail.ACTION.value,
        entity_type=detail.ENTITY_TYPE,
        entity_id=entity_id,
        details=detail.to_payload(),
        previous_snapshot=jsonable(previous_snapshot) if previous_snapshot is not None else None,
        ip_address=provenance.ip_address,
        user_agent=provenance.user_agent,
        risk_flags=list(risk_flags or []),
        created_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    if commit:
        db.session.commit()
    return entry.id


def query(flt: AuditFilter) -> list[AuditLog]:
    """Entries matching the filter, newest first."""
    flt.validate()
    range_start, _ = local_day_bounds(flt.start_day)
    _, range_end = local_day_bounds(flt.end_day)

    q = (
        db.session.query(AuditLog)
        .filter(AuditLog.created_at >= range_start)
        .filter(AuditLog.created_at < range_end)
    )
    if flt.user_id:
        q = q.filter(AuditLog.user_id == flt.user_id)
    if flt.action:
        action = flt.action.value if isinstance(flt.action, AuditAction) else str(flt.action)
        q = q.filter(AuditLog.action == action)

    entries = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()

    if flt.start_hour is None:
        return entries
    # Hour-of-day is a property of the local time; evaluated per entry so the
    # window repeats on every day of the span.
    return [
        e for e in entries
        if flt.start_hour <= to_local(e.created_at).hour <= flt.end_hour
    ]


def latest(limit: int = 100) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )


def recent_imports(limit: int = 20) -> list[AuditLog]:
    limit = max(1, min(int(limit or 20), RECENT_IMPORTS_MAX))
    return (
        db.session.query(AuditLog)
        .filter(AuditLog.action == AuditAction.PRODUCT_IMPORT.value)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )


def imports_between(start_day: date, end_day: date) -> list[AuditLog]:
    return query(AuditFilter(start_day=start_day, end_day=end_day, action=AuditAction.PRODUCT_IMPORT))


def _cell(value) -> str:
    return "-" if value is None or value == "" else str(value)


def to_csv_rows(entries: list[AuditLog]) -> list[list[str]]:
    rows = []
    for e in entries:
        rows.append([
            str(e.id),
            to_local(e.created_at).strftime("%Y-%m-%d %H:%M:%S"),
            _cell(e.user_id),
            e.action,
            e.entity_type,
            _cell(e.entity_id),
            json.dumps(e.details or {}, ensure_ascii=False, sort_keys=True),
            _cell(e.ip_address),
            _cell(e.user_agent),
            ";".join(e.risk_flags) if e.risk_flags else "-",
            json.dumps(e.previous_snapshot, ensure_ascii=False, sort_keys=True)
            if e.previous_snapshot is not None else "-",
        ])
    return rows


def to_csv(entries: list[AuditLog]) -> str:
    """Flat CSV projection, one row per entry, every cell quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(to_csv_rows(entries))
    return buf.getvalue()
