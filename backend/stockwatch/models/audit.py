from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from stockwatch.time_utils import to_utc_z


class AuditLogImmutableError(RuntimeError):
    """Raised when application code tries to modify or remove an audit entry."""


class AuditLog(db.Model):
    """
    Audit trail of every mutating action.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Retention is an operational concern handled outside the application.

    user_id and entity_id are weak references (no foreign keys): entries
    remain valid history after the user or product they name is deleted.
    user_id is null for system-initiated actions.

    details holds the action-specific payload; previous_snapshot is the
    entity state captured BEFORE the mutation, when the action has one.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_user_created", "user_id", "created_at"),
        db.Index("ix_audit_logs_action_created", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(32), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)

    details = db.Column(db.JSON, nullable=True)
    previous_snapshot = db.Column(db.JSON, nullable=True)

    # Client context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    risk_flags = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "previous_snapshot": self.previous_snapshot,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "risk_flags": list(self.risk_flags or []),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} cannot be deleted")
