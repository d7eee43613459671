# Overview: Service-layer operations for user accounts; creation and (bulk) deletion, audited.

from __future__ import annotations

from ..extensions import db
from ..models import ROLES, User
from ..validation import ConflictError, NotFoundError, ValidationError
from .audit_context import Provenance, SYSTEM
from .audit_details import UserCreated, UserDeleted
from . import audit_service, risk_service


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()


def get_user_by_username(username: str) -> User | None:
    return db.session.query(User).filter_by(username=username).first()


def create_user(
    *,
    name: str,
    username: str,
    role: str,
    actor: User | None = None,
    provenance: Provenance = SYSTEM,
) -> User:
    """Create an account. actor is None when bootstrapped from the CLI."""
    username = (username or "").strip()
    name = (name or "").strip() or username
    if not username:
        raise ValidationError("username is required")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    if get_user_by_username(username):
        raise ConflictError("Username already exists.")

    try:
        user = User(name=name, username=username, role=role)
        db.session.add(user)
        db.session.flush()

        detail = UserCreated(username=user.username, role=user.role)
        audit_service.record(
            detail,
            entity_id=user.id,
            user_id=actor.id if actor else None,
            provenance=provenance,
            risk_flags=risk_service.classify(detail.ACTION, detail.to_payload()),
            commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return user


def delete_users(*, user_ids: list[str], actor: User, provenance: Provenance = SYSTEM) -> int:
    """
    Delete accounts, one DELETE_USER entry each. All-or-nothing.

    Audit entries keep the deleted user's id as a plain value.
    """
    if actor.id in user_ids:
        raise ValidationError("You cannot delete your own account")

    users = db.session.query(User).filter(User.id.in_(user_ids)).all()
    found = {u.id for u in users}
    missing = [uid for uid in user_ids if uid not in found]
    if missing:
        raise NotFoundError(f"User not found: {missing[0]}")

    batch_size = len(users)
    context = risk_service.RiskContext(batch_size=batch_size)
    try:
        for u in users:
            prior = u.to_dict()
            detail = UserDeleted(username=u.username, batch_size=batch_size)
            db.session.delete(u)
            audit_service.record(
                detail,
                entity_id=u.id,
                user_id=actor.id,
                previous_snapshot=prior,
                provenance=provenance,
                risk_flags=risk_service.classify(detail.ACTION, detail.to_payload(), prior, context),
                commit=False,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return batch_size
