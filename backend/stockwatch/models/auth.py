from __future__ import annotations

from ..extensions import db
from stockwatch.time_utils import to_utc_z
from .inventory import new_id


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_SELLER = "seller"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER)


class User(db.Model):
    """
    User accounts for attribution.

    WHY: Every audited action must be attributable. No shared logins.
    Credentials live outside this service; the transport resolves a
    SessionToken to a User.
    """
    __tablename__ = "users"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(128), nullable=False)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)

    # admin (unlimited), manager (20 edits/day), seller (5 edits/day)
    role = db.Column(db.String(16), nullable=False, default=ROLE_SELLER)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer token for API access. Only the SHA-256 hash is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(32), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship(
        "User",
        backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan"),
    )
