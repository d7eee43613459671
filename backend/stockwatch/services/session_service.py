# Overview: Service-layer operations for session tokens; issue, validate and revoke bearer tokens.

"""
Session Tokens

WHY: Every audited action must be attributable to one user. Requests carry
a bearer token that resolves to a User.

- tokens are 32 random bytes, shown once and stored only as a SHA-256 digest
- lifetime is SESSION_TTL_HOURS from issue, no sliding renewal
- a revoked token never validates again
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from stockwatch.time_utils import utcnow


DEFAULT_TTL_HOURS = 24


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 hex digest of a token.

    Tokens carry full entropy, so an unsalted fast hash is enough.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _ttl() -> timedelta:
    return timedelta(hours=int(current_app.config.get("SESSION_TTL_HOURS", DEFAULT_TTL_HOURS)))


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )


def create_session(user_id: str) -> tuple[SessionToken, str]:
    """Issue a token for the user. Returns (record, plaintext token)."""
    if db.session.get(User, user_id) is None:
        raise ValueError("User not found")

    token = generate_token()
    issued = utcnow()
    record = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=issued,
        expires_at=issued + _ttl(),
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    return record, token


def validate_session(token: str) -> User | None:
    """The token's user, or None when unknown, expired or revoked."""
    record = _live_session(token)
    if record is None or record.expires_at < utcnow():
        return None
    return record.user


def revoke_session(token: str) -> bool:
    record = _live_session(token)
    if record is None:
        return False
    record.is_revoked = True
    db.session.commit()
    return True
