# Overview: Service-layer operations for maintenance; storage hygiene for counters and sessions.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import DailyEditCount, SessionToken
from stockwatch.time_utils import local_today, utcnow


def cleanup_daily_counts(*, retention_days: int = 30) -> int:
    """
    Delete per-day edit counters older than retention_days.

    Only past days are removed, so no live quota is affected.
    """
    cutoff = local_today() - timedelta(days=retention_days)
    deleted = db.session.query(DailyEditCount).filter(
        DailyEditCount.day < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def cleanup_expired_sessions() -> int:
    """Delete session tokens that are expired or revoked."""
    deleted = db.session.query(SessionToken).filter(
        (SessionToken.expires_at < utcnow()) | (SessionToken.is_revoked.is_(True))
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
