from __future__ import annotations

from ..extensions import db


class DailyEditCount(db.Model):
    """
    Per-(user, local calendar day) count of quota-consuming mutations.

    Created on the first counted mutation of the day and only ever
    incremented. Rows for past days are simply never read again;
    maintenance_service purges them for storage hygiene.
    """
    __tablename__ = "daily_edit_counts"
    __table_args__ = (
        db.UniqueConstraint("user_id", "day", name="uq_daily_edit_counts_user_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(32), nullable=False, index=True)
    day = db.Column(db.Date, nullable=False, index=True)
    edit_count = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "day": self.day.isoformat(),
            "edit_count": self.edit_count,
        }
