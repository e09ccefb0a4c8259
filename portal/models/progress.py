"""
Client Engagement Portal
ProgressRecord — per-client cursor over the five onboarding/production steps.

Steps:
    1 Intake   2 Resume Upload   3 Session Booking   4 Production   5 Review/Delivery

The row stores the reconciled per-step flags for one client identity and is
the SQL backend of the progress cache. ``current_step`` is derived:
min(5, completed + 1). ``version_id`` makes concurrent read-merge-write
cycles detect each other instead of overwriting a flag.
"""

from datetime import datetime, timezone

from portal.models import db


STEP_NAMES = {
    1: "Intake",
    2: "Resume Upload",
    3: "Session Booking",
    4: "Production",
    5: "Review/Delivery",
}

STEP_COUNT = len(STEP_NAMES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressRecord(db.Model):
    """Five completion flags for one client."""

    __tablename__ = "progress_records"

    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True,
    )
    step_1 = db.Column(db.Boolean, nullable=False, default=False)
    step_2 = db.Column(db.Boolean, nullable=False, default=False)
    step_3 = db.Column(db.Boolean, nullable=False, default=False)
    step_4 = db.Column(db.Boolean, nullable=False, default=False)
    step_5 = db.Column(db.Boolean, nullable=False, default=False)
    current_step = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    client = db.relationship("Client", back_populates="progress_record")

    def flags(self) -> tuple:
        return tuple(bool(getattr(self, f"step_{n}")) for n in range(1, STEP_COUNT + 1))

    def __repr__(self) -> str:
        return f"<ProgressRecord client={self.client_id} step={self.current_step}>"
