"""
Client Engagement Portal
RevisionRequest model — a client's change request against one Delivery.

Lifecycle states:
    pending → in_progress → completed
    pending → completed

Revision fulfillment forces a request to ``completed`` from any state in
the same transaction that re-delivers the artifact; that write bypasses
REVISION_TRANSITIONS on purpose.

At most one non-completed request may exist per delivery. The partial
unique index ``uq_revision_open_per_delivery`` enforces it in the store.
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REVISION_STATUSES = ("pending", "in_progress", "completed")

REVISION_TRANSITIONS = {
    "pending":     ["in_progress", "completed"],
    "in_progress": ["completed"],
    "completed":   [],
}

# Reason id → label shown to the client
REVISION_REASONS = {
    "update_info": "I need to update/add some information",
    "incorrect": "Something looks incorrect",
    "tone_format": "I want to change the tone or format",
    "target_role": "This doesn't match my target role",
    "other": "Other (write below)",
}

_OPEN_FILTER = db.text("status != 'completed'")


def validate_revision_transition(old_status, new_status):
    """Return True if the RevisionRequest status transition is allowed."""
    return new_status in REVISION_TRANSITIONS.get(old_status, [])


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevisionRequest(db.Model):
    """Change request raised by a client on a delivered artifact."""

    __tablename__ = "revision_requests"
    __table_args__ = (
        db.Index(
            "uq_revision_open_per_delivery", "delivery_id",
            unique=True,
            sqlite_where=_OPEN_FILTER,
            postgresql_where=_OPEN_FILTER,
        ),
        db.Index("ix_revision_client_status", "client_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    delivery_id = db.Column(
        db.String(36), db.ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reasons = db.Column(db.JSON, nullable=False, default=list, comment="List of REVISION_REASONS ids")
    custom_reason = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=False)
    attachment_refs = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(20), nullable=False, default="pending")
    due_date = db.Column(db.Date, nullable=True, comment="SLA target, informational only")
    estimated_completion = db.Column(db.Date, nullable=True, comment="Staff estimate given in the revision response")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    delivery = db.relationship("Delivery", back_populates="revision_requests")
    client = db.relationship("Client", back_populates="revision_requests")

    @property
    def is_open(self) -> bool:
        return self.status != "completed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "client_id": self.client_id,
            "reasons": list(self.reasons or []),
            "custom_reason": self.custom_reason,
            "description": self.description,
            "attachment_refs": list(self.attachment_refs or []),
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "estimated_completion": (
                self.estimated_completion.isoformat() if self.estimated_completion else None
            ),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<RevisionRequest {self.id} delivery={self.delivery_id} {self.status}>"
