"""
Client Engagement Portal
Client history — append-only trail of lifecycle events per client.

Models:
    - ClientHistory: one row per action (delivery created, approved, revision
      requested/advanced/fulfilled, milestone recorded, status changed).

``write_history`` only adds to the session; the caller's transaction commits
it together with the state change it describes.
"""

from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

HISTORY_ACTIONS = {
    "delivery.submitted",
    "delivery.approved",
    "delivery.revision_requested",
    "delivery.revision_fulfilled",
    "revision.advanced",
    "client.created",
    "client.milestone",
    "client.status",
}


class ClientHistory(db.Model):
    """Immutable history entry for a client."""

    __tablename__ = "client_history"
    __table_args__ = (
        db.Index("idx_client_history_client_ts", "client_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False,
    )
    action_type = db.Column(db.String(60), nullable=False)
    description = db.Column(db.Text, nullable=True)
    entity_id = db.Column(db.String(36), nullable=True, comment="Delivery / revision request id")
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    actor = db.Column(db.String(150), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    client = db.relationship("Client", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "action_type": self.action_type,
            "description": self.description,
            "entity_id": self.entity_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "actor": self.actor,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def write_history(
    client_id: str,
    action_type: str,
    *,
    description: str | None = None,
    entity_id: str | None = None,
    old_value=None,
    new_value=None,
    actor: str | None = None,
) -> ClientHistory:
    """Stage a history row in the current session (no commit).

    Raises:
        ValueError: ``action_type`` is not one of HISTORY_ACTIONS.
    """
    if action_type not in HISTORY_ACTIONS:
        raise ValueError(f"Unknown history action '{action_type}'")
    entry = ClientHistory(
        client_id=client_id,
        action_type=action_type,
        description=description,
        entity_id=entity_id,
        old_value=old_value,
        new_value=new_value,
        actor=actor,
    )
    db.session.add(entry)
    return entry
