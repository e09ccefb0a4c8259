"""
Client Engagement Portal
OrphanedIdentity — identities whose removal from the external identity
provider failed after the client's data was already deleted.

Rows are created by the teardown service when Phase 2 fails and removed by
the orphaned-identity retry job once the provider confirms deletion (or
reports the identity as already gone).
"""

from datetime import datetime, timezone

from portal.models import db


class OrphanedIdentity(db.Model):
    """Pending identity-provider cleanup."""

    __tablename__ = "orphaned_identities"

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(db.String(64), nullable=False, unique=True)
    client_id = db.Column(db.String(36), nullable=True, comment="Deleted client, kept for tracing only")
    attempts = db.Column(db.Integer, nullable=False, default=1)
    last_error = db.Column(db.Text, nullable=True)
    abandoned = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )
    last_attempt_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identity_id": self.identity_id,
            "client_id": self.client_id,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "abandoned": self.abandoned,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
        }

    def __repr__(self) -> str:
        return f"<OrphanedIdentity {self.identity_id} attempts={self.attempts}>"
