"""
Client Engagement Portal
Delivery domain models.

Models:
    - Delivery:         one deliverable artifact for a client (current title/file/status)
    - DeliveryVersion:  append-only log of every instance the Delivery has carried
    - DeliveryComment:  client/staff discussion thread on a delivery

Lifecycle states (Delivery):
    delivered → revision_requested → delivered (re-fulfilled) → ... → approved (terminal)

Invariants:
    - approved_at is set if and only if status == "approved".
    - A revision fulfillment overwrites title/file/status on the Delivery row
      in place and appends one DeliveryVersion; versions are never updated.
    - ``version_id`` is the optimistic-concurrency column: two writers racing on
      the same row make the loser fail with StaleDataError at flush time.
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DELIVERY_STATUSES = ("delivered", "revision_requested", "approved")

DOCUMENT_TYPES = {
    "resume", "cover_letter", "thank_you_letter", "linkedin_profile", "bio",
    "outreach_letter", "document", "revision_response",
}


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Delivery(db.Model):
    """Current state of one deliverable artifact."""

    __tablename__ = "deliveries"
    __table_args__ = (
        db.Index("ix_deliveries_client_status", "client_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    document_title = db.Column(db.String(300), nullable=False, index=True)
    document_type = db.Column(db.String(50), nullable=False, default="document")
    file_ref = db.Column(db.String(500), nullable=False, comment="Opaque file store reference / URL")
    file_size = db.Column(db.Integer, nullable=True, comment="Bytes")
    mime_type = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(30), nullable=False, default="delivered")
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    client = db.relationship("Client", back_populates="deliveries")
    revision_requests = db.relationship(
        "RevisionRequest", back_populates="delivery", cascade="all, delete-orphan",
        order_by="RevisionRequest.created_at",
    )
    versions = db.relationship(
        "DeliveryVersion", back_populates="delivery", cascade="all, delete-orphan",
        order_by="DeliveryVersion.version_number",
    )
    comments = db.relationship(
        "DeliveryComment", back_populates="delivery", cascade="all, delete-orphan",
        order_by="DeliveryComment.created_at",
    )

    @property
    def open_revision_request(self):
        for rr in self.revision_requests:
            if rr.status != "completed":
                return rr
        return None

    @property
    def current_version_number(self) -> int:
        return max((v.version_number for v in self.versions), default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "document_title": self.document_title,
            "document_type": self.document_type,
            "file_ref": self.file_ref,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "status": self.status,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "current_version": self.current_version_number,
        }

    def __repr__(self) -> str:
        return f"<Delivery {self.id} {self.document_title!r} {self.status}>"


class DeliveryVersion(db.Model):
    """Immutable snapshot written on creation and on every revision fulfillment.

    ``revision_request_id`` is None for the first (original) version.
    """

    __tablename__ = "delivery_versions"
    __table_args__ = (
        db.UniqueConstraint("delivery_id", "version_number", name="uq_delivery_version_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(
        db.String(36), db.ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    document_title = db.Column(db.String(300), nullable=False)
    file_ref = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    revision_request_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    delivery = db.relationship("Delivery", back_populates="versions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "version_number": self.version_number,
            "document_title": self.document_title,
            "file_ref": self.file_ref,
            "file_size": self.file_size,
            "revision_request_id": self.revision_request_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DeliveryComment(db.Model):
    """Comment on a delivery, from the client or from staff."""

    __tablename__ = "delivery_comments"

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(
        db.String(36), db.ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    author = db.Column(db.String(150), nullable=False)
    is_staff = db.Column(db.Boolean, nullable=False, default=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    delivery = db.relationship("Delivery", back_populates="comments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "author": self.author,
            "is_staff": self.is_staff,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
