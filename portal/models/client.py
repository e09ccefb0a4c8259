"""
Client Engagement Portal
Client domain models.

Models:
    - Client:          identity and service context for one engagement
    - ClientMessage:   staff → client message (revision responses, notes)
    - ClientDocument:  file the client uploaded (intake attachments, resumes)

Architecture:
    Client ──1:N──▶ Delivery ──1:N──▶ RevisionRequest
    Client ──1:1──▶ ProgressRecord
    Client ──1:N──▶ ClientHistory / ClientMessage / ClientDocument

Every dependent row cascades from Client so that the teardown data cascade
is a single ``db.session.delete(client)`` + commit.

Milestone flags (intake_submitted, resume_uploaded, session_booked) are
server-authoritative and monotonic: once True they are never reset.
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Milestone flag → onboarding step it completes (steps 1–3)
MILESTONE_STEPS = {
    "intake_submitted": 1,
    "resume_uploaded": 2,
    "session_booked": 3,
}

CLIENT_STATUSES = {"active", "in_progress", "on_hold", "completed", "archived"}

PAYMENT_STATUSES = {"pending", "paid", "refunded", "failed"}

DOCUMENT_KINDS = {"resume", "intake_attachment", "cover_letter", "other"}


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Client(db.Model):
    """One engagement: contact details, service tier and milestone flags."""

    __tablename__ = "clients"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(50), nullable=True)

    service_type = db.Column(db.String(100), nullable=True, comment="Service tier reference")
    is_rush = db.Column(db.Boolean, nullable=False, default=False)
    rush_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_delivery_date = db.Column(db.Date, nullable=True)

    # Milestones (forward-only)
    intake_submitted = db.Column(db.Boolean, nullable=False, default=False)
    resume_uploaded = db.Column(db.Boolean, nullable=False, default=False)
    session_booked = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(30), nullable=False, default="active")
    payment_status = db.Column(db.String(30), nullable=False, default="pending")

    identity_id = db.Column(
        db.String(64), nullable=True, unique=True,
        comment="User id in the external identity provider (None for staff-only records)",
    )
    created_via = db.Column(db.String(30), nullable=False, default="staff", comment="staff | intake")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    deliveries = db.relationship(
        "Delivery", back_populates="client", cascade="all, delete-orphan",
        order_by="Delivery.delivered_at",
    )
    revision_requests = db.relationship(
        "RevisionRequest", back_populates="client", cascade="all, delete-orphan",
    )
    progress_record = db.relationship(
        "ProgressRecord", back_populates="client", cascade="all, delete-orphan", uselist=False,
    )
    history = db.relationship(
        "ClientHistory", back_populates="client", cascade="all, delete-orphan",
    )
    messages = db.relationship(
        "ClientMessage", back_populates="client", cascade="all, delete-orphan",
    )
    documents = db.relationship(
        "ClientDocument", back_populates="client", cascade="all, delete-orphan",
    )

    def milestones(self) -> dict:
        return {name: bool(getattr(self, name)) for name in MILESTONE_STEPS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "service_type": self.service_type,
            "is_rush": self.is_rush,
            "rush_deadline": self.rush_deadline.isoformat() if self.rush_deadline else None,
            "estimated_delivery_date": (
                self.estimated_delivery_date.isoformat() if self.estimated_delivery_date else None
            ),
            "milestones": self.milestones(),
            "status": self.status,
            "payment_status": self.payment_status,
            "identity_id": self.identity_id,
            "created_via": self.created_via,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Client {self.id} {self.name!r}>"


class ClientMessage(db.Model):
    """Message shown in the client's inbox."""

    __tablename__ = "client_messages"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sender_type = db.Column(db.String(20), nullable=False, default="staff", comment="staff | client | system")
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    client = db.relationship("Client", back_populates="messages")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "sender_type": self.sender_type,
            "body": self.body,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ClientDocument(db.Model):
    """File uploaded by the client. Only the opaque reference and size are kept."""

    __tablename__ = "client_documents"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind = db.Column(db.String(30), nullable=False, default="other")
    file_ref = db.Column(db.String(500), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    client = db.relationship("Client", back_populates="documents")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "kind": self.kind,
            "file_ref": self.file_ref,
            "file_size": self.file_size,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }
