"""
Client Engagement Portal
Delivery read models and the delivery comment thread.

Reads:
    list_deliveries               client's deliveries, oldest first
    list_versions                 append-only DeliveryVersion log of one delivery
    list_open_revision_requests   composite read: every non-completed request for a client

Writes:
    add_comment                   client or staff comment on a delivery
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.client import Client
from portal.models.delivery import DELIVERY_STATUSES, Delivery, DeliveryComment, DeliveryVersion
from portal.models.revision import RevisionRequest

logger = logging.getLogger(__name__)

COMMENT_MAX_LENGTH = 5000


def _ensure_client(client_id: str) -> None:
    if db.session.get(Client, client_id) is None:
        raise NotFoundError("Client", client_id)


def get_delivery(delivery_id: str) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFoundError("Delivery", delivery_id)
    return delivery


def deliveries_query(client_id: str, status: str | None = None):
    """Query of a client's deliveries, for callers that paginate."""
    _ensure_client(client_id)
    if status is not None and status not in DELIVERY_STATUSES:
        raise ValidationError(f"Unknown delivery status '{status}'",
                              details={"status": f"must be one of {list(DELIVERY_STATUSES)}"})
    q = Delivery.query.filter_by(client_id=client_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Delivery.delivered_at.asc(), Delivery.created_at.asc())


def list_deliveries(client_id: str, status: str | None = None) -> list[Delivery]:
    return deliveries_query(client_id, status).all()


def list_versions(delivery_id: str) -> list[DeliveryVersion]:
    delivery = get_delivery(delivery_id)
    return list(delivery.versions)


def list_open_revision_requests(client_id: str) -> list[RevisionRequest]:
    """All pending / in-progress revision requests for a client, oldest first."""
    _ensure_client(client_id)
    stmt = (
        select(RevisionRequest)
        .where(RevisionRequest.client_id == client_id, RevisionRequest.status != "completed")
        .order_by(RevisionRequest.created_at.asc())
    )
    return list(db.session.execute(stmt).scalars())


def list_comments(delivery_id: str) -> list[DeliveryComment]:
    return list(get_delivery(delivery_id).comments)


def add_comment(delivery_id: str, *, author: str, content: str, is_staff: bool = False) -> DeliveryComment:
    errors = {}
    if not isinstance(author, str) or not author.strip():
        errors["author"] = "required"
    if not isinstance(content, str) or not content.strip():
        errors["content"] = "required"
    elif len(content) > COMMENT_MAX_LENGTH:
        errors["content"] = f"at most {COMMENT_MAX_LENGTH} characters"
    if errors:
        raise ValidationError("Invalid comment", details=errors)

    delivery = get_delivery(delivery_id)
    comment = DeliveryComment(
        delivery_id=delivery.id,
        author=author.strip(),
        is_staff=bool(is_staff),
        content=content.strip(),
    )
    db.session.add(comment)
    db.session.commit()
    logger.info("Comment added to delivery %s", delivery.id,
                extra={"delivery_id": delivery.id, "client_id": delivery.client_id})
    return comment
