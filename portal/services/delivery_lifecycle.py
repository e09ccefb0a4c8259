"""
Client Engagement Portal
Delivery Lifecycle — the Delivery state machine and its revision hooks.

    submit_for_review ──▶ delivered ──request_revision──▶ revision_requested
                            │  ▲                                │
                            │  └──────── fulfill_revision ──────┘
                            └── approve ──▶ approved (terminal)

Rules:
    - Every transition is one commit. The status flip, the rows it depends
      on (RevisionRequest, DeliveryVersion, ClientHistory) and nothing else
      are written together or not at all.
    - A failed precondition raises ConflictingState and writes nothing.
      A concurrent writer that committed first makes this commit fail with
      StaleDataError, which is reported the same way.
    - Notifications are dispatched only after the commit. Their failures
      come back as ``warnings`` on the result, never as an exception.

Every public function returns a dict with the affected records plus a
``warnings`` list (DependencyFailure.to_warning() entries).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy import func, select

from portal.core.exceptions import ConflictingState, NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_history
from portal.models.client import Client
from portal.models.delivery import DOCUMENT_TYPES, Delivery, DeliveryVersion
from portal.models.revision import REVISION_REASONS, RevisionRequest
from portal.services.notification import notify
from portal.services.revision_versioning import compute_revision_title
from portal.utils.helpers import add_business_days, commit_or_conflict

logger = logging.getLogger(__name__)

_REASON_IDS_BY_LABEL = {label.lower(): rid for rid, label in REVISION_REASONS.items()}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Lookups ──────────────────────────────────────────────────────────────


def _get_client(client_id: str) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


def _get_delivery(delivery_id: str) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFoundError("Delivery", delivery_id)
    return delivery


def _get_revision_request(revision_request_id: str) -> RevisionRequest:
    rr = db.session.get(RevisionRequest, revision_request_id)
    if rr is None:
        raise NotFoundError("RevisionRequest", revision_request_id)
    return rr


# ── Input validation ─────────────────────────────────────────────────────


def _validate_file(file_ref, file_size, errors: dict) -> None:
    if not isinstance(file_ref, str) or not file_ref.strip():
        errors["file_ref"] = "required"
    if file_size is not None and (
        not isinstance(file_size, int) or isinstance(file_size, bool) or file_size < 0
    ):
        errors["file_size"] = "must be a non-negative integer (bytes)"


def normalize_reasons(reasons, custom_reason: str | None = None) -> list[str]:
    """Map reason ids or their labels to ids, keeping first-seen order.

    A non-blank ``custom_reason`` implies the "other" reason.

    Raises:
        ValidationError: unknown reason, or no reason at all.
    """
    if reasons is None:
        reasons = []
    if isinstance(reasons, str) or not isinstance(reasons, (list, tuple, set)):
        raise ValidationError("reasons must be a list", details={"reasons": "must be a list"})

    normalized: list[str] = []
    unknown = []
    for raw in reasons:
        key = raw.strip() if isinstance(raw, str) else raw
        if key in REVISION_REASONS:
            rid = key
        elif isinstance(key, str) and key.lower() in _REASON_IDS_BY_LABEL:
            rid = _REASON_IDS_BY_LABEL[key.lower()]
        else:
            unknown.append(raw)
            continue
        if rid not in normalized:
            normalized.append(rid)

    if unknown:
        raise ValidationError(
            "Unknown revision reason(s)",
            details={"reasons": f"unknown: {unknown}", "allowed": sorted(REVISION_REASONS)},
        )
    if custom_reason and custom_reason.strip() and "other" not in normalized:
        normalized.append("other")
    if not normalized:
        raise ValidationError("At least one reason is required", details={"reasons": "required"})
    return normalized


# ── Operations ───────────────────────────────────────────────────────────


def submit_for_review(
    client_id: str,
    *,
    document_title: str,
    file_ref: str,
    document_type: str = "document",
    file_size: int | None = None,
    mime_type: str | None = None,
    actor: str | None = None,
) -> dict:
    """Create a Delivery in ``delivered`` and tell the client it is ready."""
    errors: dict = {}
    if not isinstance(document_title, str) or not document_title.strip():
        errors["document_title"] = "required"
    if document_type not in DOCUMENT_TYPES:
        errors["document_type"] = f"must be one of {sorted(DOCUMENT_TYPES)}"
    _validate_file(file_ref, file_size, errors)
    if errors:
        raise ValidationError("Invalid delivery", details=errors)

    client = _get_client(client_id)
    now = _utcnow()
    delivery = Delivery(
        client_id=client.id,
        document_title=document_title.strip(),
        document_type=document_type,
        file_ref=file_ref.strip(),
        file_size=file_size,
        mime_type=mime_type,
        status="delivered",
        delivered_at=now,
    )
    db.session.add(delivery)
    db.session.flush()
    db.session.add(DeliveryVersion(
        delivery_id=delivery.id,
        version_number=1,
        document_title=delivery.document_title,
        file_ref=delivery.file_ref,
        file_size=file_size,
    ))
    write_history(
        client.id, "delivery.submitted",
        description=f"Delivered '{delivery.document_title}'",
        entity_id=delivery.id,
        new_value={"status": "delivered"},
        actor=actor,
    )
    commit_or_conflict("Delivery", delivery.id)
    logger.info("Delivery %s submitted for client %s", delivery.id, client.id,
                extra={"delivery_id": delivery.id, "client_id": client.id})

    warnings: list = []
    notify("delivery_ready", delivery_id=delivery.id, client_id=client.id,
           payload={"document_title": delivery.document_title,
                    "document_type": delivery.document_type},
           warnings=warnings)
    return {"delivery": delivery.to_dict(), "warnings": warnings}


def approve(delivery_id: str, *, actor: str | None = None) -> dict:
    """delivered → approved. Prompts for a testimonial when nothing is left to approve."""
    delivery = _get_delivery(delivery_id)
    if delivery.status != "delivered":
        raise ConflictingState("Delivery", delivery.id, delivery.status, expected=("delivered",))

    delivery.status = "approved"
    delivery.approved_at = _utcnow()
    write_history(
        delivery.client_id, "delivery.approved",
        description=f"Approved '{delivery.document_title}'",
        entity_id=delivery.id,
        old_value={"status": "delivered"},
        new_value={"status": "approved"},
        actor=actor,
    )
    commit_or_conflict("Delivery", delivery.id, "delivered")
    logger.info("Delivery %s approved", delivery.id,
                extra={"delivery_id": delivery.id, "client_id": delivery.client_id})

    warnings: list = []
    outstanding = db.session.execute(
        select(func.count(Delivery.id)).where(
            Delivery.client_id == delivery.client_id,
            Delivery.status != "approved",
        )
    ).scalar_one()
    testimonial_prompted = outstanding == 0
    if testimonial_prompted:
        notify("testimonial_prompt", delivery_id=delivery.id, client_id=delivery.client_id,
               payload={"document_title": delivery.document_title}, warnings=warnings)

    return {
        "delivery": delivery.to_dict(),
        "testimonial_prompted": testimonial_prompted,
        "warnings": warnings,
    }


def request_revision(
    delivery_id: str,
    *,
    reasons,
    description: str,
    custom_reason: str | None = None,
    attachment_refs: list | None = None,
    actor: str | None = None,
) -> dict:
    """delivered → revision_requested, creating a pending RevisionRequest.

    Input is validated before anything is read or written.
    """
    errors: dict = {}
    if not isinstance(description, str) or not description.strip():
        errors["description"] = "required"
    try:
        reason_ids = normalize_reasons(reasons, custom_reason)
    except ValidationError as exc:
        errors.update(exc.details)
        reason_ids = []
    attachment_refs = attachment_refs or []
    if not isinstance(attachment_refs, list) or not all(
        isinstance(a, str) and a.strip() for a in attachment_refs
    ):
        errors["attachment_refs"] = "must be a list of file references"
    if errors:
        raise ValidationError("Invalid revision request", details=errors)

    delivery = _get_delivery(delivery_id)
    if delivery.status != "delivered":
        raise ConflictingState("Delivery", delivery.id, delivery.status, expected=("delivered",))
    if delivery.open_revision_request is not None:
        raise ConflictingState("Delivery", delivery.id, delivery.status,
                               reason="an open revision request already exists")

    sla_days = int(current_app.config.get("REVISION_SLA_BUSINESS_DAYS", 3))
    rr = RevisionRequest(
        delivery_id=delivery.id,
        client_id=delivery.client_id,
        reasons=reason_ids,
        custom_reason=custom_reason.strip() if custom_reason and custom_reason.strip() else None,
        description=description.strip(),
        attachment_refs=[a.strip() for a in attachment_refs],
        status="pending",
        due_date=add_business_days(date.today(), sla_days),
    )
    db.session.add(rr)
    delivery.status = "revision_requested"
    db.session.flush()
    write_history(
        delivery.client_id, "delivery.revision_requested",
        description=f"Revision requested on '{delivery.document_title}'",
        entity_id=delivery.id,
        old_value={"status": "delivered"},
        new_value={"status": "revision_requested", "revision_request_id": rr.id,
                   "reasons": reason_ids},
        actor=actor,
    )
    commit_or_conflict("Delivery", delivery.id, "delivered")
    logger.info("Revision %s requested on delivery %s", rr.id, delivery.id,
                extra={"delivery_id": delivery.id, "revision_request_id": rr.id,
                       "client_id": delivery.client_id})

    warnings: list = []
    notify("revision_requested", delivery_id=delivery.id, client_id=delivery.client_id,
           payload={"revision_request_id": rr.id, "reasons": reason_ids,
                    "due_date": rr.due_date.isoformat()},
           warnings=warnings)
    return {"revision_request": rr.to_dict(), "delivery": delivery.to_dict(), "warnings": warnings}


def fulfill_revision(
    revision_request_id: str,
    *,
    file_ref: str,
    new_title: str | None = None,
    file_size: int | None = None,
    mime_type: str | None = None,
    actor: str | None = None,
) -> dict:
    """Re-deliver a revised artifact.

    In one transaction: overwrite the Delivery's title/file in place, set it
    back to ``delivered``, force the RevisionRequest to ``completed`` (from any
    status) and append a DeliveryVersion. Any failure rolls all of it back.
    Only the delivery's most recent request can be fulfilled.
    """
    errors: dict = {}
    _validate_file(file_ref, file_size, errors)
    if new_title is not None and not isinstance(new_title, str):
        errors["new_title"] = "must be a string"
    if errors:
        raise ValidationError("Invalid revision fulfillment", details=errors)

    rr = _get_revision_request(revision_request_id)
    delivery = rr.delivery
    if delivery.status != "revision_requested":
        raise ConflictingState("Delivery", delivery.id, delivery.status,
                               expected=("revision_requested",))
    latest = delivery.revision_requests[-1] if delivery.revision_requests else None
    if latest is None or latest.id != rr.id:
        raise ConflictingState("RevisionRequest", rr.id, rr.status,
                               reason="not the most recent revision request on this delivery")

    old_title = delivery.document_title
    old_rr_status = rr.status
    try:
        version_number = delivery.current_version_number + 1
        scope = current_app.config.get("REVISION_TITLE_SCOPE", "global")
        title = compute_revision_title(delivery, scope, new_title)
        now = _utcnow()

        delivery.document_title = title
        delivery.file_ref = file_ref.strip()
        delivery.file_size = file_size
        delivery.mime_type = mime_type
        delivery.status = "delivered"
        delivery.delivered_at = now
        delivery.approved_at = None

        rr.status = "completed"
        rr.completed_at = now

        version = DeliveryVersion(
            delivery_id=delivery.id,
            version_number=version_number,
            document_title=title,
            file_ref=delivery.file_ref,
            file_size=file_size,
            revision_request_id=rr.id,
        )
        db.session.add(version)
        write_history(
            delivery.client_id, "delivery.revision_fulfilled",
            description=f"Revised '{old_title}' as '{title}'",
            entity_id=delivery.id,
            old_value={"status": "revision_requested", "document_title": old_title,
                       "revision_request_status": old_rr_status},
            new_value={"status": "delivered", "document_title": title,
                       "revision_request_status": "completed", "version": version_number},
            actor=actor,
        )
    except Exception:
        db.session.rollback()
        logger.exception("Revision fulfillment failed for request %s", revision_request_id)
        raise
    commit_or_conflict("Delivery", delivery.id, "revision_requested")
    logger.info("Revision %s fulfilled: delivery %s is now %r", rr.id, delivery.id, title,
                extra={"delivery_id": delivery.id, "revision_request_id": rr.id,
                       "client_id": delivery.client_id})

    warnings: list = []
    notify("revision_complete", delivery_id=delivery.id, client_id=delivery.client_id,
           payload={"revision_request_id": rr.id, "document_title": title,
                    "version": version_number},
           warnings=warnings)
    return {
        "delivery": delivery.to_dict(),
        "revision_request": rr.to_dict(),
        "version": version.to_dict(),
        "warnings": warnings,
    }
