"""
Client Engagement Portal
Client Service — client records, milestones and uploaded documents.

Milestones are server-authoritative and forward-only: ``record_milestone``
can set a flag but never clear it. Bulk status updates apply each client
in its own commit and report per-client outcomes instead of stopping at
the first failure.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email

from portal.core.exceptions import NotFoundError, PortalError, ValidationError
from portal.models import db
from portal.models.audit import write_history
from portal.models.client import (
    CLIENT_STATUSES,
    DOCUMENT_KINDS,
    MILESTONE_STEPS,
    PAYMENT_STATUSES,
    Client,
    ClientDocument,
)
from portal.utils.helpers import parse_date, parse_datetime

logger = logging.getLogger(__name__)

CREATED_VIA = {"staff", "intake"}


def get_client(client_id: str) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


def create_client(data: dict, *, actor: str | None = None) -> Client:
    """Create a client from staff input or the intake flow.

    Required: name, email. Optional: phone, service_type, is_rush,
    rush_deadline, estimated_delivery_date, payment_status, identity_id,
    created_via.
    """
    errors = {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not name:
        errors["name"] = "required"
    if not email:
        errors["email"] = "required"
    else:
        try:
            email = validate_email(email, check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors["email"] = f"invalid email address: {e}"

    payment_status = data.get("payment_status", "pending")
    if payment_status not in PAYMENT_STATUSES:
        errors["payment_status"] = f"must be one of {sorted(PAYMENT_STATUSES)}"
    created_via = data.get("created_via", "staff")
    if created_via not in CREATED_VIA:
        errors["created_via"] = f"must be one of {sorted(CREATED_VIA)}"

    is_rush = bool(data.get("is_rush", False))
    rush_deadline = parse_datetime(data.get("rush_deadline"))
    if data.get("rush_deadline") and rush_deadline is None:
        errors["rush_deadline"] = "invalid datetime"
    estimated = parse_date(data.get("estimated_delivery_date"))
    if data.get("estimated_delivery_date") and estimated is None:
        errors["estimated_delivery_date"] = "invalid date"

    identity_id = (data.get("identity_id") or "").strip() or None
    if identity_id and Client.query.filter_by(identity_id=identity_id).first():
        errors["identity_id"] = "already linked to another client"

    if errors:
        raise ValidationError("Invalid client", details=errors)

    client = Client(
        name=name,
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        service_type=(data.get("service_type") or "").strip() or None,
        is_rush=is_rush,
        rush_deadline=rush_deadline if is_rush else None,
        estimated_delivery_date=estimated,
        payment_status=payment_status,
        identity_id=identity_id,
        created_via=created_via,
    )
    db.session.add(client)
    db.session.flush()
    write_history(client.id, "client.created", description=f"Client '{name}' created",
                  new_value={"created_via": created_via}, actor=actor)
    db.session.commit()
    logger.info("Client %s created via %s", client.id, created_via, extra={"client_id": client.id})
    return client


def record_milestone(client_id: str, milestone: str, value=True, *, actor: str | None = None) -> Client:
    """Set one milestone flag. Flags are forward-only; asking to clear one is rejected."""
    if milestone not in MILESTONE_STEPS:
        raise ValidationError(
            f"Unknown milestone '{milestone}'",
            details={"milestone": f"must be one of {list(MILESTONE_STEPS)}"},
        )
    if value is not True:
        raise ValidationError(
            "Milestones can only be set, never cleared",
            details={"value": "must be true"},
        )

    client = get_client(client_id)
    if getattr(client, milestone):
        return client

    setattr(client, milestone, True)
    write_history(client.id, "client.milestone", description=f"Milestone {milestone} reached",
                  old_value={milestone: False}, new_value={milestone: True}, actor=actor)
    db.session.commit()
    logger.info("Client %s milestone %s", client.id, milestone, extra={"client_id": client.id})
    return client


def update_status(client_id: str, status: str, *, actor: str | None = None) -> Client:
    if status not in CLIENT_STATUSES:
        raise ValidationError(f"Unknown client status '{status}'",
                              details={"status": f"must be one of {sorted(CLIENT_STATUSES)}"})
    client = get_client(client_id)
    old = client.status
    if old == status:
        return client
    client.status = status
    write_history(client.id, "client.status", description=f"Status {old} → {status}",
                  old_value={"status": old}, new_value={"status": status}, actor=actor)
    db.session.commit()
    return client


def bulk_update_status(client_ids: list, status: str, *, actor: str | None = None) -> dict:
    """Apply ``status`` to every client independently.

    Returns:
        {"succeeded": int, "failed": int, "results": [{client_id, ok, error?}]}
    """
    if status not in CLIENT_STATUSES:
        raise ValidationError(f"Unknown client status '{status}'",
                              details={"status": f"must be one of {sorted(CLIENT_STATUSES)}"})
    if not isinstance(client_ids, list) or not client_ids:
        raise ValidationError("client_ids must be a non-empty list", details={"client_ids": "required"})

    results = []
    for client_id in client_ids:
        try:
            update_status(client_id, status, actor=actor)
            results.append({"client_id": client_id, "ok": True})
        except PortalError as exc:
            db.session.rollback()
            results.append({"client_id": client_id, "ok": False, "error": str(exc)})

    succeeded = sum(1 for r in results if r["ok"])
    logger.info("Bulk status '%s': %d succeeded, %d failed", status, succeeded, len(results) - succeeded)
    return {"succeeded": succeeded, "failed": len(results) - succeeded, "results": results}


def add_client_document(client_id: str, *, file_ref: str, kind: str = "other",
                        file_size: int | None = None) -> ClientDocument:
    """Record a file the client uploaded (the file itself lives in the file store)."""
    errors = {}
    if not isinstance(file_ref, str) or not file_ref.strip():
        errors["file_ref"] = "required"
    if kind not in DOCUMENT_KINDS:
        errors["kind"] = f"must be one of {sorted(DOCUMENT_KINDS)}"
    if file_size is not None and (not isinstance(file_size, int) or isinstance(file_size, bool) or file_size < 0):
        errors["file_size"] = "must be a non-negative integer (bytes)"
    if errors:
        raise ValidationError("Invalid document", details=errors)

    client = get_client(client_id)
    doc = ClientDocument(client_id=client.id, kind=kind, file_ref=file_ref.strip(), file_size=file_size)
    db.session.add(doc)
    db.session.commit()
    return doc


def list_history(client_id: str) -> list:
    client = get_client(client_id)
    return sorted(client.history, key=lambda h: (h.created_at, h.id))
