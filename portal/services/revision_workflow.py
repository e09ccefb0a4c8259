"""
Client Engagement Portal
Revision Request Workflow — staff-driven status changes.

    pending ──▶ in_progress ──▶ completed
       └────────────────────────▲

Only the transitions in REVISION_TRANSITIONS are accepted here; anything
else (backwards, repeating, leaving ``completed``) raises InvalidTransition
and writes nothing. The one exception lives in
``delivery_lifecycle.fulfill_revision``, which completes a request from any
status as part of re-delivering the artifact.

``due_date`` is informational and never blocks a transition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from portal.core.exceptions import InvalidTransition, NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_history
from portal.models.client import ClientMessage
from portal.models.revision import (
    REVISION_STATUSES,
    REVISION_TRANSITIONS,
    RevisionRequest,
    validate_revision_transition,
)
from portal.utils.helpers import commit_or_conflict, parse_date

logger = logging.getLogger(__name__)


def _get_revision_request(revision_request_id: str) -> RevisionRequest:
    rr = db.session.get(RevisionRequest, revision_request_id)
    if rr is None:
        raise NotFoundError("RevisionRequest", revision_request_id)
    return rr


def available_transitions(revision_request_id: str) -> list[str]:
    rr = _get_revision_request(revision_request_id)
    return list(REVISION_TRANSITIONS.get(rr.status, []))


def advance(
    revision_request_id: str,
    next_status: str,
    *,
    message: str | None = None,
    estimated_completion=None,
    actor: str | None = None,
) -> dict:
    """Move a revision request along the transition table.

    Args:
        message: Optional staff response; stored as a ClientMessage for the
            client in the same transaction.
        estimated_completion: Optional date (or ISO string) the staff expect
            to finish by. Stored on the request and appended to the response.
    """
    if next_status not in REVISION_STATUSES:
        raise ValidationError(
            f"Unknown revision status '{next_status}'",
            details={"status": f"must be one of {list(REVISION_STATUSES)}"},
        )
    if message is not None and not isinstance(message, str):
        raise ValidationError("message must be a string", details={"message": "must be a string"})
    estimate = None
    if estimated_completion not in (None, ""):
        estimate = parse_date(estimated_completion)
        if estimate is None:
            raise ValidationError(
                "estimated_completion must be a date",
                details={"estimated_completion": "expected YYYY-MM-DD"},
            )

    rr = _get_revision_request(revision_request_id)
    old_status = rr.status
    if not validate_revision_transition(old_status, next_status):
        raise InvalidTransition(rr.id, old_status, next_status)

    rr.status = next_status
    if next_status == "completed":
        rr.completed_at = datetime.now(timezone.utc)
    if estimate is not None:
        rr.estimated_completion = estimate

    write_history(
        rr.client_id, "revision.advanced",
        description=f"Revision request {old_status} → {next_status}",
        entity_id=rr.id,
        old_value={"status": old_status},
        new_value={"status": next_status,
                   "estimated_completion": estimate.isoformat() if estimate else None},
        actor=actor,
    )
    response = _response_body(message, estimate)
    if response:
        db.session.add(ClientMessage(
            client_id=rr.client_id,
            sender_type="staff",
            body=response,
        ))

    commit_or_conflict("RevisionRequest", rr.id, old_status)
    logger.info("Revision request %s: %s → %s", rr.id, old_status, next_status,
                extra={"revision_request_id": rr.id, "client_id": rr.client_id})
    return {"revision_request": rr.to_dict(), "warnings": []}


def _response_body(message: str | None, estimate) -> str | None:
    parts = []
    if message and message.strip():
        parts.append(f"Revision response: {message.strip()}")
    if estimate is not None:
        parts.append(f"Estimated completion: {estimate.isoformat()}")
    return " ".join(parts) or None
