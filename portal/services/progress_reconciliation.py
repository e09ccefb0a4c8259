"""
Client Engagement Portal
Progress Reconciliation — one progress cursor from two sources.

    server view   Client milestone flags (steps 1–3, authoritative)
    local view    LocalProgressCache snapshot (steps 1–5, optimistic)

    merged[step] = server[step] OR local[step]
    current_step = min(5, count(merged) + 1)

The merged snapshot is written back to the local cache on every read, so
once either source reports a step complete the portal never shows less
progress again. Steps 4–5 have no server signal; only the local view or
staff can complete them.
"""

from __future__ import annotations

import logging

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.client import Client
from portal.models.progress import STEP_COUNT
from portal.services.progress_cache import get_progress_cache
from portal.services.progress_snapshot import ProgressSnapshot

logger = logging.getLogger(__name__)


def merge(server: ProgressSnapshot, local: ProgressSnapshot | None) -> ProgressSnapshot:
    """Pure merge of the two views; a missing local view counts as empty."""
    return server.merge(local or ProgressSnapshot.empty())


def server_snapshot(client: Client) -> ProgressSnapshot:
    return ProgressSnapshot.from_milestones(client.milestones())


def _get_client(client_id: str) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


def reconcile(client_id: str) -> ProgressSnapshot:
    """Merge the server view into the stored local view and persist the result."""
    client = _get_client(client_id)
    merged = get_progress_cache().merge_into(client_id, server_snapshot(client))
    logger.debug("Progress reconciled client=%s step=%d", client_id, merged.current_step,
                 extra={"client_id": client_id})
    return merged


def get_merged_progress(client_id: str) -> dict:
    """``{client_id, steps[5], current_step, current_step_name}`` for the portal."""
    merged = reconcile(client_id)
    return {"client_id": client_id, **merged.to_dict()}


def _parse_step(step) -> int:
    """Accept an int, a whole float or a digit string; bools and fractions are rejected."""
    if isinstance(step, bool):
        step_no = None
    elif isinstance(step, int):
        step_no = step
    elif isinstance(step, float) and step.is_integer():
        step_no = int(step)
    elif isinstance(step, str) and step.strip().isdigit():
        step_no = int(step.strip())
    else:
        step_no = None
    if step_no is None or not 1 <= step_no <= STEP_COUNT:
        raise ValidationError(f"step must be an integer 1..{STEP_COUNT}", details={"step": step})
    return step_no


def record_local_step_completion(client_id: str, step) -> dict:
    """Mark ``step`` done in the local view (no server round-trip needed).

    Raises:
        ValidationError: step is not an integer in 1..5.
        NotFoundError: unknown client.
    """
    step_no = _parse_step(step)

    client = _get_client(client_id)
    cache = get_progress_cache()
    cache.merge_into(client_id, ProgressSnapshot.single(step_no))
    merged = cache.merge_into(client_id, server_snapshot(client))
    logger.info("Local step %d recorded for client %s", step_no, client_id,
                extra={"client_id": client_id})
    return {"client_id": client_id, **merged.to_dict()}
