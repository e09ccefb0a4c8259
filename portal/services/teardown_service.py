"""
Client Engagement Portal
Client Teardown — two-phase removal of a client's whole footprint.

Phase 1 (data cascade)
    ``db.session.delete(client)`` + one commit. ORM and ON DELETE CASCADE
    remove deliveries, versions, comments, revision requests, the progress
    record, history, messages and documents. Any failure rolls back and
    raises CascadeFailure: nothing is deleted and nothing is reported as
    deleted.

Phase 2 (identity cascade)
    Only when the client had an identity_id. Calls the identity provider
    outside any transaction. "not_found" counts as success, so re-running
    is always safe. A failure does NOT undo Phase 1; the identity is
    upserted into ``orphaned_identities`` and the result carries a
    DependencyFailure warning. The ``orphaned_identity_retry`` job drains
    that table.

After Phase 1 the client's entry in a non-SQL progress cache is discarded
(best effort).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from portal.core.exceptions import (
    CascadeFailure,
    DependencyFailure,
    NotFoundError,
    PortalError,
    ValidationError,
)
from portal.integrations.identity_gateway import get_identity_provider
from portal.models import db
from portal.models.client import Client
from portal.models.teardown import OrphanedIdentity
from portal.services.progress_cache import SqlProgressCache, get_progress_cache

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Phase 1 ──────────────────────────────────────────────────────────────


def delete_client_data(client_id: str) -> str | None:
    """Phase 1. Returns the client's identity_id (None when it had none).

    Raises:
        NotFoundError: no such client.
        CascadeFailure: the cascade failed and was rolled back.
    """
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    identity_id = client.identity_id

    try:
        db.session.delete(client)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Teardown Phase 1 failed for client %s: %s", client_id, exc,
                     extra={"client_id": client_id})
        raise CascadeFailure(client_id, str(exc)) from exc

    logger.info("Teardown Phase 1 complete for client %s", client_id,
                extra={"client_id": client_id, "identity_id": identity_id})
    return identity_id


def _discard_local_progress(client_id: str) -> None:
    cache = get_progress_cache()
    if isinstance(cache, SqlProgressCache):
        return  # progress_records rows went with the cascade
    try:
        cache.discard(client_id)
    except Exception as exc:
        logger.warning("Could not discard progress cache for client %s: %s", client_id, exc,
                       extra={"client_id": client_id})


# ── Phase 2 ──────────────────────────────────────────────────────────────


def delete_identity(identity_id: str) -> str:
    """Phase 2 alone. Returns "deleted" or "not_found"; raises DependencyFailure."""
    return get_identity_provider().delete_identity(identity_id)


def _queue_orphan(identity_id: str, client_id: str | None, error: str) -> OrphanedIdentity:
    """Upsert the orphaned identity row and bump its attempt count."""
    orphan = OrphanedIdentity.query.filter_by(identity_id=identity_id).first()
    if orphan is None:
        orphan = OrphanedIdentity(identity_id=identity_id, client_id=client_id, attempts=1,
                                  last_error=error)
        db.session.add(orphan)
    else:
        orphan.attempts += 1
        orphan.last_error = error
        orphan.last_attempt_at = _utcnow()
    db.session.commit()
    return orphan


def _clear_orphan(identity_id: str) -> None:
    orphan = OrphanedIdentity.query.filter_by(identity_id=identity_id).first()
    if orphan is not None:
        db.session.delete(orphan)
        db.session.commit()


# ── Orchestration ────────────────────────────────────────────────────────


def teardown_client(client_id: str) -> dict:
    """Run Phase 1 then Phase 2 for one client.

    Returns:
        {"client_id", "data_deleted": True, "identity_id",
         "identity_status": "deleted" | "not_found" | "orphaned" | None,
         "warnings": [...]}
    """
    identity_id = delete_client_data(client_id)
    _discard_local_progress(client_id)

    result = {
        "client_id": client_id,
        "data_deleted": True,
        "identity_id": identity_id,
        "identity_status": None,
        "warnings": [],
    }
    if identity_id is None:
        return result

    try:
        result["identity_status"] = delete_identity(identity_id)
    except DependencyFailure as exc:
        logger.warning("Teardown Phase 2 failed for identity %s: %s", identity_id, exc.detail,
                       extra={"client_id": client_id, "identity_id": identity_id})
        result["identity_status"] = "orphaned"
        result["warnings"].append(exc.to_warning())
        try:
            _queue_orphan(identity_id, client_id, exc.detail)
        except SQLAlchemyError as queue_exc:
            # Phase 1 is committed; only the retry bookkeeping is lost
            db.session.rollback()
            logger.error("Could not queue orphaned identity %s: %s", identity_id, queue_exc,
                         extra={"client_id": client_id, "identity_id": identity_id})
            result["orphan_queued"] = False
        else:
            result["orphan_queued"] = True
    return result


def bulk_teardown(client_ids: list) -> dict:
    """Tear down each client independently.

    Returns:
        {"succeeded": int, "failed": int, "results": [...]}. A client whose
        data was removed counts as succeeded even if its identity was orphaned.
    """
    if not isinstance(client_ids, list) or not client_ids:
        raise ValidationError("client_ids must be a non-empty list", details={"client_ids": "required"})

    results = []
    for client_id in client_ids:
        try:
            outcome = teardown_client(client_id)
            results.append({"ok": True, **outcome})
        except PortalError as exc:
            results.append({"client_id": client_id, "ok": False, "data_deleted": False,
                            "error": str(exc), "code": exc.code})
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Bulk teardown: unexpected store error for client %s: %s", client_id, exc,
                         extra={"client_id": client_id})
            results.append({"client_id": client_id, "ok": False,
                            "data_deleted": db.session.get(Client, client_id) is None,
                            "error": str(exc), "code": "ERR_INTERNAL"})

    succeeded = sum(1 for r in results if r["ok"])
    logger.info("Bulk teardown: %d succeeded, %d failed", succeeded, len(results) - succeeded)
    return {"succeeded": succeeded, "failed": len(results) - succeeded, "results": results}


# ── Orphan queue ─────────────────────────────────────────────────────────


def list_orphaned_identities(include_abandoned: bool = True) -> list[OrphanedIdentity]:
    q = OrphanedIdentity.query
    if not include_abandoned:
        q = q.filter_by(abandoned=False)
    return q.order_by(OrphanedIdentity.created_at.asc()).all()


def retry_orphaned_identities() -> dict:
    """Re-attempt Phase 2 for every queued, non-abandoned identity.

    Rows are removed on "deleted" / "not_found". On failure the attempt
    count goes up; at ORPHAN_RETRY_MAX_ATTEMPTS the row is marked abandoned
    and left for manual cleanup.
    """
    max_attempts = int(current_app.config.get("ORPHAN_RETRY_MAX_ATTEMPTS", 10))
    summary = {"attempted": 0, "resolved": 0, "still_orphaned": 0, "abandoned": 0}

    for orphan in list_orphaned_identities(include_abandoned=False):
        identity_id = orphan.identity_id
        summary["attempted"] += 1
        try:
            delete_identity(identity_id)
        except DependencyFailure as exc:
            orphan = _queue_orphan(identity_id, orphan.client_id, exc.detail)
            if orphan.attempts >= max_attempts:
                orphan.abandoned = True
                db.session.commit()
                summary["abandoned"] += 1
                logger.error("Giving up on orphaned identity %s after %d attempts",
                             identity_id, orphan.attempts, extra={"identity_id": identity_id})
            else:
                summary["still_orphaned"] += 1
            continue
        _clear_orphan(identity_id)
        summary["resolved"] += 1

    logger.info("Orphaned identity retry: %s", summary)
    return summary
