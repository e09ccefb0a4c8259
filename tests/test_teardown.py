"""Tests for portal.services.teardown_service — two-phase client teardown.

Test strategy
-------------
The identity provider is the FakeIdentityProvider from conftest; flipping
``identity_provider.outage`` simulates a provider outage. Phase 1 failures
are simulated by patching the session commit.

Coverage
--------
    1. Phase 1 removes the client and every dependent row in one commit
    2. Phase 1 failure → CascadeFailure, nothing deleted, Phase 2 not called
    3. Phase 2 success / not_found are both success (idempotent)
    4. Phase 2 outage → data still deleted, warning attached, orphan queued
    5. retry job resolves orphans, counts attempts and abandons at the limit
    6. bulk teardown aggregates per-client outcomes
    7. HTTP endpoints
    8. orphan bookkeeping failure never hides a completed Phase 1
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from portal.core.exceptions import CascadeFailure, NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import ClientHistory
from portal.models.client import Client, ClientDocument, ClientMessage
from portal.models.delivery import Delivery, DeliveryComment, DeliveryVersion
from portal.models.progress import ProgressRecord
from portal.models.revision import RevisionRequest
from portal.models.teardown import OrphanedIdentity
from portal.services import delivery_lifecycle, delivery_service, teardown_service
from portal.services.client_service import add_client_document
from portal.services.progress_reconciliation import record_local_step_completion

DEPENDENT_MODELS = (
    Delivery, DeliveryVersion, DeliveryComment, RevisionRequest,
    ProgressRecord, ClientHistory, ClientMessage, ClientDocument,
)


def _make_client(identity_id=None, name="Morgan Lee") -> Client:
    c = Client(name=name, email=f"{name.split()[0].lower()}@example.com", identity_id=identity_id)
    db.session.add(c)
    db.session.commit()
    return c


def _populate(client: Client) -> None:
    """Give the client one row in every dependent table."""
    result = delivery_lifecycle.submit_for_review(client.id, document_title="Resume", file_ref="f/r.pdf")
    delivery_id = result["delivery"]["id"]
    delivery_service.add_comment(delivery_id, author="Morgan", content="Looks great")
    rr = delivery_lifecycle.request_revision(delivery_id, reasons=["tone_format"], description="Less formal")
    from portal.services.revision_workflow import advance
    advance(rr["revision_request"]["id"], "in_progress", message="On it")
    record_local_step_completion(client.id, 1)
    add_client_document(client.id, file_ref="uploads/intake.pdf", kind="intake_attachment", file_size=10)


def _count_all() -> dict:
    return {m.__tablename__: m.query.count() for m in DEPENDENT_MODELS}


class TestPhaseOne:

    def test_removes_client_and_all_dependents(self, identity_provider):
        c = _make_client()
        _populate(c)
        assert all(n > 0 for n in _count_all().values())

        result = teardown_service.teardown_client(c.id)

        assert result["data_deleted"] is True
        assert result["identity_status"] is None
        assert db.session.get(Client, c.id) is None
        assert all(n == 0 for n in _count_all().values())
        assert identity_provider.calls == []

    def test_other_clients_untouched(self):
        a = _make_client(name="Ann One")
        b = _make_client(name="Ben Two")
        _populate(b)
        before = _count_all()
        teardown_service.teardown_client(a.id)
        assert _count_all() == before
        assert db.session.get(Client, b.id) is not None

    def test_failure_rolls_back_and_skips_phase_two(self, identity_provider):
        c = _make_client(identity_id="idp-1")
        identity_provider.identities.add("idp-1")
        _populate(c)
        before = _count_all()

        with patch.object(db.session, "commit", side_effect=OperationalError("DELETE", {}, Exception("locked"))):
            with pytest.raises(CascadeFailure):
                teardown_service.teardown_client(c.id)

        db.session.expire_all()
        assert db.session.get(Client, c.id) is not None
        assert _count_all() == before
        assert identity_provider.calls == []
        assert OrphanedIdentity.query.count() == 0

    def test_unknown_client(self):
        with pytest.raises(NotFoundError):
            teardown_service.teardown_client("gone")


class TestPhaseTwo:

    def test_identity_deleted(self, identity_provider):
        c = _make_client(identity_id="idp-2")
        identity_provider.identities.add("idp-2")
        result = teardown_service.teardown_client(c.id)
        assert result["identity_status"] == "deleted"
        assert result["warnings"] == []
        assert "idp-2" not in identity_provider.identities

    def test_identity_already_gone_is_success(self, identity_provider):
        c = _make_client(identity_id="idp-3")
        result = teardown_service.teardown_client(c.id)
        assert result["identity_status"] == "not_found"
        assert result["warnings"] == []
        assert OrphanedIdentity.query.count() == 0

    def test_delete_identity_twice_succeeds_both_times(self, identity_provider):
        identity_provider.identities.add("idp-4")
        assert teardown_service.delete_identity("idp-4") in ("deleted", "not_found")
        assert teardown_service.delete_identity("idp-4") in ("deleted", "not_found")

    def test_outage_keeps_data_deleted_and_queues_orphan(self, identity_provider):
        c = _make_client(identity_id="idp-5")
        identity_provider.identities.add("idp-5")
        identity_provider.outage = True

        result = teardown_service.teardown_client(c.id)

        assert result["data_deleted"] is True
        assert result["identity_status"] == "orphaned"
        assert len(result["warnings"]) == 1
        assert result["warnings"][0]["dependency"] == "identity_provider"
        assert db.session.get(Client, c.id) is None
        orphan = OrphanedIdentity.query.filter_by(identity_id="idp-5").one()
        assert orphan.attempts == 1
        assert orphan.client_id == c.id

    def test_retry_after_outage_succeeds(self, identity_provider):
        c = _make_client(identity_id="idp-6")
        identity_provider.identities.add("idp-6")
        identity_provider.outage = True
        teardown_service.teardown_client(c.id)

        identity_provider.outage = False
        summary = teardown_service.retry_orphaned_identities()

        assert summary == {"attempted": 1, "resolved": 1, "still_orphaned": 0, "abandoned": 0}
        assert OrphanedIdentity.query.count() == 0
        assert "idp-6" not in identity_provider.identities


class TestOrphanRetry:

    def test_failed_retry_increments_attempts(self, identity_provider):
        db.session.add(OrphanedIdentity(identity_id="idp-7", attempts=1))
        db.session.commit()
        identity_provider.outage = True

        summary = teardown_service.retry_orphaned_identities()

        assert summary["still_orphaned"] == 1
        assert OrphanedIdentity.query.filter_by(identity_id="idp-7").one().attempts == 2

    def test_abandoned_at_max_attempts(self, app, identity_provider):
        max_attempts = app.config["ORPHAN_RETRY_MAX_ATTEMPTS"]
        db.session.add(OrphanedIdentity(identity_id="idp-8", attempts=max_attempts - 1))
        db.session.commit()
        identity_provider.outage = True

        summary = teardown_service.retry_orphaned_identities()
        assert summary["abandoned"] == 1
        assert OrphanedIdentity.query.filter_by(identity_id="idp-8").one().abandoned is True

        # abandoned rows are no longer retried
        identity_provider.calls.clear()
        teardown_service.retry_orphaned_identities()
        assert identity_provider.calls == []

    def test_scheduled_job_registered(self, app, identity_provider):
        from portal.services.scheduler_service import get_registered_jobs, run_job
        assert "orphaned_identity_retry" in get_registered_jobs()
        outcome = run_job(app, "orphaned_identity_retry")
        assert outcome["status"] == "success"
        assert outcome["result"]["attempted"] == 0

    def test_unknown_job(self, app):
        from portal.services.scheduler_service import run_job
        assert run_job(app, "nope")["status"] == "error"


class TestBulkTeardown:

    def test_aggregates_outcomes(self, identity_provider):
        ok = _make_client(identity_id="idp-9", name="Kim Ok")
        orphaned = _make_client(identity_id="idp-10", name="Lou Orphan")
        identity_provider.identities.update({"idp-9"})

        def _delete(identity_id):
            identity_provider.calls.append(identity_id)
            if identity_id == "idp-10":
                from portal.core.exceptions import DependencyFailure
                raise DependencyFailure("identity_provider", "timeout")
            return "deleted"

        identity_provider.delete_identity = _delete
        result = teardown_service.bulk_teardown([ok.id, "missing-id", orphaned.id])

        assert result["succeeded"] == 2
        assert result["failed"] == 1
        by_id = {r["client_id"]: r for r in result["results"]}
        assert by_id["missing-id"]["ok"] is False
        assert by_id[orphaned.id]["identity_status"] == "orphaned"
        assert Client.query.count() == 0

    def test_empty_list_rejected(self):
        with pytest.raises(ValidationError):
            teardown_service.bulk_teardown([])


class TestTeardownApi:

    def test_delete_endpoint(self, client, identity_provider):
        c = _make_client(identity_id="idp-11")
        identity_provider.outage = True
        res = client.delete(f"/api/v1/clients/{c.id}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["data_deleted"] is True
        assert body["warnings"][0]["dependency"] == "identity_provider"

        orphans = client.get("/api/v1/teardown/orphans").get_json()
        assert orphans["total"] == 1

        identity_provider.outage = False
        retry = client.post("/api/v1/teardown/orphans/retry").get_json()
        assert retry["resolved"] == 1

    def test_delete_unknown_is_404(self, client):
        assert client.delete("/api/v1/clients/nobody").status_code == 404

    def test_bulk_delete_endpoint(self, client):
        a = _make_client(name="Al Bulk")
        res = client.post("/api/v1/clients/bulk-delete", json={"client_ids": [a.id, "x"]})
        assert res.status_code == 200
        assert res.get_json()["succeeded"] == 1
        assert res.get_json()["failed"] == 1


class TestOrphanBookkeepingFailure:

    def _failing_queue(self):
        return patch.object(
            teardown_service, "_queue_orphan",
            side_effect=OperationalError("INSERT", {}, Exception("disk full")),
        )

    def test_data_still_reported_deleted(self, identity_provider):
        c = _make_client(identity_id="idp-20")
        identity_provider.outage = True

        with self._failing_queue():
            result = teardown_service.teardown_client(c.id)

        assert result["data_deleted"] is True
        assert result["identity_status"] == "orphaned"
        assert result["orphan_queued"] is False
        assert result["warnings"][0]["dependency"] == "identity_provider"
        assert db.session.get(Client, c.id) is None

    def test_bulk_continues_past_failed_bookkeeping(self, identity_provider):
        a = _make_client(identity_id="idp-21", name="Ada First")
        b = _make_client(identity_id="idp-22", name="Bea Second")
        identity_provider.outage = True

        with self._failing_queue():
            result = teardown_service.bulk_teardown([a.id, b.id])

        assert result["succeeded"] == 2
        assert result["failed"] == 0
        assert Client.query.count() == 0

    def test_bulk_records_unexpected_store_error(self):
        a = _make_client(name="Cal Third")
        b = _make_client(name="Dee Fourth")
        original = teardown_service.teardown_client

        def _teardown(client_id):
            if client_id == a.id:
                raise OperationalError("DELETE", {}, Exception("connection reset"))
            return original(client_id)

        with patch.object(teardown_service, "teardown_client", side_effect=_teardown):
            result = teardown_service.bulk_teardown([a.id, b.id])

        by_id = {r["client_id"]: r for r in result["results"]}
        assert by_id[a.id]["ok"] is False
        assert by_id[a.id]["code"] == "ERR_INTERNAL"
        assert by_id[a.id]["data_deleted"] is False
        assert by_id[b.id]["ok"] is True
