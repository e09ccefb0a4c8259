"""
HTTP surface of the delivery lifecycle.

Covers status codes and error envelopes of /api/v1 delivery endpoints:
create → 201, approve twice → 409, invalid revision request → 422,
unknown ids → 404, plus listing, pagination, versions and comments.
"""

import pytest

from portal.services.delivery_service import COMMENT_MAX_LENGTH


def _submit(client, client_id, title="Resume", **extra):
    body = {"document_title": title, "file_ref": f"f/{title.lower()}.pdf", **extra}
    return client.post(f"/api/v1/clients/{client_id}/deliveries", json=body)


class TestSubmitAndRead:

    def test_submit_201(self, client, portal_client, notifications):
        res = _submit(client, portal_client.id, document_type="resume", file_size=1200)
        assert res.status_code == 201
        body = res.get_json()
        assert body["delivery"]["status"] == "delivered"
        assert body["delivery"]["current_version"] == 1
        assert body["warnings"] == []
        assert notifications.types() == ["delivery_ready"]

    def test_submit_warning_keeps_201(self, client, portal_client, notifications):
        notifications.fail_with = RuntimeError("down")
        res = _submit(client, portal_client.id)
        assert res.status_code == 201
        assert res.get_json()["warnings"][0]["dependency"] == "notification"

    def test_submit_invalid_422(self, client, portal_client):
        res = client.post(f"/api/v1/clients/{portal_client.id}/deliveries", json={})
        assert res.status_code == 422
        details = res.get_json()["details"]
        assert "document_title" in details
        assert "file_ref" in details

    def test_submit_unknown_client_404(self, client):
        assert _submit(client, "ghost").status_code == 404

    def test_get_delivery(self, client, delivery):
        res = client.get(f"/api/v1/deliveries/{delivery.id}")
        assert res.status_code == 200
        assert res.get_json()["document_title"] == "Resume"

    def test_get_unknown_404(self, client):
        res = client.get("/api/v1/deliveries/ghost")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_filter_and_paginate(self, client, portal_client):
        for title in ("Resume", "Cover Letter", "LinkedIn"):
            _submit(client, portal_client.id, title)
        page = client.get(f"/api/v1/clients/{portal_client.id}/deliveries?limit=2&offset=0").get_json()
        assert page["total"] == 3
        assert len(page["items"]) == 2

        approved_id = page["items"][0]["id"]
        client.post(f"/api/v1/deliveries/{approved_id}/approve")
        approved = client.get(f"/api/v1/clients/{portal_client.id}/deliveries?status=approved").get_json()
        assert [d["id"] for d in approved["items"]] == [approved_id]

    def test_list_unknown_status_422(self, client, portal_client):
        res = client.get(f"/api/v1/clients/{portal_client.id}/deliveries?status=lost")
        assert res.status_code == 422


class TestLifecycleEndpoints:

    def test_approve_then_approve_again(self, client, delivery):
        first = client.post(f"/api/v1/deliveries/{delivery.id}/approve")
        assert first.status_code == 200
        assert first.get_json()["delivery"]["status"] == "approved"
        assert first.get_json()["testimonial_prompted"] is True

        second = client.post(f"/api/v1/deliveries/{delivery.id}/approve")
        assert second.status_code == 409
        body = second.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "approved"

    def test_request_revision_201(self, client, delivery):
        res = client.post(f"/api/v1/deliveries/{delivery.id}/revision-requests",
                          json={"reasons": ["Something looks incorrect"], "description": "Fix the dates"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["delivery"]["status"] == "revision_requested"
        assert body["revision_request"]["reasons"] == ["incorrect"]

    def test_request_revision_invalid_422(self, client, delivery):
        res = client.post(f"/api/v1/deliveries/{delivery.id}/revision-requests",
                          json={"reasons": [], "description": "   "})
        assert res.status_code == 422
        assert set(res.get_json()["details"]) >= {"reasons", "description"}

    def test_request_revision_twice_409(self, client, delivery):
        payload = {"reasons": ["other"], "description": "Shorter please"}
        client.post(f"/api/v1/deliveries/{delivery.id}/revision-requests", json=payload)
        res = client.post(f"/api/v1/deliveries/{delivery.id}/revision-requests", json=payload)
        assert res.status_code == 409

    def test_actor_header_recorded(self, client, delivery):
        client.post(f"/api/v1/deliveries/{delivery.id}/approve", headers={"X-Actor": "dana"})
        history = client.get(f"/api/v1/clients/{delivery.client_id}/history").get_json()
        assert history["items"][-1]["actor"] == "dana"


class TestVersionsAndComments:

    def test_versions(self, client, delivery):
        res = client.get(f"/api/v1/deliveries/{delivery.id}/versions")
        assert res.status_code == 200
        items = res.get_json()["items"]
        assert [v["version_number"] for v in items] == [1]
        assert items[0]["revision_request_id"] is None

    def test_add_and_list_comments(self, client, delivery):
        res = client.post(f"/api/v1/deliveries/{delivery.id}/comments",
                          json={"author": "Dana", "content": "Can we shorten the summary?"})
        assert res.status_code == 201
        client.post(f"/api/v1/deliveries/{delivery.id}/comments",
                    json={"author": "Sam", "content": "Sure", "is_staff": True})
        listing = client.get(f"/api/v1/deliveries/{delivery.id}/comments").get_json()
        assert listing["total"] == 2
        assert [c["is_staff"] for c in listing["items"]] == [False, True]

    @pytest.mark.parametrize("payload,field", [
        ({"author": "Dana", "content": ""}, "content"),
        ({"content": "hi"}, "author"),
        ({"author": "Dana", "content": "x" * (COMMENT_MAX_LENGTH + 1)}, "content"),
    ])
    def test_invalid_comment_422(self, client, delivery, payload, field):
        res = client.post(f"/api/v1/deliveries/{delivery.id}/comments", json=payload)
        assert res.status_code == 422
        assert field in res.get_json()["details"]


class TestRequestMetadata:

    def test_timing_headers(self, client, delivery):
        res = client.get(f"/api/v1/deliveries/{delivery.id}", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_unknown_route_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nothing-here"
