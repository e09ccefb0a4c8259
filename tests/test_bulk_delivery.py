"""
Tests for portal.services.bulk_delivery and POST /api/v1/deliveries/bulk.

Coverage:
    - client name extraction tries "_", then " - ", then "-"
    - document type detection from the file name, resume by default
    - matching order: exact, then containment, then first name
    - bulk_submit delivers matched files and reports unmatched ones
    - dry runs write nothing; a failing file does not stop the batch
"""

import pytest

from portal.core.exceptions import ValidationError
from portal.models import db
from portal.models.client import Client
from portal.models.delivery import Delivery
from portal.services import bulk_delivery


def _make_client(name: str) -> Client:
    c = Client(name=name, email=f"{bulk_delivery.normalize_name(name)}@example.com")
    db.session.add(c)
    db.session.commit()
    return c


def _file(name: str, **extra) -> dict:
    return {"file_name": name, "file_ref": f"uploads/batch/{name}", **extra}


class TestFileNameParsing:

    @pytest.mark.parametrize("file_name,expected", [
        ("Dana Reyes_Resume.pdf", "Dana Reyes"),
        ("Dana Reyes - Cover Letter.docx", "Dana Reyes"),
        ("Dana-Resume.pdf", "Dana"),
        ("Dana_Reyes - CV.pdf", "Dana"),
        ("Resume.pdf", None),
    ])
    def test_extract_client_name(self, file_name, expected):
        assert bulk_delivery.extract_client_name(file_name) == expected

    def test_normalize_name(self):
        assert bulk_delivery.normalize_name("  Dana O'Reyes-Smith ") == "danaoreyessmith"

    @pytest.mark.parametrize("file_name,expected", [
        ("Kim_Resume.pdf", "resume"),
        ("Kim_CV.pdf", "resume"),
        ("Kim - Cover Letter.docx", "cover_letter"),
        ("Kim_Thank You.pdf", "thank_you_letter"),
        ("Kim_LinkedIn.txt", "linkedin_profile"),
        ("Kim_Bio.docx", "bio"),
        ("Kim_Outreach.pdf", "outreach_letter"),
        ("Kim_Notes.pdf", "resume"),
    ])
    def test_detect_document_type(self, file_name, expected):
        assert bulk_delivery.detect_document_type(file_name) == expected


class TestMatchClient:

    def test_exact_beats_containment(self):
        longer = Client(name="Dana Reyes-Smith")
        exact = Client(name="Dana Reyes")
        assert bulk_delivery.match_client("Dana Reyes", [longer, exact]) is exact

    def test_partial_name(self):
        dana = Client(name="Dana Reyes")
        assert bulk_delivery.match_client("Reyes", [Client(name="Kim Ok"), dana]) is dana

    def test_first_name(self):
        dana = Client(name="Dana Reyes")
        assert bulk_delivery.match_client("Dana Smith", [dana]) is dana

    @pytest.mark.parametrize("name", ["Morgan", "", None, "!!!"])
    def test_no_match(self, name):
        assert bulk_delivery.match_client(name, [Client(name="Dana Reyes")]) is None


class TestBulkSubmit:

    def test_matched_files_are_delivered(self, portal_client, notifications):
        kim = _make_client("Kim Ok")
        result = bulk_delivery.bulk_submit([
            _file("Dana Reyes_Resume.pdf", file_size=1200),
            _file("Kim Ok - Cover Letter.docx"),
            _file("Unknown Person_Resume.pdf"),
            _file("README.pdf"),
        ], actor="sam")

        assert (result["matched"], result["unmatched"], result["failed"]) == (2, 2, 0)
        by_name = {r["file_name"]: r for r in result["results"]}
        assert by_name["Dana Reyes_Resume.pdf"]["status"] == "submitted"
        assert by_name["Dana Reyes_Resume.pdf"]["client_id"] == portal_client.id
        assert by_name["Kim Ok - Cover Letter.docx"]["client_id"] == kim.id
        assert by_name["Unknown Person_Resume.pdf"]["status"] == "unmatched"
        assert by_name["README.pdf"]["extracted_name"] is None

        dana_delivery = Delivery.query.filter_by(client_id=portal_client.id).one()
        assert dana_delivery.document_title == "Dana Reyes_Resume"
        assert dana_delivery.document_type == "resume"
        assert dana_delivery.status == "delivered"
        assert Delivery.query.filter_by(client_id=kim.id).one().document_type == "cover_letter"
        assert notifications.types() == ["delivery_ready", "delivery_ready"]

    def test_dry_run_writes_nothing(self, portal_client, notifications):
        result = bulk_delivery.bulk_submit([_file("Dana Reyes_Resume.pdf")], dry_run=True)
        assert result["matched"] == 1
        assert result["results"][0]["status"] == "matched"
        assert Delivery.query.count() == 0
        assert notifications.events == []

    def test_failing_file_does_not_stop_batch(self, portal_client):
        result = bulk_delivery.bulk_submit([
            _file("Dana Reyes_Resume.pdf", file_size=-5),
            _file("Dana Reyes_Bio.pdf"),
        ])
        assert (result["matched"], result["failed"]) == (1, 1)
        assert result["results"][0]["status"] == "error"
        assert result["results"][1]["status"] == "submitted"
        assert Delivery.query.count() == 1

    @pytest.mark.parametrize("files", [None, [], [{"file_name": "Dana_Resume.pdf"}], ["x"]])
    def test_invalid_payload(self, files):
        with pytest.raises(ValidationError):
            bulk_delivery.bulk_submit(files)


class TestBulkDeliveryApi:

    def test_endpoint(self, client, portal_client):
        res = client.post("/api/v1/deliveries/bulk",
                          json={"files": [_file("Dana Reyes_Resume.pdf"), _file("Nobody_CV.pdf")]})
        assert res.status_code == 200
        body = res.get_json()
        assert body["matched"] == 1
        assert body["unmatched"] == 1

    def test_empty_batch_422(self, client):
        res = client.post("/api/v1/deliveries/bulk", json={"files": []})
        assert res.status_code == 422
