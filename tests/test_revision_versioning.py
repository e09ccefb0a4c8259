"""Tests for portal.services.revision_versioning.

Coverage
--------
    - base title extraction strips any previous " - Revised N" suffix
    - first revision with no matching titles is "Revised 0"
    - repeated revisions of one delivery count 0, 1, 2, ...
    - computation is deterministic for a fixed title list
    - global scope counts other clients' deliveries; client scope does not
    - a staff-supplied new title becomes the base
"""

import pytest

from portal.models import db
from portal.models.client import Client
from portal.models.delivery import Delivery, DeliveryVersion
from portal.services.revision_versioning import (
    compute_revision_title,
    next_revision_title,
    split_base_title,
    titles_in_scope,
)


def _make_client(name="Client") -> Client:
    c = Client(name=name, email=f"{name.lower().replace(' ', '.')}@example.com")
    db.session.add(c)
    db.session.flush()
    return c


def _make_delivery(client: Client, title: str) -> Delivery:
    d = Delivery(client_id=client.id, document_title=title, file_ref=f"files/{title}.pdf")
    db.session.add(d)
    db.session.flush()
    db.session.add(DeliveryVersion(delivery_id=d.id, version_number=1,
                                   document_title=title, file_ref=d.file_ref))
    db.session.flush()
    return d


class TestPureAlgorithm:

    def test_split_base_title_without_suffix(self):
        assert split_base_title("Resume") == "Resume"

    def test_split_base_title_strips_suffix(self):
        assert split_base_title("Resume - Revised 3") == "Resume"

    def test_split_base_title_only_first_marker_matters(self):
        assert split_base_title("CV - Revised 0 - Revised 1") == "CV"

    def test_first_revision_is_revised_zero(self):
        assert next_revision_title("Resume", []) == "Resume - Revised 0"

    def test_counts_titles_containing_base(self):
        titles = ["Resume - Revised 0", "Resume - Revised 1", "Cover Letter"]
        assert next_revision_title("Resume - Revised 1", titles) == "Resume - Revised 2"

    def test_substring_match_counts_unrelated_titles(self):
        # "Resume" is a substring of "Executive Resume"; the count is textual
        assert next_revision_title("Resume", ["Executive Resume"]) == "Resume - Revised 1"

    def test_deterministic_for_fixed_inputs(self):
        titles = ["Resume", "Resume - Revised 0", "LinkedIn"]
        first = next_revision_title("Resume - Revised 0", titles)
        second = next_revision_title("Resume - Revised 0", titles)
        assert first == second == "Resume - Revised 2"


class TestScope:

    def test_own_current_row_is_not_counted(self):
        c = _make_client()
        d = _make_delivery(c, "Resume")
        assert titles_in_scope(d) == []
        assert compute_revision_title(d) == "Resume - Revised 0"

    def test_prior_revised_versions_are_counted(self):
        c = _make_client()
        d = _make_delivery(c, "Resume - Revised 0")
        db.session.add(DeliveryVersion(delivery_id=d.id, version_number=2,
                                       document_title="Resume - Revised 0",
                                       file_ref="files/r2.pdf", revision_request_id="rr-1"))
        db.session.flush()
        assert compute_revision_title(d) == "Resume - Revised 1"

    def test_global_scope_sees_other_clients(self):
        a, b = _make_client("Alice"), _make_client("Bob")
        _make_delivery(b, "Resume")
        d = _make_delivery(a, "Resume")
        assert compute_revision_title(d, "global") == "Resume - Revised 1"

    def test_client_scope_ignores_other_clients(self):
        a, b = _make_client("Alice"), _make_client("Bob")
        _make_delivery(b, "Resume")
        d = _make_delivery(a, "Resume")
        assert compute_revision_title(d, "client") == "Resume - Revised 0"

    def test_unknown_scope_rejected(self):
        d = _make_delivery(_make_client(), "Resume")
        with pytest.raises(ValueError):
            titles_in_scope(d, "tenant")

    def test_new_title_replaces_base(self):
        d = _make_delivery(_make_client(), "Resume")
        assert compute_revision_title(d, new_title="Senior PM Resume") == "Senior PM Resume - Revised 0"

    def test_blank_new_title_falls_back_to_current(self):
        d = _make_delivery(_make_client(), "Resume")
        assert compute_revision_title(d, new_title="   ") == "Resume - Revised 0"
