"""Unit tests for portal.integrations.identity_gateway.

Test strategy
-------------
Outbound HTTP goes through a MagicMock standing in for requests.Session,
so no identity provider is needed. Retry backoff is set to zero.

Coverage
--------
    1. 200 / 204 → "deleted"; 404 → "not_found"
    2. 5xx is retried and a later success wins
    3. non-transient 4xx stops retrying
    4. network errors and timeouts exhaust retries → DependencyFailure
    5. service key is sent as bearer token
    6. unconfigured provider always fails with DependencyFailure
"""

from unittest.mock import MagicMock

import pytest
import requests

from portal.core.exceptions import DependencyFailure
from portal.integrations.identity_gateway import (
    IdentityGateway,
    UnconfiguredIdentityProvider,
    init_identity_provider,
)


def _response(status: int, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


def _gateway(*responses, key="svc-key") -> tuple[IdentityGateway, MagicMock]:
    session = MagicMock()
    session.delete.side_effect = list(responses)
    gw = IdentityGateway("https://id.example.com/", key, session=session, retry_backoff=(0, 0))
    return gw, session


@pytest.mark.parametrize("status", [200, 204])
def test_success_is_deleted(status):
    gw, session = _gateway(_response(status))
    assert gw.delete_identity("u-1") == "deleted"
    url = session.delete.call_args.args[0]
    assert url == "https://id.example.com/admin/users/u-1"


def test_404_is_not_found():
    gw, _ = _gateway(_response(404))
    assert gw.delete_identity("u-1") == "not_found"


def test_server_error_retried_then_succeeds():
    gw, session = _gateway(_response(503, "unavailable"), _response(204))
    assert gw.delete_identity("u-1") == "deleted"
    assert session.delete.call_count == 2


def test_server_error_every_attempt():
    gw, session = _gateway(_response(500), _response(500), _response(502, "bad gateway"))
    with pytest.raises(DependencyFailure) as exc:
        gw.delete_identity("u-1")
    assert session.delete.call_count == 3
    assert exc.value.dependency == "identity_provider"
    assert "502" in exc.value.detail
    assert exc.value.to_warning()["context"] == {"identity_id": "u-1"}


def test_client_error_not_retried():
    gw, session = _gateway(_response(403, "forbidden"), _response(204))
    with pytest.raises(DependencyFailure):
        gw.delete_identity("u-1")
    assert session.delete.call_count == 1


def test_rate_limit_is_retried():
    gw, session = _gateway(_response(429), _response(200))
    assert gw.delete_identity("u-1") == "deleted"
    assert session.delete.call_count == 2


def test_network_errors_exhaust_retries():
    gw, session = _gateway(
        requests.ConnectionError("refused"), requests.Timeout(), requests.ConnectionError("refused"),
    )
    with pytest.raises(DependencyFailure) as exc:
        gw.delete_identity("u-1")
    assert session.delete.call_count == 3
    assert "refused" in exc.value.detail


def test_timeout_then_success():
    gw, _ = _gateway(requests.Timeout(), _response(204))
    assert gw.delete_identity("u-1") == "deleted"


def test_service_key_sent():
    gw, session = _gateway(_response(204))
    gw.delete_identity("u-1")
    headers = session.delete.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer svc-key"
    assert session.delete.call_args.kwargs["timeout"] == gw.timeout


def test_no_service_key():
    gw, session = _gateway(_response(204), key=None)
    gw.delete_identity("u-1")
    assert "Authorization" not in session.delete.call_args.kwargs["headers"]


def test_unconfigured_provider_fails():
    with pytest.raises(DependencyFailure) as exc:
        UnconfiguredIdentityProvider().delete_identity("u-1")
    assert "not configured" in exc.value.detail


def test_init_picks_gateway_when_url_set(app):
    original = app.extensions["identity_provider"]
    try:
        app.config["IDENTITY_ADMIN_URL"] = "https://id.example.com"
        assert isinstance(init_identity_provider(app), IdentityGateway)
        app.config["IDENTITY_ADMIN_URL"] = None
        assert isinstance(init_identity_provider(app), UnconfiguredIdentityProvider)
    finally:
        app.config["IDENTITY_ADMIN_URL"] = None
        app.extensions["identity_provider"] = original
