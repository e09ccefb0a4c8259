"""
Identity Provider Gateway — teardown Phase 2.

All outbound calls to the identity provider's admin API go through this
class. The only operation the portal needs is removing a user:

    DELETE {IDENTITY_ADMIN_URL}/admin/users/{identity_id}

    200 / 204  → "deleted"
    404        → "not_found"   (already gone: treated as success by callers)
    other      → DependencyFailure after retries

Deleting is idempotent, so retrying a delete that may have landed is safe.

Testability: pass a mock ``session`` to IdentityGateway() in tests instead
of letting it create a real requests.Session internally, or replace
``app.extensions["identity_provider"]`` with a fake.
"""

from __future__ import annotations

import logging
import time

import requests
from flask import current_app

from portal.core.exceptions import DependencyFailure

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_BACKOFF_SECONDS = (1, 4)    # sleep[0] after 1st fail, sleep[1] after 2nd

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 10

DELETED = "deleted"
NOT_FOUND = "not_found"


class IdentityGateway:
    """Identity provider admin API gateway.

    Usage:
        gateway = IdentityGateway("https://id.example.com", service_key="...")
        outcome = gateway.delete_identity("3f1c…")   # "deleted" | "not_found"
    """

    def __init__(
        self,
        admin_url: str,
        service_key: str | None = None,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        retry_backoff: tuple[float, ...] = _RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.admin_url = admin_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.retry_backoff = tuple(retry_backoff)
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"
            headers["apikey"] = self.service_key
        return headers

    def delete_identity(self, identity_id: str) -> str:
        """Remove one user from the identity provider.

        Returns:
            "deleted" or "not_found".

        Raises:
            DependencyFailure: provider unreachable or answered with an
                unexpected status on every attempt.
        """
        url = f"{self.admin_url}/admin/users/{identity_id}"
        attempts = len(self.retry_backoff) + 1
        last_error = "Unknown error"

        for attempt in range(attempts):
            try:
                resp = self.session.delete(url, headers=self._headers(), timeout=self.timeout)

                if resp.status_code in (200, 204):
                    logger.info("Identity %s deleted", identity_id, extra={"identity_id": identity_id})
                    return DELETED
                if resp.status_code == 404:
                    logger.info("Identity %s already absent", identity_id, extra={"identity_id": identity_id})
                    return NOT_FOUND

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                logger.warning(
                    "Identity delete failed attempt=%d/%d status=%d identity=%s",
                    attempt + 1, attempts, resp.status_code, identity_id,
                )
                if 400 <= resp.status_code < 500 and resp.status_code != 429:
                    break  # not transient

            except requests.Timeout:
                last_error = f"Request timed out after {self.timeout}s"
                logger.warning("Identity delete timed out attempt=%d/%d identity=%s",
                               attempt + 1, attempts, identity_id)

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning("Identity delete network error attempt=%d/%d identity=%s error=%s",
                               attempt + 1, attempts, identity_id, last_error)

            if attempt < attempts - 1:
                time.sleep(self.retry_backoff[attempt])

        raise DependencyFailure("identity_provider", last_error, context={"identity_id": identity_id})


class UnconfiguredIdentityProvider:
    """Stand-in used when IDENTITY_ADMIN_URL is unset: every delete fails.

    Teardown then queues the identity as orphaned instead of silently
    pretending it was removed.
    """

    def delete_identity(self, identity_id: str) -> str:
        raise DependencyFailure(
            "identity_provider", "IDENTITY_ADMIN_URL is not configured",
            context={"identity_id": identity_id},
        )


def init_identity_provider(app):
    url = app.config.get("IDENTITY_ADMIN_URL")
    if url:
        provider = IdentityGateway(
            url,
            app.config.get("IDENTITY_SERVICE_KEY"),
            timeout=float(app.config.get("IDENTITY_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)),
        )
    else:
        provider = UnconfiguredIdentityProvider()
        if not app.config.get("TESTING"):
            logger.warning("IDENTITY_ADMIN_URL not set; identity deletions will be queued as orphaned")
    app.extensions["identity_provider"] = provider
    return provider


def get_identity_provider():
    return current_app.extensions["identity_provider"]
