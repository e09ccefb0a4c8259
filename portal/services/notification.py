"""
Client Engagement Portal
Notification Dispatcher — best-effort side channel for lifecycle events.

Event types:
    delivery_ready       a new delivery was submitted for client review
    revision_requested   a client asked for changes (staff inbox)
    revision_complete    staff re-delivered a revised artifact
    testimonial_prompt   the client's last outstanding delivery was approved

Contract: at-most-once, fire-and-forget. ``dispatch`` is only ever called
after the state change is committed and waits at most
NOTIFICATION_TIMEOUT_SECONDS for the transport. A transport error is turned
into a DependencyFailure warning for the caller's result; a timeout is
logged and the send keeps running in the background.

Transports:
    WebhookTransport — JSON POST via ``requests`` (NOTIFICATION_WEBHOOK_URL)
    LogTransport     — log-only mode when no webhook is configured
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

import requests
from flask import current_app

from portal.core.exceptions import DependencyFailure

logger = logging.getLogger(__name__)

EVENT_TYPES = {"delivery_ready", "revision_requested", "revision_complete", "testimonial_prompt"}

_DEFAULT_TIMEOUT = 2.0


class LogTransport:
    """Writes each event to the log instead of sending it anywhere."""

    def send(self, event: dict) -> None:
        logger.info(
            "Notification (log-only) %s delivery=%s client=%s",
            event["event_type"], event.get("delivery_id"), event.get("client_id"),
            extra={"event_type": event["event_type"], "client_id": event.get("client_id")},
        )


class WebhookTransport:
    """POSTs the event as JSON to a webhook.

    Pass a custom ``session`` in tests to intercept HTTP calls.
    """

    def __init__(self, url: str, timeout: float = _DEFAULT_TIMEOUT,
                 session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def send(self, event: dict) -> None:
        resp = self.session.post(self.url, json=event, timeout=self.timeout)
        resp.raise_for_status()


class NotificationDispatcher:
    """Runs transport sends on a small worker pool with a bounded wait."""

    def __init__(self, transport, timeout: float = _DEFAULT_TIMEOUT, max_workers: int = 4) -> None:
        self.transport = transport
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def dispatch(self, event_type: str, delivery_id: str | None, client_id: str | None,
                 payload: dict | None = None) -> dict | None:
        """Send one event. Returns a warning dict on failure, None otherwise."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown notification event type: {event_type!r}")

        event = {
            "event_type": event_type,
            "delivery_id": delivery_id,
            "client_id": client_id,
            "payload": payload or {},
        }
        extra = {"event_type": event_type, "delivery_id": delivery_id, "client_id": client_id}

        try:
            future = self._executor.submit(self.transport.send, event)
            future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning("Notification %s still in flight after %.1fs, not waiting",
                           event_type, self.timeout, extra=extra)
            return None
        except Exception as exc:
            failure = DependencyFailure(
                "notification", f"{event_type} dispatch failed: {exc}",
                context={"delivery_id": delivery_id, "client_id": client_id},
            )
            logger.warning("Notification %s failed: %s", event_type, exc, exc_info=True, extra=extra)
            return failure.to_warning()

        logger.info("Notification %s dispatched", event_type, extra=extra)
        return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def init_notifications(app) -> NotificationDispatcher:
    """Build the dispatcher from config and store it in ``app.extensions``."""
    timeout = float(app.config.get("NOTIFICATION_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT))
    url = app.config.get("NOTIFICATION_WEBHOOK_URL")
    transport = WebhookTransport(url, timeout=timeout) if url else LogTransport()
    dispatcher = NotificationDispatcher(transport, timeout=timeout)
    app.extensions["notifications"] = dispatcher
    logger.debug("Notification transport: %s", type(transport).__name__)
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["notifications"]


def notify(event_type: str, *, delivery_id=None, client_id=None, payload=None,
           warnings: list | None = None) -> None:
    """Dispatch an event and append any resulting warning to ``warnings``."""
    warning = get_dispatcher().dispatch(event_type, delivery_id, client_id, payload)
    if warning is not None and warnings is not None:
        warnings.append(warning)
