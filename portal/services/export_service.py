"""
Client Engagement Portal
Client Data Export — everything the portal holds about a client.

Two shapes:
    - ``export_client_data`` → list of per-client bundles (JSON download)
    - ``generate_clients_csv`` → one summary row per client (CSV download)

Read-only; nothing here writes to the store.
"""

from __future__ import annotations

import csv
import io
import json
import logging

from portal.core.exceptions import NotFoundError
from portal.models import db
from portal.models.client import Client

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Client ID", "Name", "Email", "Phone", "Status", "Service Type",
    "Created Date", "Intake Data", "Document Count", "Delivery Count",
]


def _clients(client_id: str | None) -> list[Client]:
    if client_id is not None:
        client = db.session.get(Client, client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return [client]
    return Client.query.order_by(Client.created_at).all()


def _latest_intake(client: Client):
    """Most recent history entry recording the intake milestone, if any."""
    entries = [
        h for h in client.history
        if h.action_type == "client.milestone" and (h.new_value or {}).get("intake_submitted")
    ]
    if not entries:
        return None
    return max(entries, key=lambda h: (h.created_at, h.id))


def _bundle(client: Client) -> dict:
    history = sorted(client.history, key=lambda h: (h.created_at, h.id), reverse=True)
    intake = _latest_intake(client)
    return {
        "client": client.to_dict(),
        "intake": intake.to_dict() if intake else None,
        "history": [h.to_dict() for h in history],
        "documents": [d.to_dict() for d in client.documents],
        "deliveries": [
            {**d.to_dict(), "versions": [v.to_dict() for v in d.versions]}
            for d in client.deliveries
        ],
        "revision_requests": [r.to_dict() for r in client.revision_requests],
    }


def export_client_data(client_id: str | None = None) -> list[dict]:
    """Gather one bundle per client (or just ``client_id``).

    Raises:
        NotFoundError: ``client_id`` given but unknown.
    """
    bundles = [_bundle(c) for c in _clients(client_id)]
    logger.info("Exported %d client bundle(s)", len(bundles),
                extra={"client_id": client_id} if client_id else None)
    return bundles


def generate_clients_csv(client_id: str | None = None) -> str:
    """Return the client summary as CSV text, one row per client."""
    bundles = export_client_data(client_id)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADER)
    for b in bundles:
        c = b["client"]
        intake = b["intake"]
        writer.writerow([
            c["id"],
            c["name"],
            c["email"],
            c["phone"] or "",
            c["status"],
            c["service_type"] or "",
            c["created_at"],
            json.dumps(intake["new_value"]) if intake else "",
            len(b["documents"]),
            len(b["deliveries"]),
        ])
    return buf.getvalue()
