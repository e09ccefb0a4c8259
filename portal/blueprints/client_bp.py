"""
Client Blueprint — client records, milestones, documents and teardown.

Endpoints:
    POST   /api/v1/clients                          create client
    GET    /api/v1/clients/<id>                     client detail
    GET    /api/v1/clients/<id>/history             lifecycle history
    POST   /api/v1/clients/<id>/milestones          {"milestone": "...", "value": true}
    POST   /api/v1/clients/<id>/documents           {"file_ref", "kind", "file_size"}
    POST   /api/v1/clients/bulk-status              {"client_ids": [...], "status": "..."}
    GET    /api/v1/clients/export                   all clients (?format=json|csv)
    GET    /api/v1/clients/<id>/export              one client (?format=json|csv)
    DELETE /api/v1/clients/<id>                     teardown (Phase 1 + Phase 2)
    POST   /api/v1/clients/bulk-delete              {"client_ids": [...]}
    GET    /api/v1/teardown/orphans                 orphaned identity queue
    POST   /api/v1/teardown/orphans/retry           drain the queue now

Layer contract:
    - Blueprint: parse input, call service, return JSON.
    - NO db.session calls here — all writes owned by services.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, Response, jsonify, request

from portal.blueprints import actor_from_request
from portal.services import client_service, export_service, teardown_service
from portal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

client_bp = Blueprint("clients", __name__, url_prefix="/api/v1")
register_error_handlers(client_bp)


@client_bp.route("/clients", methods=["POST"])
def create_client():
    data = request.get_json(silent=True) or {}
    client = client_service.create_client(data, actor=actor_from_request())
    return jsonify(client.to_dict()), 201


@client_bp.route("/clients/<client_id>", methods=["GET"])
def get_client(client_id):
    return jsonify(client_service.get_client(client_id).to_dict())


@client_bp.route("/clients/<client_id>/history", methods=["GET"])
def client_history(client_id):
    entries = client_service.list_history(client_id)
    return jsonify({"items": [h.to_dict() for h in entries], "total": len(entries)})


@client_bp.route("/clients/<client_id>/milestones", methods=["POST"])
def record_milestone(client_id):
    data = request.get_json(silent=True) or {}
    milestone = (data.get("milestone") or "").strip()
    if not milestone:
        return api_error(E.VALIDATION_REQUIRED, "milestone is required")
    client = client_service.record_milestone(
        client_id, milestone, data.get("value", True), actor=actor_from_request(),
    )
    return jsonify(client.to_dict())


@client_bp.route("/clients/<client_id>/documents", methods=["POST"])
def add_document(client_id):
    data = request.get_json(silent=True) or {}
    doc = client_service.add_client_document(
        client_id,
        file_ref=data.get("file_ref"),
        kind=data.get("kind", "other"),
        file_size=data.get("file_size"),
    )
    return jsonify(doc.to_dict()), 201


@client_bp.route("/clients/bulk-status", methods=["POST"])
def bulk_status():
    data = request.get_json(silent=True) or {}
    outcome = client_service.bulk_update_status(
        data.get("client_ids"), data.get("status"), actor=actor_from_request(),
    )
    return jsonify(outcome)


# ── Export ───────────────────────────────────────────────────────────────


def _export_response(client_id):
    fmt = request.args.get("format", "json").lower()
    if fmt not in ("json", "csv"):
        return api_error(E.VALIDATION_INVALID, "Unsupported format. Supported values: json, csv.")

    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    if fmt == "csv":
        content = export_service.generate_clients_csv(client_id)
        return Response(
            content,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename=client-data-{date_str}.csv"},
        )
    bundles = export_service.export_client_data(client_id)
    response = jsonify({
        "export_date": datetime.now(timezone.utc).isoformat(),
        "total_clients": len(bundles),
        "data": bundles,
    })
    response.headers["Content-Disposition"] = f"attachment; filename=client-data-{date_str}.json"
    return response


@client_bp.route("/clients/export", methods=["GET"])
def export_clients():
    """All clients. Query: format=json|csv (default json)."""
    return _export_response(None)


@client_bp.route("/clients/<client_id>/export", methods=["GET"])
def export_client(client_id):
    return _export_response(client_id)


# ── Teardown ─────────────────────────────────────────────────────────────


@client_bp.route("/clients/<client_id>", methods=["DELETE"])
def teardown_client(client_id):
    return jsonify(teardown_service.teardown_client(client_id))


@client_bp.route("/clients/bulk-delete", methods=["POST"])
def bulk_delete():
    data = request.get_json(silent=True) or {}
    return jsonify(teardown_service.bulk_teardown(data.get("client_ids")))


@client_bp.route("/teardown/orphans", methods=["GET"])
def list_orphans():
    include_abandoned = request.args.get("include_abandoned", "true").lower() != "false"
    orphans = teardown_service.list_orphaned_identities(include_abandoned=include_abandoned)
    return jsonify({"items": [o.to_dict() for o in orphans], "total": len(orphans)})


@client_bp.route("/teardown/orphans/retry", methods=["POST"])
def retry_orphans():
    return jsonify(teardown_service.retry_orphaned_identities())
