"""
Revision Request Blueprint — staff workflow over revision requests.

Endpoints:
    GET  /api/v1/clients/<id>/revision-requests/open    open requests for a client
    GET  /api/v1/revision-requests/<id>/transitions      allowed next statuses
    POST /api/v1/revision-requests/<id>/advance          {"status", "message"?, "estimated_completion"?}
    POST /api/v1/revision-requests/<id>/fulfill          {"file_ref", "new_title"?, "file_size"?}
"""

import logging

from flask import Blueprint, jsonify, request

from portal.blueprints import actor_from_request
from portal.services import delivery_lifecycle, delivery_service, revision_workflow
from portal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

revision_bp = Blueprint("revisions", __name__, url_prefix="/api/v1")
register_error_handlers(revision_bp)


@revision_bp.route("/clients/<client_id>/revision-requests/open", methods=["GET"])
def list_open(client_id):
    items = delivery_service.list_open_revision_requests(client_id)
    return jsonify({"items": [rr.to_dict() for rr in items], "total": len(items)})


@revision_bp.route("/revision-requests/<revision_request_id>/transitions", methods=["GET"])
def transitions(revision_request_id):
    return jsonify({
        "id": revision_request_id,
        "transitions": revision_workflow.available_transitions(revision_request_id),
    })


@revision_bp.route("/revision-requests/<revision_request_id>/advance", methods=["POST"])
def advance(revision_request_id):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip()
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    result = revision_workflow.advance(
        revision_request_id, status,
        message=data.get("message"),
        estimated_completion=data.get("estimated_completion"),
        actor=actor_from_request(),
    )
    return jsonify(result)


@revision_bp.route("/revision-requests/<revision_request_id>/fulfill", methods=["POST"])
def fulfill(revision_request_id):
    data = request.get_json(silent=True) or {}
    result = delivery_lifecycle.fulfill_revision(
        revision_request_id,
        file_ref=data.get("file_ref"),
        new_title=data.get("new_title"),
        file_size=data.get("file_size"),
        mime_type=data.get("mime_type"),
        actor=actor_from_request(),
    )
    return jsonify(result)
