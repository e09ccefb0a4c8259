"""
Delivery Blueprint — delivery state machine endpoints.

Endpoints:
    POST /api/v1/clients/<id>/deliveries             submit for review
    GET  /api/v1/clients/<id>/deliveries             list (?status=, ?limit=, ?offset=)
    POST /api/v1/deliveries/bulk                     match files to clients and deliver
    GET  /api/v1/deliveries/<id>                     detail
    POST /api/v1/deliveries/<id>/approve             approve
    POST /api/v1/deliveries/<id>/revision-requests   request revision
    GET  /api/v1/deliveries/<id>/versions            version history
    GET  /api/v1/deliveries/<id>/comments            comment thread
    POST /api/v1/deliveries/<id>/comments            add comment

Responses of state-changing calls carry ``warnings`` (notification
failures); they never change the status code of a committed operation.
"""

import logging

from flask import Blueprint, jsonify, request

from portal.blueprints import actor_from_request, paginate_query
from portal.services import bulk_delivery, delivery_lifecycle, delivery_service
from portal.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

delivery_bp = Blueprint("deliveries", __name__, url_prefix="/api/v1")
register_error_handlers(delivery_bp)


@delivery_bp.route("/clients/<client_id>/deliveries", methods=["POST"])
def submit_delivery(client_id):
    data = request.get_json(silent=True) or {}
    result = delivery_lifecycle.submit_for_review(
        client_id,
        document_title=data.get("document_title"),
        file_ref=data.get("file_ref"),
        document_type=data.get("document_type", "document"),
        file_size=data.get("file_size"),
        mime_type=data.get("mime_type"),
        actor=actor_from_request(),
    )
    return jsonify(result), 201


@delivery_bp.route("/clients/<client_id>/deliveries", methods=["GET"])
def list_deliveries(client_id):
    query = delivery_service.deliveries_query(client_id, request.args.get("status") or None)
    items, total = paginate_query(query)
    return jsonify({"items": [d.to_dict() for d in items], "total": total})


@delivery_bp.route("/deliveries/bulk", methods=["POST"])
def bulk_submit_deliveries():
    """Match uploaded files to clients by file name and deliver them.

    Body: {"files": [{file_name, file_ref, file_size?, mime_type?}], "dry_run"?}
    """
    data = request.get_json(silent=True) or {}
    result = bulk_delivery.bulk_submit(
        data.get("files"),
        dry_run=bool(data.get("dry_run", False)),
        actor=actor_from_request(),
    )
    return jsonify(result)


@delivery_bp.route("/deliveries/<delivery_id>", methods=["GET"])
def get_delivery(delivery_id):
    return jsonify(delivery_service.get_delivery(delivery_id).to_dict())


@delivery_bp.route("/deliveries/<delivery_id>/approve", methods=["POST"])
def approve_delivery(delivery_id):
    return jsonify(delivery_lifecycle.approve(delivery_id, actor=actor_from_request("client")))


@delivery_bp.route("/deliveries/<delivery_id>/revision-requests", methods=["POST"])
def request_revision(delivery_id):
    data = request.get_json(silent=True) or {}
    result = delivery_lifecycle.request_revision(
        delivery_id,
        reasons=data.get("reasons"),
        description=data.get("description"),
        custom_reason=data.get("custom_reason"),
        attachment_refs=data.get("attachment_refs"),
        actor=actor_from_request("client"),
    )
    return jsonify(result), 201


@delivery_bp.route("/deliveries/<delivery_id>/versions", methods=["GET"])
def list_versions(delivery_id):
    versions = delivery_service.list_versions(delivery_id)
    return jsonify({"items": [v.to_dict() for v in versions], "total": len(versions)})


@delivery_bp.route("/deliveries/<delivery_id>/comments", methods=["GET"])
def list_comments(delivery_id):
    comments = delivery_service.list_comments(delivery_id)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@delivery_bp.route("/deliveries/<delivery_id>/comments", methods=["POST"])
def add_comment(delivery_id):
    data = request.get_json(silent=True) or {}
    comment = delivery_service.add_comment(
        delivery_id,
        author=data.get("author"),
        content=data.get("content"),
        is_staff=bool(data.get("is_staff", False)),
    )
    return jsonify(comment.to_dict()), 201
