"""
Progress Blueprint — reconciled onboarding progress for the client portal.

Endpoints:
    GET  /api/v1/clients/<id>/progress                 merged progress
    POST /api/v1/clients/<id>/progress/steps/<step>    record local step completion
"""

from flask import Blueprint, jsonify

from portal.services import progress_reconciliation
from portal.utils.errors import register_error_handlers

progress_bp = Blueprint("progress", __name__, url_prefix="/api/v1")
register_error_handlers(progress_bp)


@progress_bp.route("/clients/<client_id>/progress", methods=["GET"])
def get_progress(client_id):
    return jsonify(progress_reconciliation.get_merged_progress(client_id))


@progress_bp.route("/clients/<client_id>/progress/steps/<step>", methods=["POST"])
def complete_step(client_id, step):
    return jsonify(progress_reconciliation.record_local_step_completion(client_id, step))
