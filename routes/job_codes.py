"""
Handshake code routes: issue, verify and inspect start/end codes.
"""

from flask import Blueprint

import handshake
from auth import require_auth
from errors import ValidationError
from responses import get_json_body, success_response

job_codes_bp = Blueprint("job_codes", __name__, url_prefix="/api/job-codes")


@job_codes_bp.route("", methods=["POST"])
@require_auth
def issue_job_code(actor):
    """
    Issue (or re-show) the caller's handshake code.
    Body JSON: job_id (str), role ('customer' | 'provider'), method (str, optional)
    """
    data = get_json_body()
    job_id = data.get("job_id")
    role = data.get("role")
    if not job_id or not role:
        raise ValidationError("Missing required fields: job_id and role")

    issued = handshake.issue_code(job_id, actor.id, role, data.get("method") or "ui")
    return success_response(issued)


@job_codes_bp.route("/verify", methods=["POST"])
@require_auth
def verify_job_code(actor):
    """
    Body JSON: job_id (str), kind ('start' | 'end'), code (str)
    """
    data = get_json_body()
    job_id = data.get("job_id")
    if not job_id:
        raise ValidationError("job_id is required", field="job_id")

    job = handshake.verify(job_id, actor.id, data.get("kind"), data.get("code"))
    return success_response({"job": job.to_dict(viewer_role=job.role_of(actor.id))})


@job_codes_bp.route("/<job_id>", methods=["GET"])
@require_auth
def job_code_status(actor, job_id):
    return success_response({"handshake": handshake.handshake_status(job_id, actor.id)})
