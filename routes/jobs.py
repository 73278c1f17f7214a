"""
Job routes: read a job, quote it, answer the quote, open a dispute.
"""

from flask import Blueprint, current_app

import lifecycle
import quotes
from auth import require_auth
from responses import get_json_body, success_response

jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/jobs")


def _job_body(job, actor):
    return {
        "job": job.to_dict(
            viewer_role=job.role_of(actor.id),
            include_codes=bool(current_app.config.get("HANDSHAKE_STORE_PLAINTEXT")),
        )
    }


@jobs_bp.route("/<job_id>", methods=["GET"])
@require_auth
def get_job(actor, job_id):
    job = lifecycle.load_job(job_id)
    lifecycle.require_party(job, actor.id)
    return success_response(_job_body(job, actor))


@jobs_bp.route("/<job_id>/quote", methods=["POST"])
@require_auth
def submit_quote(actor, job_id):
    """
    Provider submits the quote. Body JSON: labor_cost, materials_cost (optional), breakdown (optional)
    """
    data = get_json_body()
    job = quotes.submit_quote(
        job_id,
        actor.id,
        labor=data.get("labor_cost"),
        materials=data.get("materials_cost"),
        breakdown=data.get("breakdown"),
    )
    return success_response(_job_body(job, actor), 201)


@jobs_bp.route("/<job_id>/quote/response", methods=["POST"])
@require_auth
def respond_to_quote(actor, job_id):
    """Customer accepts or rejects the quote. Body JSON: accepted (bool)"""
    data = get_json_body()
    job = quotes.respond_to_quote(job_id, actor.id, data.get("accepted"))
    return success_response(_job_body(job, actor))


@jobs_bp.route("/<job_id>/quote", methods=["GET"])
@require_auth
def get_quote(actor, job_id):
    return success_response({"quote_status": quotes.quote_status(job_id, actor.id)})


@jobs_bp.route("/<job_id>/dispute", methods=["POST"])
@require_auth
def open_dispute(actor, job_id):
    data = get_json_body()
    job = lifecycle.flag_dispute(job_id, actor.id, data.get("reason"))
    return success_response(_job_body(job, actor))
