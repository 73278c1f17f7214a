"""
Payment API routes for Fundi.
Paystack: customer pays (M-PESA push or card checkout) -> platform keeps its
commission -> provider is settled through their subaccount.
"""

from flask import Blueprint, request

import payments
from auth import require_auth
from responses import get_json_body, success_response

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.route("/initiate", methods=["POST"])
@require_auth
def initiate_payment(actor):
    """
    Start a Paystack transaction for a job.
    Body JSON: job_id (str), amount (number), currency, phone, channel (optional)
    Header: Idempotency-Key (optional) replays an earlier initiation for the same job
    """
    data = get_json_body()
    client_key = request.headers.get("Idempotency-Key") or data.get("idempotency_key")
    result = payments.initiate_payment(
        actor,
        data.get("job_id"),
        data.get("amount"),
        currency=data.get("currency"),
        phone=data.get("phone"),
        channel=data.get("channel"),
        client_key=client_key,
    )
    return success_response(result)


@payments_bp.route("/verify/<reference>", methods=["GET"])
@require_auth
def verify_payment(actor, reference):
    return success_response(payments.verify_payment(actor, reference))
