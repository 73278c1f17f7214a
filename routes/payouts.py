"""
Provider payout method routes.
"""

from flask import Blueprint

import payouts
from auth import require_auth
from errors import NotFound
from responses import get_json_body, success_response

payouts_bp = Blueprint("payouts", __name__, url_prefix="/api/payout-methods")


@payouts_bp.route("", methods=["POST"])
@require_auth
def create_payout_method(actor):
    """
    Body JSON: type, account_name, account_number, bank_code (bank only),
    label, country, is_default (all optional)
    """
    return success_response(payouts.create_payout_method(actor.id, get_json_body()), 201)


@payouts_bp.route("", methods=["GET"])
@require_auth
def list_payout_methods(actor):
    return success_response({"payout_methods": payouts.list_payout_methods(actor.id)})


@payouts_bp.route("/default", methods=["GET"])
@require_auth
def get_default_payout_method(actor):
    method = payouts.default_payout_method(actor.id)
    if method is None:
        raise NotFound("No default payout method")
    return success_response({"payout_method": method.to_dict()})
