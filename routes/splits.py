"""
Split group routes.
"""

from flask import Blueprint, request

import splits
from auth import require_auth
from responses import get_json_body, success_response

splits_bp = Blueprint("splits", __name__, url_prefix="/api/splits")


@splits_bp.route("", methods=["POST"])
@require_auth
def create_split(actor):
    """Body JSON: name, type, bearer_type, bearer_subaccount (optional), splits [{subaccount, share}]"""
    return success_response(splits.create_split_group(actor.id, get_json_body()), 201)


@splits_bp.route("", methods=["GET"])
@require_auth
def list_splits(actor):
    active = request.args.get("active")
    if active is not None:
        active = active.lower() in ("1", "true", "yes")
    return success_response(splits.list_split_groups(actor.id, active=active))
