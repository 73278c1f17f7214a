"""
JSON envelope shared by every endpoint: ``ok`` plus ``request_id``.
"""
from flask import g, jsonify, request

from errors import ValidationError
from middleware.request_id import current_request_id
from sanitize import sanitize_dict


def success_response(payload=None, status=200):
    body = {"ok": True}
    if payload:
        body.update(payload)
    body["request_id"] = current_request_id()
    return jsonify(body), status


def error_response(message, status_code, **extra):
    body = {"ok": False, "error": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    body["request_id"] = current_request_id()
    return jsonify(body), status_code


def load_json_body():
    """before_request hook: parse and sanitize JSON bodies once per request."""
    g.json_body = None
    if request.method in ("POST", "PUT", "PATCH") and request.content_length != 0:
        data = request.get_json(silent=True)
        if data is not None:
            g.json_body = sanitize_dict(data)


def get_json_body():
    data = getattr(g, "json_body", None)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")
    return data
