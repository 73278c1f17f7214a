"""
Request ID middleware for request tracing and logging
"""
import logging
import re
import secrets

from flask import has_request_context, request

from helpers import millis_now, to_base36

# Accept caller-supplied ids only if they look harmless in logs and headers
_INCOMING_ID = re.compile(r'^[A-Za-z0-9_\-]{8,64}$')


def generate_request_id():
    """req_<base36 millis>_<8 hex>"""
    return f'req_{to_base36(millis_now())}_{secrets.token_hex(4)}'


class RequestIdMiddleware:
    """
    WSGI middleware to add unique request ID to each request
    Useful for logging and tracing requests across services
    """

    def __init__(self, app):
        self.app = app

    def __call__(self, environ, start_response):
        incoming = environ.get('HTTP_X_REQUEST_ID', '')
        request_id = incoming if _INCOMING_ID.match(incoming) else generate_request_id()

        environ['request_id'] = request_id

        def custom_start_response(status, headers, exc_info=None):
            headers.append(('X-Request-ID', request_id))
            return start_response(status, headers, exc_info)

        return self.app(environ, custom_start_response)


def current_request_id():
    if has_request_context():
        return request.environ.get('request_id')
    return None


class RequestIdFilter(logging.Filter):
    """Expose the current request id to log formatters as %(request_id)s."""

    def filter(self, record):
        record.request_id = current_request_id() or '-'
        return True
