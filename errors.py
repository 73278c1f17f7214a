"""
Error taxonomy for the job lifecycle service.

Service functions raise these; the Flask error handler registered in
server.py converts them into ``{"ok": false, "error": ..., "request_id": ...}``
JSON bodies with the matching HTTP status. ``error`` is safe to show to the
user, ``error_code`` is stable for clients to branch on.
"""


class ServiceError(Exception):
    status_code = 500
    error_code = 'internal_error'
    default_message = 'Internal server error'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_dict(self):
        body = {'error': self.message, 'error_code': self.error_code}
        body.update(self.details)
        return body


class Unauthorized(ServiceError):
    status_code = 401
    error_code = 'unauthorized'
    default_message = 'Unauthorized'


class Forbidden(Unauthorized):
    """Authenticated, but not a party allowed to perform the action."""
    status_code = 403
    error_code = 'forbidden'
    default_message = 'You are not allowed to perform this action'


class ValidationError(ServiceError):
    status_code = 400
    error_code = 'validation_error'
    default_message = 'Invalid request'


class NotFound(ServiceError):
    status_code = 404
    error_code = 'not_found'
    default_message = 'Not found'


class StateConflict(ServiceError):
    status_code = 409
    error_code = 'state_conflict'
    default_message = 'The job is not in a state that allows this action'


class AlreadyLocked(StateConflict):
    error_code = 'already_locked'
    default_message = 'Quote is locked and cannot be modified'


class InvalidCode(ServiceError):
    """Handshake code rejected. ``reason`` is one of mismatch, used, expired, missing."""
    status_code = 400
    error_code = 'invalid_code'
    default_message = 'Invalid code'

    def __init__(self, message=None, reason='mismatch'):
        super().__init__(message, reason=reason)
        self.reason = reason


class RateLimited(ServiceError):
    status_code = 429
    error_code = 'rate_limited'
    default_message = 'Too many requests. Please try again later.'

    def __init__(self, message=None, retry_after=None):
        super().__init__(message, retry_after=retry_after)
        self.retry_after = retry_after


class UpstreamFailure(ServiceError):
    status_code = 502
    error_code = 'upstream_failure'
    default_message = 'Upstream service failed'


class GatewayRejected(UpstreamFailure):
    """The payment gateway refused the request (4xx). The message is user-actionable."""
    status_code = 400
    error_code = 'gateway_rejected'
    default_message = 'Payment request was rejected'


class GatewayUnavailable(UpstreamFailure):
    """Transport failure, 5xx or unparseable answer from the gateway."""
    error_code = 'gateway_unavailable'
    default_message = 'Payment service temporarily unavailable'


class ServiceNotConfigured(ServiceError):
    status_code = 500
    error_code = 'service_not_configured'
    default_message = 'Service is not configured'
