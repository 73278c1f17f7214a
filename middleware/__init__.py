from .request_id import RequestIdMiddleware, RequestIdFilter, current_request_id

__all__ = ['RequestIdMiddleware', 'RequestIdFilter', 'current_request_id']
