"""
WSGI middleware
"""
from lawnmates.middleware.request_id import RequestIdFilter, RequestIdMiddleware, get_request_id

__all__ = ['RequestIdMiddleware', 'RequestIdFilter', 'get_request_id']
