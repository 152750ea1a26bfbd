"""Middleware package for the proxy."""

from aiproxy.app.middleware.request_id import RequestIdMiddleware, get_request_id
from aiproxy.app.middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "RequestIdMiddleware",
    "RequestSizeLimitMiddleware",
    "get_request_id",
]
