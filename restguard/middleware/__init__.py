"""Interceptors composing the request pipeline.

Canonical order, outermost first:
    ContextHeadersMiddleware -> LoggingMiddleware -> ResponseCacheMiddleware
    -> RateLimitMiddleware -> RetryMiddleware -> transport
"""

from restguard.middleware.base import Handler, Middleware, MiddlewareChain
from restguard.middleware.cache import ResponseCacheMiddleware
from restguard.middleware.context_headers import ContextHeadersMiddleware
from restguard.middleware.logging import LoggingMiddleware
from restguard.middleware.rate_limit import RateLimitMiddleware
from restguard.middleware.retry import RetryMiddleware

__all__ = [
    "ContextHeadersMiddleware",
    "Handler",
    "LoggingMiddleware",
    "Middleware",
    "MiddlewareChain",
    "RateLimitMiddleware",
    "ResponseCacheMiddleware",
    "RetryMiddleware",
]
