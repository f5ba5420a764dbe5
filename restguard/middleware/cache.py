"""Opt-in response cache for GET requests.

Cache keys are scoped by credential fingerprint and host so tenants and
servers never see each other's data. Any mutation invalidates every cached
GET under the same top-level resource on that host ("/courses/12" clears
"/courses/12/assignments" but leaves "/courses_archive" alone).
"""

import re
from typing import Optional
from urllib.parse import urlencode

import httpx

from restguard.core.cache import CacheBackend, InMemoryCache
from restguard.core.logging import get_logger
from restguard.core.security import fingerprint_credential
from restguard.http.models import ApiRequest, ApiResponse
from restguard.middleware.base import Handler, Middleware
from restguard.ratelimit.bucket import DEFAULT_HOST, host_from_url

logger = get_logger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

_API_PREFIX = re.compile(r"^/api/v\d+(?=/|$)")


def resource_path(request: ApiRequest) -> str:
    """Path of the request with any host and API version prefix removed."""
    path = httpx.URL(request.path).path if request.is_absolute else request.path
    path = "/" + path.lstrip("/")
    return _API_PREFIX.sub("", path) or "/"


class ResponseCacheMiddleware(Middleware):
    """Serve repeated GETs from a TTL cache.

    Args:
        cache: Backend storing responses (in-memory by default)
        default_ttl: Seconds a cached response stays fresh
        enabled: Master switch; when False the middleware is a pass-through
        default_host: Host used for relative paths
    """

    name = "cache"

    def __init__(
        self,
        cache: Optional[CacheBackend] = None,
        default_ttl: int = 300,
        enabled: bool = True,
        default_host: str = "",
    ):
        self.cache = cache if cache is not None else InMemoryCache()
        self.default_ttl = default_ttl
        self.enabled = enabled
        self.default_host = default_host

    def _scope(self, request: ApiRequest) -> str:
        host = host_from_url(request.path) if request.is_absolute else self.default_host
        host = host.lower() or DEFAULT_HOST
        return f"{fingerprint_credential(request.extensions.get('credential'))}:{host}"

    def cache_key(self, request: ApiRequest) -> str:
        query = sorted(request.query_items())
        if request.is_absolute:
            query = sorted([*query, *httpx.URL(request.path).params.multi_items()])
        key = f"{self._scope(request)}:GET:{resource_path(request)}"
        if query:
            key += "?" + urlencode(query)
        return key

    async def invalidate(self, request: ApiRequest) -> int:
        segments = [s for s in resource_path(request).split("/") if s]
        prefix = f"{self._scope(request)}:GET:/"
        if not segments:
            removed = await self.cache.delete_prefix(prefix)
        else:
            # Match the whole segment: "/courses" must not clear "/courses_archive"
            prefix += segments[0]
            removed = 0
            for boundary in ("/", "?"):
                removed += await self.cache.delete_prefix(prefix + boundary)
            if await self.cache.get(prefix) is not None:
                await self.cache.delete(prefix)
                removed += 1
        if removed:
            logger.debug(f"Invalidated {removed} cached responses under {prefix}")
        return removed

    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        if not self.enabled:
            return await call_next(request)

        if request.method in MUTATING_METHODS:
            response = await call_next(request)
            await self.invalidate(request)
            return response

        if request.method != "GET" or not request.options.cache:
            return await call_next(request)

        key = self.cache_key(request)
        if not request.options.cache_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {key}")
                request.extensions["cache_hit"] = True
                return cached

        response = await call_next(request)
        if response.is_success:
            await self.cache.set(key, response, self.default_ttl)
        return response
