"""Request executor: the public entry point of the pipeline.

The executor assembles the canonical middleware chain around a transport
and exposes verb helpers plus pagination on top of it:

    ContextHeaders -> Logging -> ResponseCache -> RateLimit -> Retry -> transport

Example:
    async with RequestExecutor(Settings(base_url="https://canvas.example.edu",
                                        api_key="...")) as api:
        course = (await api.get("/courses/1")).json()
        async for student in api.all("/courses/1/students"):
            ...
"""

import asyncio
import inspect
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from restguard.cancellation import SleepFunc, cancellable_sleep
from restguard.core.cache import CacheBackend
from restguard.core.config import Settings, get_settings
from restguard.core.http_client import create_http_client
from restguard.exceptions import RequestCancelledError
from restguard.http.models import ApiRequest, ApiResponse, QueryParams, RequestOptions
from restguard.http.transport import HttpxTransport, Transport, check_response
from restguard.middleware import (
    ContextHeadersMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewareChain,
    RateLimitMiddleware,
    ResponseCacheMiddleware,
    RetryMiddleware,
)
from restguard.pagination import PaginatedResult, Paginator
from restguard.ratelimit import BucketResolver, QuotaTracker, RateLimiter, host_from_url
from restguard.retry import RetryPolicy

CredentialProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class RequestExecutor:
    """Runs requests through the resilience pipeline.

    All collaborators are injectable; anything not supplied is built from
    ``settings``. Executors sharing a QuotaTracker (or a RateLimiter) share
    quota state, which is how several clients for the same tenant stay
    within one server-side budget.

    Args:
        settings: Pipeline settings (defaults to the process-wide instance)
        transport: Transport performing single network calls
        http_client: Shared httpx.AsyncClient for the default transport;
            when omitted the executor creates and owns one
        credential_provider: Callable (sync or async) returning the current
            bearer token; defaults to ``settings.api_key``
        tracker: Quota store shared with other executors
        limiter: Fully configured rate limiter (its tracker wins)
        retry_policy: Retry policy (defaults from settings)
        middleware: Replacement middleware list, outermost first
        cache: Backend for the response cache; supplying one enables it
        sleep: Cancellable sleep used for limiter waits and backoff
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        credential_provider: Optional[CredentialProvider] = None,
        tracker: Optional[QuotaTracker] = None,
        limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        middleware: Optional[List[Middleware]] = None,
        cache: Optional[CacheBackend] = None,
        sleep: SleepFunc = cancellable_sleep,
    ):
        self.settings = settings or get_settings()
        config = self.settings

        if transport is None:
            owns_client = http_client is None
            if http_client is None:
                http_client = create_http_client(config)
            transport = HttpxTransport(
                http_client,
                base_url=config.base_url,
                api_version=config.api_version,
                owns_client=owns_client,
            )
        self.transport = transport
        self.credential_provider = credential_provider
        self.sleep = sleep

        self.limiter = limiter or RateLimiter.from_settings(config, tracker=tracker, sleep=sleep)
        self.tracker = self.limiter.tracker
        self.retry_policy = retry_policy or RetryPolicy.from_settings(config)
        self.cache = cache

        if middleware is None:
            middleware = self.default_middleware()
        self.chain = MiddlewareChain(middleware, self._send)
        self.paginator = Paginator(
            self,
            max_pages=config.pagination_max_pages,
            per_page=config.pagination_per_page,
        )

    def default_middleware(self) -> List[Middleware]:
        """Build the canonical interceptor list from settings."""
        config = self.settings
        chain: List[Middleware] = [
            ContextHeadersMiddleware(
                default_headers=config.default_headers,
                masquerade_user_id=config.masquerade_user_id,
                masquerade_param=config.masquerade_param,
            )
        ]
        if config.log_requests:
            chain.append(
                LoggingMiddleware(
                    sanitize_fields=config.log_sanitize_fields,
                    max_body_length=config.log_max_body_length,
                )
            )
        default_host = host_from_url(config.base_url)
        if config.cache_enabled or self.cache is not None:
            chain.append(
                ResponseCacheMiddleware(
                    self.cache,
                    default_ttl=config.cache_default_ttl,
                    default_host=default_host,
                )
            )
        if config.rate_limit_enabled:
            chain.append(
                RateLimitMiddleware(
                    self.limiter,
                    BucketResolver(config.rate_limit_bucket_overrides),
                    default_host=default_host,
                )
            )
        chain.append(RetryMiddleware(self.retry_policy, limiter=self.limiter, sleep=self.sleep))
        return chain

    async def _send(self, request: ApiRequest) -> ApiResponse:
        response = await self.transport.send(request)
        return check_response(response)

    async def _credential(self) -> Optional[str]:
        if self.credential_provider is None:
            return self.settings.api_key or None
        credential = self.credential_provider()
        if inspect.isawaitable(credential):
            credential = await credential
        return credential or None

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Run one logical request through the middleware chain.

        Raises:
            RestGuardError: Any pipeline failure, unchanged from the
                interceptor that raised it
            RequestCancelledError: The cancel token fired or the per-call
                deadline (``options.timeout``) passed
        """
        options = request.options
        if options.cancel_token is not None:
            options.cancel_token.raise_if_cancelled()

        # Fresh scratch space per call; the caller's request stays reusable
        request = request.copy_with(extensions=dict(request.extensions))
        credential = await self._credential()
        if credential:
            request.extensions.setdefault("credential", credential)

        if options.timeout is None:
            return await self.chain(request)

        try:
            async with asyncio.timeout(options.timeout):
                return await self.chain(request)
        except TimeoutError as e:
            raise RequestCancelledError(
                f"Deadline of {options.timeout}s exceeded for {request.method} {request.path}"
            ) from e

    def build_request(
        self,
        method: str,
        path: Union[str, ApiRequest],
        params: QueryParams = None,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Any = None,
        content: Optional[bytes] = None,
        options: Optional[RequestOptions] = None,
    ) -> ApiRequest:
        if isinstance(path, ApiRequest):
            return path
        return ApiRequest(
            method=method,
            path=path,
            query=params,
            headers=dict(headers or {}),
            json=json,
            data=data,
            content=content,
            options=options or RequestOptions(),
        )

    async def request(self, method: str, path: str, **kwargs: Any) -> ApiResponse:
        return await self.execute(self.build_request(method, path, **kwargs))

    async def get(self, path: str, params: QueryParams = None, **kwargs: Any) -> ApiResponse:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        return await self.request("DELETE", path, **kwargs)

    # Pagination

    async def first_page(
        self,
        path: Union[str, ApiRequest],
        params: QueryParams = None,
        items_key: Optional[str] = None,
        **kwargs: Any,
    ) -> PaginatedResult:
        request = self.build_request("GET", path, params=params, **kwargs)
        return await self.paginator.first_page(request, items_key)

    async def next_page(
        self, result: PaginatedResult, items_key: Optional[str] = None
    ) -> Optional[PaginatedResult]:
        return await self.paginator.next_page(result, items_key)

    async def all(
        self,
        path: Union[str, ApiRequest],
        params: QueryParams = None,
        items_key: Optional[str] = None,
        **kwargs: Any,
    ) -> AsyncIterator[Any]:
        """Iterate lazily over every item of a paginated collection."""
        request = self.build_request("GET", path, params=params, **kwargs)
        async for item in self.paginator.all(request, items_key):
            yield item

    async def collect_all(
        self,
        path: Union[str, ApiRequest],
        params: QueryParams = None,
        items_key: Optional[str] = None,
        **kwargs: Any,
    ) -> List[Any]:
        request = self.build_request("GET", path, params=params, **kwargs)
        return await self.paginator.collect_all(request, items_key)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
