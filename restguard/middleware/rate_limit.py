"""Client-side rate limiting step of the chain.

Resolves the request's bucket, reserves one unit of quota before the call
goes further in, and feeds the server's quota headers back into the
limiter once it returns.
"""

from typing import Optional

from restguard.exceptions import HTTPStatusError, TransportError
from restguard.http.models import ApiRequest, ApiResponse
from restguard.middleware.base import Handler, Middleware
from restguard.ratelimit.bucket import BucketResolver, host_from_url
from restguard.ratelimit.limiter import RateLimiter


class RateLimitMiddleware(Middleware):
    """Admit requests through the RateLimiter.

    The bucket key is stored in ``request.extensions["bucket"]`` for the
    interceptors inside (retry) and outside (logging) this one.

    Args:
        limiter: Limiter holding the quota state
        resolver: Maps host and credential to a bucket key
        default_host: Host used for relative paths
    """

    name = "rate-limit"

    def __init__(
        self,
        limiter: RateLimiter,
        resolver: Optional[BucketResolver] = None,
        default_host: str = "",
    ):
        self.limiter = limiter
        self.resolver = resolver or BucketResolver()
        self.default_host = default_host

    def bucket_for(self, request: ApiRequest) -> str:
        host = host_from_url(request.path) if request.is_absolute else self.default_host
        return self.resolver.resolve(
            host,
            request.extensions.get("credential"),
            override=request.options.rate_limit_bucket,
        )

    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        key = self.bucket_for(request)
        request.extensions["bucket"] = key

        await self.limiter.acquire(
            key,
            wait=request.options.wait_on_limit,
            cancel_token=request.options.cancel_token,
        )

        try:
            response = await call_next(request)
        except HTTPStatusError as e:
            await self.limiter.reconcile(key, e.response.headers)
            raise
        except TransportError as e:
            if not e.request_sent:
                await self.limiter.refund(key)
            raise

        await self.limiter.reconcile(key, response.headers)
        return response
