"""Transport layer: the innermost step of the middleware chain.

The transport performs exactly one network call per invocation and maps
httpx failures onto the pipeline's error taxonomy. check_response turns
non-success statuses into typed errors so that every interceptor above it
only has to reason about exceptions.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from restguard.core.logging import get_logger
from restguard.exceptions import (
    ClientError,
    ConfigurationError,
    ServerError,
    TooManyRequestsError,
    TransportError,
)
from restguard.http.models import ApiRequest, ApiResponse
from restguard.retry import parse_retry_after

logger = get_logger(__name__)

# Failures raised before the request left the client
_NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)

RATE_LIMIT_BODY_MARKER = "Rate Limit Exceeded"


class Transport(ABC):
    """Base class for transports wrapped by the pipeline."""

    @abstractmethod
    async def send(self, request: ApiRequest) -> ApiResponse:
        """Perform a single network call.

        Returns a response for every HTTP status; raises TransportError only
        for connection-level failures.
        """
        pass

    async def aclose(self) -> None:
        """Release resources held by the transport."""
        return None


class HttpxTransport(Transport):
    """Transport backed by an httpx.AsyncClient.

    Args:
        client: The HTTP client to send through
        base_url: API root (e.g. "https://canvas.example.edu")
        api_version: Path prefix joined in front of relative paths
        owns_client: Close the client in aclose()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "",
        api_version: str = "",
        owns_client: bool = False,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_version = "/" + api_version.strip("/") if api_version.strip("/") else ""
        self.owns_client = owns_client

    def build_url(self, request: ApiRequest) -> str:
        if request.is_absolute:
            return request.path
        if not self.base_url:
            raise ConfigurationError(
                f"No base URL configured for relative path {request.path!r}"
            )
        path = "/" + request.path.lstrip("/")
        if self.api_version and not path.startswith(self.api_version + "/"):
            path = self.api_version + path
        return self.base_url + path

    async def send(self, request: ApiRequest) -> ApiResponse:
        url = self.build_url(request)
        params = request.query_items() or None
        start = time.perf_counter()
        try:
            response = await self.client.request(
                request.method,
                url,
                params=params,
                headers=request.headers,
                json=request.json,
                data=request.data,
                content=request.content,
            )
        except _NOT_SENT_ERRORS as e:
            raise TransportError(
                f"{type(e).__name__} connecting to {url}: {e}", request_sent=False
            ) from e
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__} for {url}: {e}") from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        return ApiResponse.from_httpx(response, elapsed_ms=elapsed_ms)

    async def aclose(self) -> None:
        if self.owns_client:
            await self.client.aclose()


def is_throttled_forbidden(response: ApiResponse) -> bool:
    """Detect a 403 that actually signals server-side throttling.

    Some APIs (Canvas among them) answer an exhausted quota with 403 plus
    a zero remaining-quota header or a "Rate Limit Exceeded" body.
    """
    if response.status_code != 403:
        return False
    remaining = response.headers.get("x-rate-limit-remaining")
    if remaining is not None:
        try:
            return float(remaining) <= 0
        except ValueError:
            pass
    return RATE_LIMIT_BODY_MARKER in response.text


def check_response(response: ApiResponse, now: Optional[float] = None) -> ApiResponse:
    """Return successful responses, raise typed errors for the rest."""
    status = response.status_code
    if status < 400:
        return response

    if status == 429 or is_throttled_forbidden(response):
        retry_after = parse_retry_after(response.headers.get("retry-after"), now=now)
        raise TooManyRequestsError(response, retry_after=retry_after)
    if status >= 500:
        raise ServerError(response)
    raise ClientError(response)
