"""restguard: a resilient client pipeline for rate-limited, paginated REST APIs."""

from restguard.cancellation import CancellationToken, cancellable_sleep
from restguard.core.config import Settings, get_settings
from restguard.exceptions import (
    ClientError,
    ConfigurationError,
    HTTPStatusError,
    QuotaExceededError,
    RequestCancelledError,
    RestGuardError,
    ServerError,
    TooManyRequestsError,
    TransportError,
)
from restguard.executor import CredentialProvider, RequestExecutor
from restguard.http import ApiRequest, ApiResponse, HttpxTransport, RequestOptions, Transport
from restguard.pagination import LinkHeaderParser, PaginatedResult, Paginator
from restguard.ratelimit import BucketResolver, BucketStatus, QuotaState, QuotaTracker, RateLimiter
from restguard.retry import RetryDecision, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "ApiRequest",
    "ApiResponse",
    "BucketResolver",
    "BucketStatus",
    "CancellationToken",
    "ClientError",
    "ConfigurationError",
    "CredentialProvider",
    "HTTPStatusError",
    "HttpxTransport",
    "LinkHeaderParser",
    "PaginatedResult",
    "Paginator",
    "QuotaExceededError",
    "QuotaState",
    "QuotaTracker",
    "RateLimiter",
    "RequestCancelledError",
    "RequestExecutor",
    "RequestOptions",
    "RestGuardError",
    "RetryDecision",
    "RetryPolicy",
    "ServerError",
    "Settings",
    "TooManyRequestsError",
    "Transport",
    "TransportError",
    "cancellable_sleep",
    "get_settings",
]
