"""Transport-neutral request/response models and the httpx transport."""

from restguard.http.models import ApiRequest, ApiResponse, RequestOptions
from restguard.http.transport import HttpxTransport, Transport, check_response

__all__ = [
    "ApiRequest",
    "ApiResponse",
    "RequestOptions",
    "HttpxTransport",
    "Transport",
    "check_response",
]
