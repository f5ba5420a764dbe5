"""Custom exceptions for the restguard request pipeline.

Every error raised by the pipeline inherits from RestGuardError so callers
can catch the whole family, while the concrete classes let the retry policy
and the rate limiter classify failures without inspecting messages.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from restguard.http.models import ApiResponse


class RestGuardError(Exception):
    """Base class for pipeline exceptions.

    Attributes:
        message: Human readable description
        attempts: Number of transport attempts made before the error
            surfaced (set by the retry middleware, 0 when unknown)
    """

    retryable: bool = False

    def __init__(self, message: str = "Request pipeline error"):
        self.message = message
        self.attempts = 0
        super().__init__(message)

    def __str__(self) -> str:
        if self.attempts > 1:
            return f"{self.message} (after {self.attempts} attempts)"
        return self.message


class ConfigurationError(RestGuardError):
    """Raised when the pipeline is missing settings it cannot work without."""


class TransportError(RestGuardError):
    """Connection-level failure (DNS, TCP, TLS, timeouts).

    ``request_sent`` is False when the failure happened before any byte of
    the request reached the server (connect errors, pool timeouts). Such
    attempts are never charged against the quota and are safe to retry for
    any HTTP method.
    """

    retryable = True

    def __init__(self, message: str = "Transport error", request_sent: bool = True):
        self.request_sent = request_sent
        super().__init__(message)


class HTTPStatusError(RestGuardError):
    """Base class for errors carrying a non-success HTTP response."""

    def __init__(self, response: "ApiResponse", message: str | None = None):
        self.response = response
        self.status_code = response.status_code
        self.body = response.text
        super().__init__(
            message or f"HTTP {response.status_code} for {response.method} {response.url}"
        )


class ClientError(HTTPStatusError):
    """4xx response other than 429. Terminal, never retried."""


class ServerError(HTTPStatusError):
    """5xx response. Retryable."""

    retryable = True


class TooManyRequestsError(HTTPStatusError):
    """Server-side throttling (429, or a 403 flagged as rate limited).

    Distinct from QuotaExceededError, which is raised by the client-side
    limiter before anything is sent.
    """

    retryable = True

    def __init__(
        self,
        response: "ApiResponse",
        retry_after: Optional[float] = None,
        message: str | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(response, message)


class QuotaExceededError(RestGuardError):
    """Raised by the rate limiter when a bucket is throttled in fail-fast mode.

    Never retried automatically: the caller decides whether to queue the
    work for later.
    """

    def __init__(
        self,
        bucket: str,
        retry_after: Optional[float] = None,
        detail: str | None = None,
    ):
        self.bucket = bucket
        self.retry_after = retry_after
        message = detail or f"Request quota exhausted for bucket {bucket!r}."
        if retry_after is not None and detail is None:
            message += f" Window resets in {retry_after:.1f}s."
        super().__init__(message)


class RequestCancelledError(RestGuardError):
    """Raised when a caller-supplied cancellation token or deadline fires."""

    def __init__(self, reason: str = "Request cancelled"):
        self.reason = reason
        super().__init__(reason)
