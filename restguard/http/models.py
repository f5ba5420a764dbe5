"""Request and response data models for the pipeline.

ApiRequest is what callers (and interceptors) hand down the chain;
ApiResponse is what comes back. Both are transport-neutral so middleware
can be tested without a network.
"""

import json as jsonlib
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

import httpx

if TYPE_CHECKING:
    from restguard.cancellation import CancellationToken

QueryParams = Union[Dict[str, Any], List[Tuple[str, Any]], None]


@dataclass(frozen=True)
class RequestOptions:
    """Per-call knobs. ``None`` means "use the executor's configured default".

    Attributes:
        wait_on_limit: Block until the quota window resets instead of
            failing fast with QuotaExceededError
        rate_limit_bucket: Explicit bucket name overriding host+credential
        max_attempts: Override of the retry attempt ceiling
        retry_non_idempotent: Allow automatic retry of POST/PATCH
        timeout: Deadline in seconds for the whole logical call
        cancel_token: Explicit cancellation signal
        cache: False bypasses the response cache for this call
        cache_refresh: Skip the cache lookup but store the fresh response
        masquerade_as: Act-as-user id for this call only
    """

    wait_on_limit: Optional[bool] = None
    rate_limit_bucket: Optional[str] = None
    max_attempts: Optional[int] = None
    retry_non_idempotent: Optional[bool] = None
    timeout: Optional[float] = None
    cancel_token: Optional["CancellationToken"] = None
    cache: bool = True
    cache_refresh: bool = False
    masquerade_as: Optional[str] = None


@dataclass
class ApiRequest:
    """A logical request travelling through the middleware chain.

    ``path`` is either a path relative to the configured base URL or an
    absolute URL (pagination cursors, redirect targets). ``extensions`` is
    request-scoped scratch space for interceptors.
    """

    method: str
    path: str
    query: QueryParams = None
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    content: Optional[bytes] = None
    options: RequestOptions = field(default_factory=RequestOptions)
    extensions: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    @property
    def is_absolute(self) -> bool:
        return self.path.startswith(("http://", "https://"))

    def copy_with(self, **changes: Any) -> "ApiRequest":
        """Return a copy with ``changes`` applied (headers/extensions copied)."""
        changes.setdefault("headers", dict(self.headers))
        changes.setdefault("extensions", self.extensions)
        return replace(self, **changes)

    def query_items(self) -> List[Tuple[str, str]]:
        if not self.query:
            return []
        items = self.query.items() if isinstance(self.query, dict) else self.query
        result: List[Tuple[str, str]] = []
        for key, value in items:
            if isinstance(value, (list, tuple)):
                result.extend((key, str(v)) for v in value)
            elif value is not None:
                result.append((key, str(value)))
        return result

    def body_text(self) -> str:
        """Best-effort textual body for logging."""
        if self.json is not None:
            return jsonlib.dumps(self.json, default=str, ensure_ascii=False)
        if isinstance(self.data, dict):
            return "&".join(f"{k}={v}" for k, v in self.data.items())
        if self.data is not None:
            return str(self.data)
        if self.content:
            return self.content.decode("utf-8", errors="replace")
        return ""


@dataclass
class ApiResponse:
    """A response returned by the transport.

    Attributes:
        status_code: HTTP status
        headers: Case-insensitive response headers
        content: Raw body bytes
        url: Final URL of the request
        method: HTTP method used
        elapsed_ms: Transport time of the final attempt
        attempts: Number of transport attempts made for this response
    """

    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes = b""
    url: str = ""
    method: str = "GET"
    elapsed_ms: float = 0.0
    attempts: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    @classmethod
    def from_httpx(cls, response: httpx.Response, elapsed_ms: float = 0.0) -> "ApiResponse":
        return cls(
            status_code=response.status_code,
            headers=response.headers,
            content=response.content,
            url=str(response.request.url) if response.request else "",
            method=response.request.method if response.request else "GET",
            elapsed_ms=elapsed_ms,
        )

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def links(self) -> Dict[str, str]:
        """Link header relations mapped to URLs (empty when absent)."""
        from restguard.pagination.link_header import LinkHeaderParser

        return LinkHeaderParser().parse(self.headers.get("link", ""))

    def json(self) -> Any:
        if not self.content:
            return None
        return jsonlib.loads(self.content)
