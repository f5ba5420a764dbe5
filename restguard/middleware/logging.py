"""Request/response logging with credential redaction.

Sits just inside the header injection step, so it records the request as
it will be sent, with every sensitive header, query parameter and body
field masked before anything reaches a handler.
"""

import logging
import time
import uuid
from typing import Iterable, Optional

import httpx

from restguard.core.config import DEFAULT_SANITIZE_FIELDS
from restguard.core.logging import get_log_context, get_logger
from restguard.core.security import (
    redact_headers,
    redact_query,
    sanitize_body,
    truncate,
)
from restguard.exceptions import HTTPStatusError, RestGuardError
from restguard.http.models import ApiRequest, ApiResponse
from restguard.middleware.base import Handler, Middleware

RATE_LIMIT_HEADERS = ("x-rate-limit-remaining", "x-request-cost", "retry-after")


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class LoggingMiddleware(Middleware):
    """Log one record per logical call plus one per failure.

    Args:
        logger: Logger to write to (defaults to this module's)
        sanitize_fields: Substrings of header/field names to redact
        max_body_length: Bodies longer than this are truncated in logs
        log_bodies: Include request and error bodies in the records
    """

    name = "logging"

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        sanitize_fields: Iterable[str] = DEFAULT_SANITIZE_FIELDS,
        max_body_length: int = 1000,
        log_bodies: bool = True,
    ):
        self.logger = logger or get_logger(__name__)
        self.sanitize_fields = list(sanitize_fields)
        self.max_body_length = max_body_length
        self.log_bodies = log_bodies

    def _safe_body(self, body: str) -> str:
        return truncate(sanitize_body(body, self.sanitize_fields), self.max_body_length)

    def _display_path(self, request: ApiRequest) -> str:
        if not request.is_absolute:
            return request.path
        # Cursor URLs may embed credentials in their query
        url = httpx.URL(request.path)
        if not url.query:
            return request.path
        params = redact_query(url.params.multi_items(), self.sanitize_fields)
        return str(url.copy_with(params=params))

    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        request_id = request.extensions.setdefault("request_id", generate_request_id())
        path = self._display_path(request)
        context = get_log_context(request_id=request_id, method=request.method, path=path)

        details = {
            "headers": redact_headers(request.headers, self.sanitize_fields),
            "query": redact_query(request.query_items(), self.sanitize_fields),
        }
        if self.log_bodies:
            body = request.body_text()
            if body:
                details["body"] = self._safe_body(body)
        self.logger.debug(
            f"Request {request.method} {path}", extra={**context, "request": details}
        )

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except RestGuardError as e:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            error_context = {
                **context,
                "bucket": request.extensions.get("bucket"),
                "duration_ms": duration_ms,
                "attempt": e.attempts or None,
                "error_type": type(e).__name__,
            }
            if isinstance(e, HTTPStatusError):
                error_context["status_code"] = e.status_code
                if self.log_bodies and e.body:
                    error_context["response_body"] = self._safe_body(e.body)
            self.logger.error(
                f"{request.method} {path} failed: {e}",
                extra={k: v for k, v in error_context.items() if v is not None},
            )
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        rate_limit = {
            name: response.headers[name] for name in RATE_LIMIT_HEADERS if name in response.headers
        }
        extra = {
            **context,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "attempt": response.attempts,
        }
        if request.extensions.get("bucket"):
            extra["bucket"] = request.extensions["bucket"]
        if rate_limit:
            extra["rate_limit"] = rate_limit
        self.logger.info(
            f"{request.method} {path} -> {response.status_code} ({duration_ms}ms)",
            extra=extra,
        )
        return response
