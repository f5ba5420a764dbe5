"""Retry step of the chain: re-issues failed attempts per the RetryPolicy.

Runs inside the rate limiter, so the limiter admits the first attempt.
A retry that follows an attempt the server actually received goes back
through the limiter for a fresh unit, waiting or failing fast like the
first attempt. Each response is reconciled with the limiter once: here
for attempts that are retried, by the rate limit step for the final one.
"""

from typing import Optional

from restguard.cancellation import SleepFunc, cancellable_sleep
from restguard.core.logging import get_log_context, get_logger
from restguard.exceptions import (
    HTTPStatusError,
    QuotaExceededError,
    RestGuardError,
    TransportError,
)
from restguard.http.models import ApiRequest, ApiResponse
from restguard.middleware.base import Handler, Middleware
from restguard.ratelimit.limiter import RateLimiter
from restguard.retry import RetryContext, RetryPolicy

logger = get_logger(__name__)


def reached_server(error: RestGuardError) -> bool:
    if isinstance(error, HTTPStatusError):
        return True
    return isinstance(error, TransportError) and error.request_sent


class RetryMiddleware(Middleware):
    """Retry retryable failures with backoff.

    Args:
        policy: Decides whether and when to retry
        limiter: Rate limiter admitting retried attempts, if any
        sleep: Cancellable sleep, injectable for tests
    """

    name = "retry"

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: SleepFunc = cancellable_sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.limiter = limiter
        self.sleep = sleep

    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        options = request.options
        context = RetryContext(
            max_attempts=options.max_attempts or self.policy.max_attempts
        )
        bucket = request.extensions.get("bucket")
        limiter = self.limiter if bucket else None

        while True:
            attempt = context.start_attempt()
            request.extensions["attempt"] = attempt
            try:
                response = await call_next(request)
            except RestGuardError as e:
                decision = self.policy.should_retry(
                    attempt,
                    e,
                    method=request.method,
                    max_attempts=context.max_attempts,
                    retry_non_idempotent=options.retry_non_idempotent,
                )
                context.record(e, decision)
                log_context = get_log_context(
                    request_id=request.extensions.get("request_id"),
                    bucket=bucket,
                    method=request.method,
                    path=request.path,
                    attempt=attempt,
                )

                if not decision.retry:
                    e.attempts = attempt
                    if attempt > 1:
                        logger.warning(
                            f"Giving up on {request.method} {request.path} after "
                            f"{attempt} attempts ({decision.reason}): {type(e).__name__}",
                            extra=log_context,
                        )
                    else:
                        logger.debug(
                            f"Not retrying {type(e).__name__}: {decision.reason}",
                            extra=log_context,
                        )
                    raise

                if limiter is not None and isinstance(e, HTTPStatusError):
                    await limiter.reconcile(bucket, e.response.headers)

                logger.warning(
                    f"Retry {attempt}/{context.max_attempts - 1} for {request.method} "
                    f"{request.path} after {type(e).__name__}. Waiting {decision.delay:.2f}s...",
                    extra=log_context,
                )
                await self.sleep(decision.delay, options.cancel_token)

                # The unit reserved for the failed attempt is still unspent
                # when the request never left the client
                if limiter is not None and reached_server(e):
                    try:
                        await limiter.acquire(
                            bucket,
                            wait=options.wait_on_limit,
                            cancel_token=options.cancel_token,
                        )
                    except QuotaExceededError as quota_error:
                        quota_error.attempts = attempt
                        logger.warning(
                            f"Retry of {request.method} {request.path} blocked by quota "
                            f"after {attempt} attempts",
                            extra=log_context,
                        )
                        raise
                continue

            response.attempts = attempt
            return response
