"""Retry policy with exponential backoff and jitter.

The policy is a pure decision function: given the attempt number and the
error that ended it, it returns a RetryDecision saying whether to try again
and how long to wait. The retry middleware owns the loop and the sleeping,
which keeps the policy testable without any I/O.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from restguard.exceptions import RestGuardError, TooManyRequestsError, TransportError

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a retry check."""

    retry: bool
    delay: float = 0.0
    reason: str = ""


@dataclass
class RetryContext:
    """Per-call retry bookkeeping, discarded when the call resolves.

    Attributes:
        attempt: Number of attempts made so far
        max_attempts: Attempt ceiling for this call
        last_error: Error that ended the latest attempt
        next_delay: Delay chosen before the next attempt
    """

    max_attempts: int
    attempt: int = 0
    last_error: Optional[Exception] = None
    next_delay: float = 0.0

    def start_attempt(self) -> int:
        if self.attempt >= self.max_attempts:
            raise RuntimeError("retry context exhausted")
        self.attempt += 1
        return self.attempt

    def record(self, error: Exception, decision: RetryDecision) -> None:
        self.last_error = error
        self.next_delay = decision.delay if decision.retry else 0.0


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header value into seconds.

    Accepts both delta-seconds ("5", "1.5") and HTTP-dates. Returns None
    for a missing or unparsable value.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now if now is not None else time.time()
    return max(0.0, when.timestamp() - current)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (default: 3)
        base_delay: Delay before the first retry in seconds (default: 1.0)
        max_delay: Ceiling for any computed delay in seconds (default: 16.0)
        multiplier: Base for exponential calculation (default: 2.0)
        jitter: Upper bound of the random extra, as a fraction of the delay
        retry_after_cap: Ceiling applied to server Retry-After hints
        retry_non_idempotent: Retry POST/PATCH after the request was sent

    Example:
        >>> policy = RetryPolicy(base_delay=0.5, jitter=0)
        >>> policy.calculate_delay(attempt=3)  # 0.5 * 2^2
        2.0
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 16.0
    multiplier: float = 2.0
    jitter: float = 0.25
    retry_after_cap: float = 120.0
    retry_non_idempotent: bool = False
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @classmethod
    def from_settings(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            multiplier=config.retry_multiplier,
            jitter=config.retry_jitter,
            retry_after_cap=config.retry_after_cap,
            retry_non_idempotent=config.retry_non_idempotent,
        )

    def calculate_delay(self, attempt: int, with_jitter: bool = True) -> float:
        """Calculate the backoff before retrying after ``attempt`` failed.

        delay = min(max_delay, base_delay * multiplier^(attempt - 1) * (1 + U(0, jitter)))

        Args:
            attempt: The attempt that just failed (1-indexed)
            with_jitter: Add the random component

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = self.base_delay * (self.multiplier ** max(0, attempt - 1))
        if with_jitter and self.jitter > 0:
            delay *= 1 + self.rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        """Only pipeline errors flagged retryable qualify (transport, 5xx, 429)."""
        return isinstance(error, RestGuardError) and error.retryable

    def should_retry(
        self,
        attempt: int,
        error: BaseException,
        method: str = "GET",
        max_attempts: Optional[int] = None,
        retry_non_idempotent: Optional[bool] = None,
    ) -> RetryDecision:
        """Decide whether the call should be attempted again.

        Args:
            attempt: Number of attempts made so far (1-indexed)
            error: The error that ended the latest attempt
            method: HTTP method of the request
            max_attempts: Per-call override of the attempt ceiling
            retry_non_idempotent: Per-call override of the POST/PATCH opt-in

        Returns:
            RetryDecision with the delay to wait before the next attempt
        """
        limit = max_attempts if max_attempts is not None else self.max_attempts
        if attempt >= limit:
            return RetryDecision(False, reason=f"attempt ceiling {limit} reached")

        if not self.is_retryable(error):
            return RetryDecision(False, reason=f"{type(error).__name__} is not retryable")

        allow_unsafe = (
            retry_non_idempotent if retry_non_idempotent is not None else self.retry_non_idempotent
        )
        never_sent = isinstance(error, TransportError) and not error.request_sent
        if method.upper() not in IDEMPOTENT_METHODS and not allow_unsafe and not never_sent:
            return RetryDecision(False, reason=f"{method.upper()} is not idempotent")

        if isinstance(error, TooManyRequestsError) and error.retry_after is not None:
            delay = min(error.retry_after, self.retry_after_cap)
            return RetryDecision(True, delay, reason="server retry-after hint")

        return RetryDecision(True, self.calculate_delay(attempt), reason="backoff")
