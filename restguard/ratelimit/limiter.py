"""Quota-aware client-side rate limiter.

The limiter keeps an optimistic count of the requests left in each bucket
and corrects it from the quota headers the server returns. Decrement and
check happen under the bucket's lock, so concurrent requests sharing a
bucket can never both spend the last unit.
"""

import math
import re
import time
from typing import Callable, Mapping, Optional

from restguard.cancellation import CancellationToken, SleepFunc, cancellable_sleep
from restguard.core.logging import get_log_context, get_logger
from restguard.exceptions import QuotaExceededError
from restguard.ratelimit.models import BucketStatus, QuotaState
from restguard.ratelimit.tracker import QuotaTracker

logger = get_logger(__name__)

REMAINING_HEADERS = ("x-rate-limit-remaining", "ratelimit-remaining", "x-ratelimit-remaining")
LIMIT_HEADERS = ("x-rate-limit-limit", "ratelimit-limit", "x-ratelimit-limit")
RESET_HEADERS = ("x-rate-limit-reset", "ratelimit-reset", "x-ratelimit-reset")
COST_HEADERS = ("x-request-cost",)

# Reset values above this are absolute epoch seconds, below it deltas
EPOCH_THRESHOLD = 1_000_000_000

_NUMBER = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


def _header_number(headers: Mapping[str, str], names: tuple[str, ...]) -> Optional[float]:
    for name in names:
        raw = headers.get(name)
        if raw is None:
            continue
        # RateLimit-Limit may carry a policy suffix: "100, 100;w=60"
        match = _NUMBER.match(str(raw))
        if match:
            return float(match.group(1))
    return None


class RateLimiter:
    """Admission control for outbound requests, one quota per bucket.

    Args:
        tracker: Store holding the quota state of every bucket
        requests_per_window: Known window capacity. When None, buckets stay
            UNKNOWN (requests pass) until a response reports quota headers
        window_seconds: Window length used when a window is opened locally
        wait_on_limit: Default behaviour when throttled: wait for the
            reset (True) or raise QuotaExceededError (False)
        max_wait_seconds: Longest wait accepted before failing instead
        clock: Epoch-seconds clock, injectable for tests
        sleep: Cancellable sleep, injectable for tests
    """

    def __init__(
        self,
        tracker: Optional[QuotaTracker] = None,
        requests_per_window: Optional[int] = None,
        window_seconds: float = 3600.0,
        wait_on_limit: bool = True,
        max_wait_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
        sleep: SleepFunc = cancellable_sleep,
    ):
        self.tracker = tracker if tracker is not None else QuotaTracker()
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.wait_on_limit = wait_on_limit
        self.max_wait_seconds = max_wait_seconds
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def from_settings(cls, config, tracker: Optional[QuotaTracker] = None, **kwargs) -> "RateLimiter":
        return cls(
            tracker=tracker,
            requests_per_window=config.rate_limit_requests_per_window,
            window_seconds=config.rate_limit_window_seconds,
            wait_on_limit=config.rate_limit_wait_on_limit,
            max_wait_seconds=config.rate_limit_max_wait_seconds,
            **kwargs,
        )

    def _refresh_window(self, state: QuotaState, now: float) -> None:
        """Open a new window once the old one has expired."""
        if state.reset_at is None or now < state.reset_at:
            return
        if state.limit is not None:
            state.remaining = state.limit
            state.reset_at = now + self.window_seconds
        else:
            # Capacity unknown: back to UNKNOWN until the server tells us
            state.remaining = None
            state.reset_at = None
        state.updated_at = now

    async def acquire(
        self,
        key: str,
        wait: Optional[bool] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[QuotaState]:
        """Reserve one request from ``key``'s budget.

        Args:
            key: Bucket key
            wait: Override of wait_on_limit for this call
            cancel_token: Aborts a wait for the window reset

        Returns:
            Snapshot of the bucket after the charge, or None when the bucket
            is UNKNOWN and the request passed untracked

        Raises:
            QuotaExceededError: Throttled and not waiting, or the wait would
                exceed max_wait_seconds
            RequestCancelledError: The token fired while waiting
        """
        wait = self.wait_on_limit if wait is None else wait

        while True:
            async with self.tracker.lock(key):
                now = self.clock()
                state = self.tracker.get(key)
                if state is None:
                    if self.requests_per_window is None:
                        return None
                    state = self.tracker.put(
                        key,
                        QuotaState(
                            limit=self.requests_per_window,
                            remaining=self.requests_per_window,
                            reset_at=now + self.window_seconds,
                            updated_at=now,
                        ),
                    )

                self._refresh_window(state, now)

                if state.remaining is None:
                    return None

                if state.remaining > 0:
                    state.remaining -= 1
                    state.updated_at = now
                    return state.copy()

                delay = state.seconds_until_reset(now)
                if delay is None:
                    # No reset time known: fail open rather than block forever
                    logger.warning(
                        "Bucket exhausted with unknown reset time, letting request through",
                        extra=get_log_context(bucket=key),
                    )
                    return state.copy()

            if not wait:
                raise QuotaExceededError(key, retry_after=delay)
            if delay > self.max_wait_seconds:
                raise QuotaExceededError(
                    key,
                    retry_after=delay,
                    detail=(
                        f"Rate limit wait for bucket {key!r} ({delay:.1f}s) exceeds "
                        f"maximum ({self.max_wait_seconds:.1f}s)."
                    ),
                )

            logger.info(
                f"Bucket throttled, waiting {delay:.2f}s for window reset",
                extra=get_log_context(bucket=key),
            )
            await self.sleep(delay, cancel_token)

    async def reconcile(self, key: str, headers: Mapping[str, str]) -> Optional[QuotaState]:
        """Replace the optimistic estimate with server-reported quota values.

        Returns:
            Snapshot after reconciliation, or None when the response carried
            no quota headers
        """
        remaining = _header_number(headers, REMAINING_HEADERS)
        limit = _header_number(headers, LIMIT_HEADERS)
        reset = _header_number(headers, RESET_HEADERS)
        cost = _header_number(headers, COST_HEADERS)
        if remaining is None and limit is None and reset is None and cost is None:
            return None

        async with self.tracker.lock(key):
            now = self.clock()
            state = self.tracker.get_or_create(key)
            previous = state.remaining

            if limit is not None:
                state.limit = max(0, int(limit))
            if reset is not None:
                state.reset_at = reset if reset > EPOCH_THRESHOLD else now + reset
            elif state.reset_at is None and remaining is not None and limit is not None:
                state.reset_at = now + self.window_seconds
            if remaining is not None:
                state.remaining = max(0, math.floor(remaining))
            if cost is not None:
                state.cost = cost
            state.updated_at = now

            if previous is not None and state.remaining is not None and state.remaining != previous:
                logger.debug(
                    f"Quota reconciled: believed {previous}, server reports {state.remaining}",
                    extra=get_log_context(bucket=key),
                )
            if state.status(now) is BucketStatus.THROTTLED:
                logger.warning(
                    "Server reports bucket exhausted",
                    extra=get_log_context(bucket=key, reset_at=state.reset_at),
                )
            return state.copy()

    async def refund(self, key: str) -> None:
        """Give back one unit for an attempt that never reached the server."""
        async with self.tracker.lock(key):
            state = self.tracker.get(key)
            if state is None or state.remaining is None:
                return
            state.remaining += 1
            if state.limit is not None:
                state.remaining = min(state.remaining, state.limit)
            state.updated_at = self.clock()

    def snapshot(self, key: str) -> Optional[QuotaState]:
        return self.tracker.snapshot(key)

    def status(self, key: str) -> BucketStatus:
        state = self.tracker.get(key)
        if state is None:
            return BucketStatus.UNKNOWN
        return state.status(self.clock())

    def reset(self, key: Optional[str] = None) -> None:
        self.tracker.reset(key)
