"""Tests for the retry policy and Retry-After parsing."""

import random
from email.utils import formatdate

import pytest

from restguard.exceptions import (
    ClientError,
    QuotaExceededError,
    RequestCancelledError,
    ServerError,
    TooManyRequestsError,
    TransportError,
)
from restguard.retry import RetryContext, RetryDecision, RetryPolicy, parse_retry_after


class TestRetryPolicy:
    """Test RetryPolicy configuration."""

    def test_default_values(self):
        """Test default retry policy values."""
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 16.0
        assert policy.multiplier == 2.0
        assert policy.jitter == 0.25
        assert policy.retry_after_cap == 120.0
        assert policy.retry_non_idempotent is False

    def test_calculate_delay(self):
        """Test exponential delay calculation without jitter."""
        policy = RetryPolicy(base_delay=0.5, max_delay=10.0, jitter=0)

        # Attempt 1: 0.5 * 2^0 = 0.5
        assert policy.calculate_delay(1) == 0.5
        # Attempt 2: 0.5 * 2^1 = 1.0
        assert policy.calculate_delay(2) == 1.0
        # Attempt 3: 0.5 * 2^2 = 2.0
        assert policy.calculate_delay(3) == 2.0

    def test_calculate_delay_capped_at_max(self):
        """Test delay is capped at max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0)

        assert policy.calculate_delay(3) == 4.0
        # 1.0 * 2^3 = 8.0, capped at 5.0
        assert policy.calculate_delay(4) == 5.0
        assert policy.calculate_delay(50) == 5.0

    def test_delays_non_decreasing_without_jitter(self):
        """Test successive delays never shrink."""
        policy = RetryPolicy(base_delay=0.3, max_delay=16.0, jitter=0)
        delays = [policy.calculate_delay(n) for n in range(1, 12)]
        assert delays == sorted(delays)

    def test_jitter_bounds(self):
        """Test jittered delays stay within [delay, delay * (1 + jitter)] and the ceiling."""
        policy = RetryPolicy(base_delay=1.0, max_delay=16.0, jitter=0.25, rng=random.Random(42))

        for attempt in range(1, 10):
            base = min(1.0 * 2 ** (attempt - 1), 16.0)
            delay = policy.calculate_delay(attempt)
            assert base <= delay or delay == 16.0
            assert delay <= min(base * 1.25, 16.0)

    def test_from_settings(self):
        """Test the policy is built from settings."""
        from restguard.core.config import Settings

        config = Settings(_env_file=None, retry_max_attempts=5, retry_base_delay=0.1, retry_non_idempotent=True)
        policy = RetryPolicy.from_settings(config)

        assert policy.max_attempts == 5
        assert policy.base_delay == 0.1
        assert policy.retry_non_idempotent is True


class TestShouldRetry:
    """Test retry decisions."""

    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_attempts=4, jitter=0)

    def test_server_error_retried(self, policy, make_response):
        """Test 5xx responses are retried with backoff."""
        decision = policy.should_retry(1, ServerError(make_response(503)))
        assert decision == RetryDecision(True, 1.0, reason="backoff")

    def test_transport_error_retried(self, policy):
        """Test transport failures are retried."""
        assert policy.should_retry(2, TransportError("reset")).retry is True

    def test_client_error_not_retried(self, policy, make_response):
        """Test 4xx responses are terminal."""
        decision = policy.should_retry(1, ClientError(make_response(404)))
        assert decision.retry is False
        assert "not retryable" in decision.reason

    def test_quota_and_cancel_not_retried(self, policy):
        """Test client-side quota and cancellation errors are terminal."""
        assert policy.should_retry(1, QuotaExceededError("b")).retry is False
        assert policy.should_retry(1, RequestCancelledError()).retry is False

    def test_foreign_exception_not_retried(self, policy):
        """Test exceptions outside the taxonomy are never retried."""
        assert policy.should_retry(1, ValueError("bug")).retry is False

    def test_ceiling_reached(self, policy, make_response):
        """Test attempt >= max_attempts stops regardless of error kind."""
        decision = policy.should_retry(4, ServerError(make_response(503)))
        assert decision.retry is False
        assert "ceiling" in decision.reason

    def test_per_call_ceiling(self, policy, make_response):
        """Test a per-call max_attempts override."""
        assert policy.should_retry(2, ServerError(make_response(503)), max_attempts=2).retry is False

    def test_retry_after_used(self, policy, make_response):
        """Test a 429 with Retry-After: 5 waits exactly 5 seconds."""
        error = TooManyRequestsError(make_response(429), retry_after=5.0)
        decision = policy.should_retry(1, error)
        assert decision.retry is True
        assert decision.delay == 5.0

    def test_retry_after_capped(self, policy, make_response):
        """Test huge Retry-After hints are capped."""
        error = TooManyRequestsError(make_response(429), retry_after=3600.0)
        assert policy.should_retry(1, error).delay == 120.0

    def test_429_without_hint_uses_backoff(self, policy, make_response):
        """Test a 429 without Retry-After falls back to backoff."""
        decision = policy.should_retry(2, TooManyRequestsError(make_response(429)))
        assert decision.delay == 2.0

    def test_post_not_retried_by_default(self, policy, make_response):
        """Test POST is not retried after reaching the server."""
        decision = policy.should_retry(1, ServerError(make_response(503)), method="POST")
        assert decision.retry is False
        assert "not idempotent" in decision.reason

    def test_post_retried_with_opt_in(self, policy, make_response):
        """Test POST is retried when explicitly allowed."""
        error = ServerError(make_response(503))
        assert policy.should_retry(1, error, method="POST", retry_non_idempotent=True).retry is True

    def test_post_retried_when_never_sent(self, policy):
        """Test connect failures are safe to retry for any method."""
        error = TransportError("refused", request_sent=False)
        assert policy.should_retry(1, error, method="POST").retry is True

    def test_post_not_retried_after_sent_transport_error(self, policy):
        """Test a read failure after sending a POST is not retried."""
        error = TransportError("read timeout", request_sent=True)
        assert policy.should_retry(1, error, method="PATCH").retry is False

    def test_put_and_delete_idempotent(self, policy, make_response):
        """Test PUT and DELETE are retried like GET."""
        error = ServerError(make_response(502))
        assert policy.should_retry(1, error, method="PUT").retry is True
        assert policy.should_retry(1, error, method="delete").retry is True


class TestParseRetryAfter:
    """Test Retry-After header parsing."""

    def test_delta_seconds(self):
        """Test integer and fractional second values."""
        assert parse_retry_after("5") == 5.0
        assert parse_retry_after("1.5") == 1.5

    def test_http_date(self):
        """Test HTTP-date values become a delay from now."""
        now = 1_700_000_000.0
        header = formatdate(now + 10, usegmt=True)
        assert parse_retry_after(header, now=now) == pytest.approx(10.0)

    def test_past_date_is_zero(self):
        """Test dates in the past give no delay."""
        now = 1_700_000_000.0
        assert parse_retry_after(formatdate(now - 60, usegmt=True), now=now) == 0.0

    def test_invalid_values(self):
        """Test missing or garbage values yield None."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_negative_clamped(self):
        """Test negative deltas clamp to zero."""
        assert parse_retry_after("-3") == 0.0


class TestRetryContext:
    """Test per-call retry bookkeeping."""

    def test_counts_attempts(self):
        """Test attempts are numbered from 1."""
        context = RetryContext(max_attempts=2)
        assert context.start_attempt() == 1
        assert context.start_attempt() == 2

    def test_exhausted(self):
        """Test starting past the ceiling is an error."""
        context = RetryContext(max_attempts=1)
        context.start_attempt()
        with pytest.raises(RuntimeError):
            context.start_attempt()

    def test_record(self):
        """Test the last error and chosen delay are kept."""
        context = RetryContext(max_attempts=3)
        error = TransportError("x")
        context.record(error, RetryDecision(True, 2.5))
        assert context.last_error is error
        assert context.next_delay == 2.5
