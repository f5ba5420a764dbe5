"""Tests for the pipeline error taxonomy."""

import pytest

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


class TestRetryableFlags:
    """Test which errors the retry policy may retry."""

    def test_transient_errors_are_retryable(self, make_response):
        """Transport, 5xx and 429 errors are flagged retryable."""
        assert TransportError("boom").retryable is True
        assert ServerError(make_response(503)).retryable is True
        assert TooManyRequestsError(make_response(429)).retryable is True

    def test_terminal_errors_are_not_retryable(self, make_response):
        """Client errors, quota, cancellation and config errors are terminal."""
        assert ClientError(make_response(404)).retryable is False
        assert QuotaExceededError("bucket").retryable is False
        assert RequestCancelledError().retryable is False
        assert ConfigurationError("missing").retryable is False

    def test_all_errors_share_base(self, make_response):
        """Every pipeline error can be caught as RestGuardError."""
        for error in (
            TransportError(),
            ClientError(make_response(400)),
            QuotaExceededError("b"),
            RequestCancelledError(),
        ):
            assert isinstance(error, RestGuardError)


class TestHTTPStatusError:
    """Test status-carrying errors."""

    def test_carries_status_and_body(self, make_response):
        """The error exposes status, body and the response itself."""
        response = make_response(404, json={"errors": [{"message": "not found"}]})
        error = ClientError(response)

        assert isinstance(error, HTTPStatusError)
        assert error.status_code == 404
        assert "not found" in error.body
        assert error.response is response
        assert "HTTP 404" in str(error)

    def test_too_many_requests_keeps_retry_after(self, make_response):
        """TooManyRequestsError keeps the parsed Retry-After value."""
        error = TooManyRequestsError(make_response(429), retry_after=5.0)
        assert error.retry_after == 5.0


class TestAttemptAnnotation:
    """Test the attempt count added by the retry middleware."""

    def test_message_mentions_attempts(self):
        """More than one attempt is reflected in the message."""
        error = TransportError("connection reset")
        error.attempts = 4
        assert str(error) == "connection reset (after 4 attempts)"

    def test_single_attempt_message_unchanged(self):
        """A single attempt leaves the message untouched."""
        error = TransportError("connection reset")
        error.attempts = 1
        assert str(error) == "connection reset"

    def test_transport_error_defaults_to_sent(self):
        """Transport errors assume the request was sent unless told otherwise."""
        assert TransportError("x").request_sent is True
        assert TransportError("x", request_sent=False).request_sent is False


class TestQuotaExceededError:
    """Test the client-side quota error."""

    def test_message_includes_bucket_and_reset(self):
        """The message names the bucket and when the window resets."""
        error = QuotaExceededError("canvas.example.edu:abc", retry_after=12.0)
        assert error.bucket == "canvas.example.edu:abc"
        assert error.retry_after == 12.0
        assert "canvas.example.edu:abc" in str(error)
        assert "12.0s" in str(error)

    def test_custom_detail(self):
        """An explicit detail replaces the default message."""
        error = QuotaExceededError("b", retry_after=90.0, detail="wait too long")
        assert str(error) == "wait too long"


def test_cancelled_error_reason():
    """The cancellation reason is the message."""
    with pytest.raises(RequestCancelledError, match="user left"):
        raise RequestCancelledError("user left")
