"""End-to-end tests for the request executor."""

import asyncio
import json

import httpx
import pytest
import respx

from restguard.cancellation import CancellationToken
from restguard.core.config import Settings
from restguard.exceptions import ConfigurationError, QuotaExceededError, RequestCancelledError, ServerError
from restguard.executor import RequestExecutor
from restguard.http.models import ApiRequest, ApiResponse, RequestOptions
from restguard.http.transport import Transport
from restguard.ratelimit import QuotaTracker, make_bucket_key

BASE_URL = "https://canvas.example.edu"
API = f"{BASE_URL}/api/v1"


def make_settings(**kwargs) -> Settings:
    values = {"base_url": BASE_URL, "api_key": "tok", "retry_jitter": 0}
    values.update(kwargs)
    return Settings(_env_file=None, **values)


class SlowTransport(Transport):
    """Transport that never answers in time."""

    def __init__(self):
        self.calls = 0

    async def send(self, request: ApiRequest) -> ApiResponse:
        self.calls += 1
        await asyncio.sleep(10)
        return ApiResponse(200)


class TestRequests:
    """Tests for plain requests over httpx."""

    @pytest.mark.asyncio
    async def test_get_builds_url_and_auth(self):
        """Test the full URL, bearer token and user agent are sent."""
        async with respx.mock() as router:
            route = router.get(f"{API}/courses/1").mock(return_value=httpx.Response(200, json={"id": 1}))

            async with RequestExecutor(make_settings()) as executor:
                response = await executor.get("/courses/1")

            sent = route.calls.last.request
            assert sent.headers["authorization"] == "Bearer tok"
            assert sent.headers["user-agent"].startswith("restguard/")

        assert response.json() == {"id": 1}
        assert response.attempts == 1

    @pytest.mark.asyncio
    async def test_post_sends_json(self):
        """Test POST bodies are sent as JSON."""
        async with respx.mock() as router:
            route = router.post(f"{API}/courses").mock(return_value=httpx.Response(201, json={"id": 2}))

            async with RequestExecutor(make_settings()) as executor:
                response = await executor.post("/courses", json={"course": {"name": "Biology"}})

            assert json.loads(route.calls.last.request.content) == {"course": {"name": "Biology"}}
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_async_credential_provider(self):
        """Test an async credential provider is awaited per call."""
        tokens = iter(["first", "second"])

        async def provider():
            return next(tokens)

        async with respx.mock() as router:
            route = router.get(f"{API}/users/self").mock(return_value=httpx.Response(200, json={}))

            async with RequestExecutor(make_settings(api_key=""), credential_provider=provider) as executor:
                await executor.get("/users/self")
                await executor.get("/users/self")

            assert [c.request.headers["authorization"] for c in route.calls] == [
                "Bearer first",
                "Bearer second",
            ]

    @pytest.mark.asyncio
    async def test_missing_base_url(self, sleep):
        """Test relative paths without a base URL fail with ConfigurationError."""
        async with RequestExecutor(make_settings(base_url=""), sleep=sleep) as executor:
            with pytest.raises(ConfigurationError):
                await executor.get("/courses")

    @pytest.mark.asyncio
    async def test_server_error_after_retries(self, sleep):
        """Test persistent 5xx surfaces as ServerError after the retry budget."""
        async with respx.mock() as router:
            route = router.get(f"{API}/courses").mock(return_value=httpx.Response(500))

            async with RequestExecutor(make_settings(), sleep=sleep) as executor:
                with pytest.raises(ServerError) as exc_info:
                    await executor.get("/courses")

            assert route.call_count == 3
        assert exc_info.value.attempts == 3


class TestPagination:
    """Tests for pagination through the executor."""

    @pytest.mark.asyncio
    async def test_next_link_fetched_exactly(self):
        """Test the next page is a GET to exactly the URL in the Link header."""
        next_url = f"{API}/courses?page=2&per_page=2"

        async with respx.mock() as router:
            # Most specific route first
            second = router.get(next_url).mock(return_value=httpx.Response(200, json=[3]))
            first = router.get(f"{API}/courses", params={"per_page": "2"}).mock(
                return_value=httpx.Response(200, json=[1, 2], headers={"Link": f'<{next_url}>; rel="next"'})
            )

            async with RequestExecutor(make_settings()) as executor:
                page = await executor.first_page("/courses", params={"per_page": 2})
                following = await executor.next_page(page)

            assert first.called
            assert second.calls.last.request.method == "GET"
            assert str(second.calls.last.request.url) == next_url

        assert page.items == [1, 2]
        assert following.items == [3]
        assert following.has_next is False

    @pytest.mark.asyncio
    async def test_collect_all(self):
        """Test every page is walked in order."""
        async with respx.mock() as router:

            def pages(request):
                number = int(request.url.params.get("page", "1"))
                headers = {}
                if number < 3:
                    headers["Link"] = f'<{API}/courses?page={number + 1}>; rel="next"'
                return httpx.Response(200, json=[number * 10, number * 10 + 1], headers=headers)

            router.get(url__startswith=f"{API}/courses").mock(side_effect=pages)

            async with RequestExecutor(make_settings()) as executor:
                items = await executor.collect_all("/courses")

        assert items == [10, 11, 20, 21, 30, 31]

    @pytest.mark.asyncio
    async def test_all_streams_items(self):
        """Test the async iterator yields items across pages."""
        async with respx.mock() as router:
            router.get(f"{API}/courses?page=2").mock(return_value=httpx.Response(200, json=[{"id": 2}]))
            router.get(f"{API}/courses").mock(
                return_value=httpx.Response(
                    200, json=[{"id": 1}], headers={"Link": f'<{API}/courses?page=2>; rel="next"'}
                )
            )

            async with RequestExecutor(make_settings()) as executor:
                ids = [course["id"] async for course in executor.all("/courses")]

        assert ids == [1, 2]


class TestRateLimiting:
    """Tests for client-side quota enforcement through the executor."""

    @pytest.mark.asyncio
    async def test_one_unit_two_concurrent_requests(self, scripted_transport, make_response, sleep):
        """Test only one of two concurrent requests proceeds on the last unit."""
        transport = scripted_transport([make_response(200, json={})])
        executor = RequestExecutor(
            make_settings(rate_limit_wait_on_limit=False), transport=transport, sleep=sleep
        )
        bucket = make_bucket_key("canvas.example.edu", "tok")
        await executor.limiter.reconcile(
            bucket, {"X-Rate-Limit-Limit": "2", "X-Rate-Limit-Remaining": "1", "X-Rate-Limit-Reset": "60"}
        )

        results = await asyncio.gather(
            executor.get("/courses/1"), executor.get("/courses/2"), return_exceptions=True
        )

        assert sum(isinstance(r, QuotaExceededError) for r in results) == 1
        assert sum(isinstance(r, ApiResponse) for r in results) == 1
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_response_headers_reconciled(self, scripted_transport, make_response, sleep):
        """Test quota headers on responses update the bucket."""
        transport = scripted_transport([make_response(200, json={}, headers={"X-Rate-Limit-Remaining": "42.5"})])
        executor = RequestExecutor(make_settings(), transport=transport, sleep=sleep)

        await executor.get("/courses")

        state = executor.limiter.snapshot(make_bucket_key("canvas.example.edu", "tok"))
        assert state.remaining == 42

    @pytest.mark.asyncio
    async def test_shared_tracker(self, scripted_transport, make_response, sleep):
        """Test executors sharing a tracker share quota."""
        tracker = QuotaTracker()
        first = RequestExecutor(
            make_settings(),
            transport=scripted_transport([make_response(200, json={}, headers={"X-Rate-Limit-Remaining": "0", "X-Rate-Limit-Reset": "60"})]),
            tracker=tracker,
            sleep=sleep,
        )
        second = RequestExecutor(make_settings(), transport=scripted_transport([]), tracker=tracker, sleep=sleep)

        await first.get("/courses")

        with pytest.raises(QuotaExceededError):
            await second.get("/courses", options=RequestOptions(wait_on_limit=False))

    @pytest.mark.asyncio
    async def test_bucket_override(self, scripted_transport, make_response, sleep):
        """Test a per-request bucket name is used instead of the computed key."""
        transport = scripted_transport([make_response(200, json={}, headers={"X-Rate-Limit-Remaining": "5"})])
        executor = RequestExecutor(make_settings(), transport=transport, sleep=sleep)

        await executor.get("/courses", options=RequestOptions(rate_limit_bucket="reports"))

        assert executor.limiter.snapshot("reports").remaining == 5

    @pytest.mark.asyncio
    async def test_rate_limit_disabled(self, scripted_transport, make_response, sleep):
        """Test no bucket is tracked when rate limiting is off."""
        transport = scripted_transport([make_response(200, json={}, headers={"X-Rate-Limit-Remaining": "5"})])
        executor = RequestExecutor(make_settings(rate_limit_enabled=False), transport=transport, sleep=sleep)

        await executor.get("/courses")

        assert len(executor.tracker) == 0


class TestCancellation:
    """Tests for cancellation tokens and deadlines."""

    @pytest.mark.asyncio
    async def test_cancelled_token_before_start(self, scripted_transport):
        """Test a pre-cancelled token stops the call before any network I/O."""
        transport = scripted_transport([])
        executor = RequestExecutor(make_settings(), transport=transport)
        token = CancellationToken()
        token.cancel("caller gave up")

        with pytest.raises(RequestCancelledError, match="caller gave up"):
            await executor.get("/courses", options=RequestOptions(cancel_token=token))

        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_token_aborts_backoff(self, scripted_transport, make_response):
        """Test cancelling during retry backoff aborts the call promptly."""
        transport = scripted_transport([make_response(503), make_response(200)])
        executor = RequestExecutor(make_settings(retry_base_delay=30), transport=transport)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(RequestCancelledError):
            await asyncio.wait_for(
                executor.get("/courses", options=RequestOptions(cancel_token=token)), timeout=5
            )

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_deadline(self):
        """Test a per-call timeout surfaces as RequestCancelledError."""
        transport = SlowTransport()
        executor = RequestExecutor(make_settings(), transport=transport)

        with pytest.raises(RequestCancelledError, match="Deadline"):
            await executor.get("/courses", options=RequestOptions(timeout=0.01))

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self):
        """Test cancelling the caller's task raises CancelledError, not a pipeline error."""
        executor = RequestExecutor(make_settings(), transport=SlowTransport())
        task = asyncio.create_task(executor.get("/courses"))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestLifecycle:
    """Tests for client ownership."""

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        """Test the executor closes the client it created."""
        async with RequestExecutor(make_settings()) as executor:
            client = executor.transport.client
        assert client.is_closed is True

    @pytest.mark.asyncio
    async def test_shared_client_left_open(self):
        """Test a caller-supplied client stays open."""
        async with httpx.AsyncClient() as client:
            async with RequestExecutor(make_settings(), http_client=client):
                pass
            assert client.is_closed is False
