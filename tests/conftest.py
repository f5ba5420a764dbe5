"""Shared fixtures: scripted transports, sleep recorders and response factories."""

import json as jsonlib
from typing import List, Optional, Union

import httpx
import pytest

from restguard.http.models import ApiRequest, ApiResponse
from restguard.http.transport import Transport

BASE_URL = "https://canvas.example.edu"


def build_response(
    status_code: int = 200,
    json=None,
    headers: Optional[dict] = None,
    url: str = f"{BASE_URL}/api/v1/courses",
    method: str = "GET",
    content: Optional[bytes] = None,
) -> ApiResponse:
    if content is None:
        content = jsonlib.dumps(json).encode() if json is not None else b""
    return ApiResponse(
        status_code=status_code,
        headers=httpx.Headers(headers or {}),
        content=content,
        url=url,
        method=method,
    )


class ScriptedTransport(Transport):
    """Transport replaying a fixed script of responses and exceptions."""

    def __init__(self, script: List[Union[ApiResponse, Exception]]):
        self.script = list(script)
        self.requests: List[ApiRequest] = []
        self.closed = False

    async def send(self, request: ApiRequest) -> ApiResponse:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"unexpected request {request.method} {request.path}")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def aclose(self) -> None:
        self.closed = True


class SleepRecorder:
    """Stand-in for cancellable_sleep that records delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float, token=None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        self.delays.append(delay)


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest.fixture
def sleep():
    return SleepRecorder()
