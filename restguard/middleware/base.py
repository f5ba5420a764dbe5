"""Middleware chain primitives.

A middleware receives the request and a ``call_next`` continuation. It may
change the request before calling next, inspect or replace the response
after it returns, or short-circuit by returning or raising without calling
next at all.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Sequence

from restguard.http.models import ApiRequest, ApiResponse

Handler = Callable[[ApiRequest], Awaitable[ApiResponse]]


class Middleware(ABC):
    """Base class for interceptors in the request pipeline."""

    name: str = "middleware"

    @abstractmethod
    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        """Process ``request``, usually by delegating to ``call_next``."""
        pass


def _bind(middleware: Middleware, call_next: Handler) -> Handler:
    async def handler(request: ApiRequest) -> ApiResponse:
        return await middleware.handle(request, call_next)

    return handler


class MiddlewareChain:
    """Fixed, ordered list of middleware wrapped around a terminal handler.

    The first middleware in the list is the outermost: it sees the request
    first and the response last.

    Usage:
        chain = MiddlewareChain([LoggingMiddleware(), RetryMiddleware()], send)
        response = await chain(request)
    """

    def __init__(self, middleware: Sequence[Middleware], handler: Handler):
        self._middleware: List[Middleware] = list(middleware)
        self._handler = handler
        entry = handler
        for mw in reversed(self._middleware):
            entry = _bind(mw, entry)
        self._entry = entry

    @property
    def middleware(self) -> List[Middleware]:
        return list(self._middleware)

    @property
    def names(self) -> List[str]:
        return [mw.name for mw in self._middleware]

    def get(self, name: str) -> Middleware | None:
        for mw in self._middleware:
            if mw.name == name:
                return mw
        return None

    async def __call__(self, request: ApiRequest) -> ApiResponse:
        return await self._entry(request)
