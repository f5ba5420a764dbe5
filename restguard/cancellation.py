"""Cooperative cancellation for logical requests.

A CancellationToken is handed to a request through RequestOptions. The
rate limiter wait and the retry backoff both sleep through
cancellable_sleep, so firing the token aborts either wait immediately with
RequestCancelledError instead of letting the call run to completion.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from restguard.exceptions import RequestCancelledError

SleepFunc = Callable[[float, Optional["CancellationToken"]], Awaitable[None]]


class CancellationToken:
    """Explicit cancellation signal shared between a caller and its requests.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(
            executor.get("/courses", options=RequestOptions(cancel_token=token))
        )
        ...
        token.cancel("user navigated away")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "Request cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self.reason)

    async def wait(self) -> None:
        await self._event.wait()


async def cancellable_sleep(delay: float, token: Optional[CancellationToken] = None) -> None:
    """Sleep for ``delay`` seconds unless ``token`` fires first.

    Raises:
        RequestCancelledError: If the token is (or becomes) cancelled
    """
    if token is None:
        await asyncio.sleep(max(0.0, delay))
        return

    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=max(0.0, delay))
    except TimeoutError:
        return
    raise RequestCancelledError(token.reason)
