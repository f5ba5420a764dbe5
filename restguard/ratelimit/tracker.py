"""In-memory quota store.

The tracker is an explicitly owned object passed into the executor, not a
module-level singleton, so independent pipelines (or tests) never share
quota state. It holds one asyncio.Lock per bucket; all mutation happens in
RateLimiter while that lock is held.
"""

import asyncio
from typing import Dict, Iterator, Optional

from restguard.ratelimit.models import QuotaState


class QuotaTracker:
    """Map from bucket key to QuotaState, with per-bucket locks."""

    def __init__(self) -> None:
        self._states: Dict[str, QuotaState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    def get(self, key: str) -> Optional[QuotaState]:
        return self._states.get(key)

    def get_or_create(self, key: str) -> QuotaState:
        state = self._states.get(key)
        if state is None:
            state = self._states.setdefault(key, QuotaState())
        return state

    def put(self, key: str, state: QuotaState) -> QuotaState:
        self._states[key] = state
        return state

    def snapshot(self, key: str) -> Optional[QuotaState]:
        """Return a copy of the state, safe to inspect without the lock."""
        state = self._states.get(key)
        return state.copy() if state is not None else None

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one bucket, or all of them when ``key`` is None."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._states

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._states))

    def __len__(self) -> int:
        return len(self._states)
