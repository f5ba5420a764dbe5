"""Rate limiting data models.

This module contains the per-bucket quota state and its derived status.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class BucketStatus(str, Enum):
    """Lifecycle of a bucket: UNKNOWN -> TRACKING <-> THROTTLED."""

    UNKNOWN = "unknown"
    TRACKING = "tracking"
    THROTTLED = "throttled"


@dataclass
class QuotaState:
    """Quota believed to be left in one bucket.

    Attributes:
        limit: Window capacity, if known
        remaining: Budget left in the current window (None = never observed)
        reset_at: Epoch seconds at which the window refreshes, if known
        cost: Cost of the last request as reported by the server
        updated_at: When this state was last mutated
    """

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    cost: Optional[float] = None
    updated_at: float = field(default_factory=time.time)

    def status(self, now: Optional[float] = None) -> BucketStatus:
        if self.remaining is None:
            return BucketStatus.UNKNOWN
        now = time.time() if now is None else now
        if self.remaining <= 0 and (self.reset_at is None or now < self.reset_at):
            return BucketStatus.THROTTLED
        return BucketStatus.TRACKING

    def seconds_until_reset(self, now: float) -> Optional[float]:
        if self.reset_at is None:
            return None
        return max(0.0, self.reset_at - now)

    def copy(self) -> "QuotaState":
        return replace(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and inspection."""
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "cost": self.cost,
            "status": self.status().value,
        }
