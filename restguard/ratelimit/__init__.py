"""Client-side rate limiting: bucket keys, quota tracking and admission."""

from restguard.ratelimit.bucket import BucketResolver, host_from_url, make_bucket_key
from restguard.ratelimit.limiter import RateLimiter
from restguard.ratelimit.models import BucketStatus, QuotaState
from restguard.ratelimit.tracker import QuotaTracker

__all__ = [
    "BucketResolver",
    "BucketStatus",
    "QuotaState",
    "QuotaTracker",
    "RateLimiter",
    "host_from_url",
    "make_bucket_key",
]
