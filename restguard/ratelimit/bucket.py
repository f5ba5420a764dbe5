"""Bucket key derivation.

A bucket is the unit of quota isolation: one per (host, credential) pair.
Keys are derived structurally, so requests that leave the primary API host
(file storage, CDN redirects) land in their own bucket with no
configuration.
"""

from typing import Mapping, Optional

import httpx

from restguard.core.security import fingerprint_credential

DEFAULT_HOST = "default"


def make_bucket_key(host: Optional[str], credential: Optional[str]) -> str:
    """Derive the bucket key for a host and credential.

    Pure and deterministic: the same pair always yields the same key, and
    pairs differing in either component never collide (up to the hash).

    Examples:
        >>> make_bucket_key("Canvas.Example.edu", "")
        'canvas.example.edu:anonymous'
    """
    host = (host or "").strip().lower() or DEFAULT_HOST
    return f"{host}:{fingerprint_credential(credential)}"


def host_from_url(url: str) -> str:
    try:
        return httpx.URL(url).host
    except (httpx.InvalidURL, TypeError, ValueError):
        return ""


class BucketResolver:
    """Resolves the bucket for a request.

    Precedence: explicit per-request override, then the configured
    host -> bucket map, then the computed host+credential key.
    """

    def __init__(self, overrides: Optional[Mapping[str, str]] = None):
        self.overrides = {k.lower(): v for k, v in (overrides or {}).items()}

    def resolve(
        self,
        host: Optional[str],
        credential: Optional[str],
        override: Optional[str] = None,
    ) -> str:
        if override:
            return override
        configured = self.overrides.get((host or "").strip().lower())
        if configured:
            return configured
        return make_bucket_key(host, credential)

    def resolve_url(
        self,
        url: str,
        credential: Optional[str],
        override: Optional[str] = None,
    ) -> str:
        return self.resolve(host_from_url(url), credential, override)
