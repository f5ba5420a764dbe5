"""HTTP client construction for the default transport.

The executor owns the client it creates and closes it on exit; callers
that already manage an httpx.AsyncClient (connection pooling shared with
other code, custom TLS, test mounts) pass it in instead.
"""

from typing import Optional

import httpx

from restguard.core.config import Settings, settings as default_settings


def build_timeout(config: Settings, timeout: Optional[float] = None) -> httpx.Timeout:
    """Build granular timeouts from settings.

    A single ``timeout`` value overrides all granular timeouts.
    """
    if timeout is not None:
        return httpx.Timeout(timeout)
    # - connect: Time to establish socket connection
    # - read: Time to read response data
    # - write: Time to send request data
    # - pool: Time to acquire connection from pool
    return httpx.Timeout(
        config.httpx_timeout,
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )


def create_http_client(config: Optional[Settings] = None, **kwargs) -> httpx.AsyncClient:
    """Create a new HTTP client with pipeline defaults.

    Note: The returned client should be closed when done:
        async with create_http_client() as client:
            ...

    Args:
        config: Settings to read timeouts and pool limits from
        **kwargs: Overrides. Can include:
            - timeout: Single timeout value (overrides all granular timeouts)
            - max_connections: Maximum connections
            - max_keepalive_connections: Maximum keepalive connections
            - keepalive_expiry: Keepalive expiration time
            - transport: Custom httpx transport (e.g. for tests)

    Returns:
        A new httpx.AsyncClient instance.
    """
    config = config or default_settings

    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", config.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", config.httpx_max_keepalive_connections
        ),
        keepalive_expiry=kwargs.get("keepalive_expiry", config.httpx_keepalive_expiry),
    )

    client_kwargs = {
        "timeout": build_timeout(config, kwargs.get("timeout")),
        "limits": limits,
        "headers": {"User-Agent": config.user_agent},
        "follow_redirects": True,
    }
    if kwargs.get("transport") is not None:
        client_kwargs["transport"] = kwargs["transport"]
    return httpx.AsyncClient(**client_kwargs)
