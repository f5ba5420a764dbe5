"""Ambient infrastructure: settings, logging, security helpers, HTTP client, cache."""

from restguard.core.config import Settings, get_settings, settings
from restguard.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "get_log_context",
    "get_logger",
    "get_settings",
    "settings",
    "setup_logging",
]
