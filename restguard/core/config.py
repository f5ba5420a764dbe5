import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_SANITIZE_FIELDS = [
    "password",
    "token",
    "api_key",
    "secret",
    "authorization",
    "cookie",
]


def _parse_mapping(raw: Any) -> dict[str, str]:
    """Parse a host->value mapping from JSON or ``a=b,c=d`` notation."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return {str(k).strip(): str(v).strip() for k, v in raw.items()}

    raw = str(raw).strip()
    if not raw or raw == "{}":
        return {}

    # Prefer JSON, but tolerate the compact form used in shell exports.
    if raw.startswith("{"):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return {str(k).strip(): str(v).strip() for k, v in parsed.items()}

    result: dict[str, str] = {}
    for part in re.split(r"[,\s]+", raw):
        if "=" not in part:
            continue
        key, _, value = part.partition("=")
        if key.strip() and value.strip():
            result[key.strip()] = value.strip()
    return result


def _parse_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(v).strip() for v in raw if str(v).strip()]
    raw = str(raw).strip()
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
    return [p for p in re.split(r"[,\s]+", raw) if p]


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables.

    All settings can be configured via ``RESTGUARD_*`` environment variables
    or a .env file, or passed explicitly when constructing a Settings
    instance for a particular executor.
    """

    # Target API
    base_url: str = ""
    api_version: str = "/api/v1"  # Path prefix joined to relative paths
    api_key: str = ""
    user_agent: str = "restguard/0.1"
    default_headers: Annotated[dict[str, str], NoDecode] = {}

    # Masquerade (act-as-user) id applied to every request when set
    masquerade_user_id: str | None = None
    masquerade_param: str = "as_user_id"

    # HTTP client settings
    httpx_timeout: float = 30.0
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_requests_per_window: int | None = None  # None = learn from server
    rate_limit_window_seconds: float = 3600.0
    rate_limit_wait_on_limit: bool = True  # False = fail fast with QuotaExceededError
    rate_limit_max_wait_seconds: float = 60.0
    rate_limit_bucket_overrides: Annotated[dict[str, str], NoDecode] = {}

    # Retry settings
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 16.0
    retry_multiplier: float = 2.0
    retry_jitter: float = 0.25  # Fraction of the computed delay
    retry_after_cap: float = 120.0
    retry_non_idempotent: bool = False

    # Pagination settings
    pagination_max_pages: int = 10000
    pagination_per_page: int | None = None

    # Response cache settings
    cache_enabled: bool = False
    cache_default_ttl: int = 300  # 5 minutes

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json
    log_requests: bool = True
    log_sanitize_fields: Annotated[list[str], NoDecode] = DEFAULT_SANITIZE_FIELDS
    log_max_body_length: int = 1000

    @field_validator("default_headers", "rate_limit_bucket_overrides", mode="before")
    @classmethod
    def decode_mapping(cls, v: Any) -> dict[str, str]:
        return _parse_mapping(v)

    @field_validator("log_sanitize_fields", mode="before")
    @classmethod
    def decode_list(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("retry_max_attempts", "pagination_max_pages")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        """Validate attempt and page ceilings are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("rate_limit_requests_per_window")
    @classmethod
    def validate_window_limit(cls, v: int | None) -> int | None:
        """Validate a configured window capacity is positive."""
        if v is not None and v < 1:
            raise ValueError("rate_limit_requests_per_window must be at least 1")
        return v

    @field_validator(
        "rate_limit_window_seconds",
        "retry_multiplier",
        "httpx_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate durations and factors are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator(
        "retry_base_delay",
        "retry_max_delay",
        "retry_jitter",
        "retry_after_cap",
        "rate_limit_max_wait_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    model_config = SettingsConfigDict(
        env_prefix="RESTGUARD_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
