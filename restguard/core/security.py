import hashlib
import json
import re
from typing import Any, Iterable, Mapping

REDACTED = "***REDACTED***"
ANONYMOUS_FINGERPRINT = "anonymous"


def fingerprint_credential(credential: str | None, length: int = 16) -> str:
    """Return a short one-way fingerprint of a credential.

    The credential itself is never stored or logged; only this SHA-256
    prefix is used to tell tenants apart.

    Args:
        credential: Bearer token or API key, may be empty
        length: Number of hex characters to keep

    Returns:
        Hex digest prefix, or "anonymous" for an empty credential
    """
    if not credential:
        return ANONYMOUS_FINGERPRINT
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:length]


def _is_sensitive(name: str, fields: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(field.lower() in lowered for field in fields)


def redact_headers(headers: Mapping[str, str], fields: Iterable[str]) -> dict[str, str]:
    """Copy headers, masking any whose name contains a sensitive field."""
    fields = list(fields)
    return {
        name: REDACTED if _is_sensitive(name, fields) else value
        for name, value in headers.items()
    }


def redact_query(params: Iterable[tuple[str, str]], fields: Iterable[str]) -> list[tuple[str, str]]:
    fields = list(fields)
    return [(k, REDACTED if _is_sensitive(k, fields) else v) for k, v in params]


def sanitize_data(data: Any, fields: Iterable[str]) -> Any:
    """Recursively mask sensitive keys in decoded JSON data."""
    fields = list(fields)
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(str(key), fields) else sanitize_data(value, fields)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_data(item, fields) for item in data]
    return data


def sanitize_body(body: str, fields: Iterable[str]) -> str:
    """Mask sensitive values in a JSON, form-encoded or free-text body."""
    fields = list(fields)
    try:
        decoded = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        decoded = None
    if isinstance(decoded, (dict, list)):
        return json.dumps(sanitize_data(decoded, fields), ensure_ascii=False)

    for field in fields:
        pattern = re.compile(
            r"(" + re.escape(field) + r"[\w\[\]]*\s*[=:]\s*)([^\s&,}\"']+)",
            re.IGNORECASE,
        )
        body = pattern.sub(r"\1" + REDACTED, body)
    return body


def truncate(text: str, max_length: int) -> str:
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[:max_length] + "... (truncated)"
