"""Redaction module to mask credentials in logs and stored error messages."""
import re
from typing import Any, Dict


_PATTERNS = [
    (r'Authorization["\']?\s*[:=]\s*["\']?Bearer\s+[^\s"\',]+', "Authorization: Bearer [REDACTED]"),
    (r'Authorization["\']?\s*[:=]\s*["\']?Basic\s+[^\s"\',]+', "Authorization: Basic [REDACTED]"),
    (r'\bBearer\s+[A-Za-z0-9\-._~+/]{8,}=*', "Bearer [REDACTED]"),
    (r'access_token["\']?\s*[:=]\s*["\']?([^"\'&,\s}]+)', 'access_token="[REDACTED]"'),
    (r'client_secret["\']?\s*[:=]\s*["\']?([^"\'&,\s}]+)', 'client_secret="[REDACTED]"'),
    (r'refresh_token["\']?\s*[:=]\s*["\']?([^"\'&,\s}]+)', 'refresh_token="[REDACTED]"'),
    (r'SECURITY-APPNAME=([^&\s]+)', "SECURITY-APPNAME=[REDACTED]"),
]

_SECRET_KEYS = {
    "access_token",
    "refresh_token",
    "client_secret",
    "authorization",
    "ebay_client_secret",
    "supabase_service_role",
    "cron_secret",
    "api_key",
}


def redact_string(text: str) -> str:
    """Redact secrets from a string."""
    if not text:
        return text
    result = text
    for pattern, replacement in _PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


def redact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively redact secrets from a dictionary."""
    redacted = {}
    for key, value in data.items():
        if str(key).lower() in _SECRET_KEYS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = redact_json(value)
    return redacted


def redact_json(data: Any) -> Any:
    """Redact secrets from JSON-serializable data."""
    if isinstance(data, dict):
        return redact_dict(data)
    elif isinstance(data, list):
        return [redact_json(item) for item in data]
    elif isinstance(data, str):
        return redact_string(data)
    else:
        return data
