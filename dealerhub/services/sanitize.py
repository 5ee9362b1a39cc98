"""Input sanitization, output escaping and field validation helpers.

Sanitizing runs on the way in (before anything is stored) and escaping runs on
the way out (before anything is returned). The two stages are independent and
neither mutates its argument.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, Mapping


# C0 controls and DEL, keeping tab/newline/carriage return for multi-line text.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAG_CHARS = re.compile(r"[<>]")
_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "`": "&#x60;",
}
_HTML_ESCAPE_PATTERN = re.compile(r"[&<>\"'`]")

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def sanitize_string(value: Any) -> Any:
    # Non-strings pass through untouched so callers can sanitize mixed payloads.
    if not isinstance(value, str):
        return value
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _TAG_CHARS.sub("", cleaned)
    return cleaned.strip()


def sanitize_input(value: Any) -> Any:
    # Recursively sanitize every string inside a JSON-like structure.
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, list):
        return [sanitize_input(item) for item in value]
    if isinstance(value, dict):
        return {key: sanitize_input(item) for key, item in value.items()}
    return value


def sanitize_payload_strings(payload: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Return a shallow copy with the named string fields sanitized."""
    sanitized = dict(payload)
    for field in fields:
        if field in sanitized and sanitized[field] is not None:
            sanitized[field] = sanitize_string(sanitized[field])
    return sanitized


def escape_string(value: str) -> str:
    return _HTML_ESCAPE_PATTERN.sub(lambda match: _HTML_ESCAPES[match.group(0)], value)


def escape_output(value: Any) -> Any:
    # Escape every string for safe embedding in HTML; returns a new structure.
    if isinstance(value, str):
        return escape_string(value)
    if isinstance(value, list):
        return [escape_output(item) for item in value]
    if isinstance(value, dict):
        return {key: escape_output(item) for key, item in value.items()}
    return value


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return sanitize_string(value) == ""
    return False


def missing_fields(payload: Mapping[str, Any], required: Iterable[str]) -> list[str]:
    """List every required field that is absent, null or blank, in declaration order."""
    return [field for field in required if _is_blank(payload.get(field))]


def missing_fields_message(missing: list[str]) -> str:
    verb = "is" if len(missing) == 1 else "are"
    return f"{', '.join(missing)} {verb} required"


def validate_fields(payload: Mapping[str, Any], required: Iterable[str]) -> str | None:
    # Aggregate every missing field into one message instead of failing on the first.
    missing = missing_fields(payload, required)
    if not missing:
        return None
    return missing_fields_message(missing)


def coerce_bool(value: Any, fallback: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return fallback


def clamp_number(value: Any, fallback: float | int | None) -> float | int | None:
    # Parse numeric-looking input, falling back for anything non-finite.
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else fallback
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return fallback
        try:
            parsed = float(text)
        except ValueError:
            return fallback
        if not math.isfinite(parsed):
            return fallback
        return int(parsed) if parsed.is_integer() and "." not in text else parsed
    return fallback
