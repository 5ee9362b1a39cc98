from __future__ import annotations

import re
from typing import Any, Iterable

from dealerhub.services.sanitize import sanitize_string


MASK_VALUE = "[MASKED]"

_EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_SSN_PATTERN = re.compile(r"(?<!\d)\d{3}[- ]?\d{2}[- ]?\d{4}(?!\d)")


def looks_sensitive(value: str) -> bool:
    # Treat email-shaped and SSN-shaped strings as PII regardless of field name.
    return bool(_EMAIL_PATTERN.search(value) or _SSN_PATTERN.search(value))


def _mask_nested(value: Any, mask_fields: frozenset[str]) -> Any:
    if isinstance(value, dict):
        masked: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if key.lower() in mask_fields:
                masked[key] = MASK_VALUE
            else:
                masked[key] = _mask_nested(raw_value, mask_fields)
        return masked
    if isinstance(value, list):
        return [_mask_nested(item, mask_fields) for item in value]
    if isinstance(value, str):
        return MASK_VALUE if looks_sensitive(value) else sanitize_string(value)
    return value


def mask_sensitive_fields(value: Any, mask_fields: Iterable[str]) -> Any:
    """Return a masked deep copy of ``value``.

    Listed field names are replaced wholesale; inside objects and arrays any
    email- or SSN-shaped string is replaced too. A bare top-level string is only
    sanitized.
    """
    fields = frozenset(field.strip().lower() for field in mask_fields if field.strip())
    if isinstance(value, str):
        return sanitize_string(value)
    return _mask_nested(value, fields)
