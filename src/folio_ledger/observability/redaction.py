"""Redaction helpers for safe logging.

Guest contact details and payment references (card numbers, vouchers)
must never reach the logs raw. Money and identifiers are safe to log.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_CARD_PATTERN = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")

# Keys whose values are masked whatever they contain.
_SENSITIVE_KEYS = frozenset({"reference", "voucher", "notes", "card_number", "void_reason"})

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII and card-number patterns from a string."""
    result = _CARD_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {
        k: (_REDACTED if k in _SENSITIVE_KEYS and v is not None else redact_value(v))
        for k, v in kwargs.items()
    }
