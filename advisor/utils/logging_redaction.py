"""
Logging redaction helpers.
Redacts provider keys and app ids from log messages.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable


_PATTERNS: Iterable[tuple[re.Pattern, str]] = (
    # exchangerate-api puts the key in the path: /v6/<key>/latest/USD
    (re.compile(r"(/v6/)([A-Za-z0-9]{8,})(/)"), r"\1[REDACTED]\3"),
    # Open Exchange Rates query param: ?app_id=<id>
    (re.compile(r"(?i)(app_id=)([A-Za-z0-9\-_]+)"), r"\1[REDACTED]"),
    # Authorization: Bearer <token>
    (re.compile(r"(Bearer\s+)([A-Za-z0-9\-\._]+)"), r"\1[REDACTED]"),
    # X-API-Key headers or config output
    (re.compile(r"(?i)(x-api-key|api[_-]?key|api[_-]?secret)(['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9\-\._]+)"), r"\1\2[REDACTED]"),
)


def redact_message(message: str) -> str:
    redacted = message
    for pattern, replacement in _PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class RedactingFilter(logging.Filter):
    """Filter that redacts sensitive data from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # Malformed format args; let the handler report it
            return True
        record.msg = redact_message(message)
        record.args = ()
        return True


def install_redaction_filter() -> None:
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
    # Avoid duplicate filters
    for existing in root.filters:
        if isinstance(existing, RedactingFilter):
            return
    root.addFilter(RedactingFilter())
