"""
Log redaction — scrub tokens and secrets from log records before emission.

Installed on the root handlers by ``main.py``.  The filter rewrites the
formatted message and any exception text, so call sites can keep logging
exceptions and provider responses with plain ``%s`` formatting.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Pattern

REDACTION_PLACEHOLDER = "[REDACTED]"

SENSITIVE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"access_token[\"']?\s*[=:]\s*[\"']?[\w\-.~+/]+", re.IGNORECASE),
    re.compile(r"refresh_token[\"']?\s*[=:]\s*[\"']?[\w\-.~+/]+", re.IGNORECASE),
    re.compile(r"bearer\s+[\w\-.~+/]+=*", re.IGNORECASE),
    re.compile(r"authorization[\"']?\s*[=:]\s*[\"']?[\w\-.~+/]+", re.IGNORECASE),
    re.compile(r"api[_-]?key[\"']?\s*[=:]\s*[\"']?[\w\-]+", re.IGNORECASE),
    re.compile(r"client[_-]?secret[\"']?\s*[=:]\s*[\"']?[\w\-]+", re.IGNORECASE),
    # JWT
    re.compile(r"eyJ[\w\-]+\.eyJ[\w\-]+\.[\w\-]+"),
]


def redact(text: str) -> str:
    """Replace every sensitive pattern in *text* with the placeholder."""
    for pattern in SENSITIVE_PATTERNS:
        text = pattern.sub(REDACTION_PLACEHOLDER, text)
    return text


class RedactingFilter(logging.Filter):
    """Logging filter that redacts the fully rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = redact(message)
        record.args = None

        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        # exc_text is now authoritative; stop formatters re-rendering the raw traceback
        record.exc_info = None
        return True


def install_redaction(handlers: Iterable[logging.Handler]) -> None:
    for handler in handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
