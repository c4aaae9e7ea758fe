"""Logging setup with redaction of credentials that slip into log records."""
import re
import logging
from typing import Optional

SENSITIVE_PATTERNS = [
    (re.compile(r"(bearer\s+)([A-Za-z0-9_\-\.=+/]{8,})", re.IGNORECASE), r"\1***REDACTED***"),
    (re.compile(r"((?:api|administrative)[_-]?key['\"]?\s*[:=]\s*['\"]?)([^'\"\s,}]{6,})", re.IGNORECASE), r"\1***REDACTED***"),
    (re.compile(r"((?:refresh[_-]?)?token['\"]?\s*[:=]\s*['\"]?)([^'\"\s,}]{6,})", re.IGNORECASE), r"\1***REDACTED***"),
    (re.compile(r"(password['\"]?\s*[:=]\s*['\"]?)([^'\"\s,}]+)", re.IGNORECASE), r"\1***REDACTED***"),
    (re.compile(r"(session[_-]?id['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9_\-]{16,})", re.IGNORECASE), r"\1***REDACTED***"),
    (re.compile(r"(x-session-id['\"]?\s*[:=]\s*['\"]?)([^'\"\s,}]{8,})", re.IGNORECASE), r"\1***REDACTED***"),
    # partial masking
    (re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})"), r"***@\2"),
]


def sanitize_message(message: str) -> str:
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class SensitiveDataFilter(logging.Filter):
    """Rewrites the rendered message of every record it sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):
            return True
        sanitized = sanitize_message(rendered)
        if sanitized != rendered:
            record.msg = sanitized
            record.args = None
        return True


def setup_logging(level: str = "INFO", handler: Optional[logging.Handler] = None) -> logging.Logger:
    """Configure the ``passgage`` logger tree with redaction installed."""
    logger = logging.getLogger("passgage")
    logger.setLevel(level.upper())
    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ))
    handler.addFilter(SensitiveDataFilter())
    logger.addHandler(handler)
    return logger
