"""
Logging configuration and redaction.

This module provides:
- SecretRedactionFilter: Masks envelope fields and bearer tokens in records
- configure_logging: Installs a redacting handler on the ``ribbon_core`` logger
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Pattern, Tuple, Union

LOGGER_NAME = "ribbon_core"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

SECRET_PATTERNS: List[Tuple[Pattern[str], str]] = [
    # Envelope JSON fields (base64 values)
    (re.compile(r'("data":\s*")[A-Za-z0-9+/=]+(")'), r"\1[REDACTED]\2"),
    (re.compile(r'("iv":\s*")[A-Za-z0-9+/=]+(")'), r"\1[REDACTED]\2"),
    # Python dict reprs of envelopes
    (re.compile(r"('data':\s*')[A-Za-z0-9+/=]+(')"), r"\1[REDACTED]\2"),
    (re.compile(r"('iv':\s*')[A-Za-z0-9+/=]+(')"), r"\1[REDACTED]\2"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*"), r"\1[REDACTED]"),
]


def redact(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(redact(arg) if isinstance(arg, str) else arg for arg in record.args)

        return True


def configure_logging(
    level: Union[int, str] = logging.INFO,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """
    Configure the package logger.

    The redaction filter sits on the handler, so it also covers records
    propagated from module loggers such as ``ribbon_core.storage``.

    Args:
        level: Logging level name or number
        handler: Handler to install (defaults to a stderr StreamHandler)

    Returns:
        The configured ``ribbon_core`` logger
    """
    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(level.upper() if isinstance(level, str) else level)

    for existing in package_logger.handlers[:]:
        if getattr(existing, "_ribbon_managed", False):
            package_logger.removeHandler(existing)

    target = handler or logging.StreamHandler()
    target.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addFilter(SecretRedactionFilter())
    target._ribbon_managed = True  # type: ignore[attr-defined]
    package_logger.addHandler(target)
    return package_logger
