"""Logging configuration shared by the CLI and the web app.

Objective:
    Configure standard-library logging once per process and keep secrets and
    library noise out of the output.

High-level call tree:
    - :func:`setup_logging`
        - installs :class:`_LibraryInfoToDebugFilter`
        - installs :class:`SensitiveDataFilter`
            - :func:`redact_sensitive`
"""

import logging
import re
import sys
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "access_token",
    "accesstoken",
    "refresh_token",
    "refreshtoken",
    "password",
    "secret",
    "authorization",
    "api_key",
    "apikey",
)

# Libraries that log every request at INFO level
NOISY_LOGGERS = ("msal", "urllib3", "azure")

_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)


def _is_sensitive_key(key: Any) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact_sensitive(value: Any) -> Any:
    """Recursively replace values stored under sensitive keys.

    Args:
        value: Arbitrary log argument (mapping, sequence or scalar).

    Returns:
        Any: Copy with sensitive values replaced by ``"[REDACTED]"``.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive_key(k) else redact_sensitive(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact_sensitive(v) for v in value)
    if isinstance(value, str):
        return _BEARER_PATTERN.sub(rf"\1{REDACTED}", value)
    return value


class SensitiveDataFilter(logging.Filter):
    """Redact secrets from log record arguments and messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _BEARER_PATTERN.sub(rf"\1{REDACTED}", record.msg)
        if isinstance(record.args, dict):
            record.args = redact_sensitive(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(redact_sensitive(a) for a in record.args)
        return True


class _LibraryInfoToDebugFilter(logging.Filter):
    """Filter to suppress INFO chatter from HTTP and auth libraries.

    MSAL, urllib3 and the Azure SDK log each request at INFO level. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        if record.levelno <= logging.INFO and record.name.startswith(NOISY_LOGGERS):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the library and redaction
    filters on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _LibraryInfoToDebugFilter()
    redaction_filter = SensitiveDataFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)
        handler.addFilter(redaction_filter)
