"""
Structured logging setup.

structlog renders through the stdlib root logger so that websockets' own
loggers end up in the same stream.
"""

from __future__ import annotations

import logging
import re
import sys

import structlog

SENSITIVE_KEYS = {"api_key", "apikey", "key", "token", "secret", "authorization"}
URL_KEY_RE = re.compile(r"(key=)[^&\s]+")


def sanitize_secrets(logger, method_name, event_dict):
    """Redact credentials from log events, including ?key= in URLs."""
    for name in list(event_dict):
        if name.lower() in SENSITIVE_KEYS and event_dict[name]:
            event_dict[name] = "***REDACTED***"
        elif isinstance(event_dict[name], str) and "key=" in event_dict[name]:
            event_dict[name] = URL_KEY_RE.sub(r"\1***REDACTED***", event_dict[name])
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "console") -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # websockets logs every handshake failure at INFO with a traceback
    logging.getLogger("websockets").setLevel(max(log_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitize_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
