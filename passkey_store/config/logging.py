"""Structured logging for processes embedding the user store."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

REDACTED = "[redacted]"

# Event keys whose values carry key material or ceremony secrets.
_SENSITIVE_KEYS = frozenset({"challenge", "challenge_data", "public_key"})
_SENSITIVE_PREFIXES = ("credential",)


def _is_sensitive(key: str) -> bool:
    return key in _SENSITIVE_KEYS or key.startswith(_SENSITIVE_PREFIXES)


def redact_key_material(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential ids, public keys and challenges before rendering.

    Raw binary values are masked whatever their key. So are values under
    ``credential*`` keys and the ``challenge``, ``challenge_data`` and
    ``public_key`` keys.
    """
    for key, value in event_dict.items():
        if key == "event":
            continue
        if isinstance(value, bytes | bytearray | memoryview) or _is_sensitive(key):
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and stdlib logging; key material never reaches a renderer."""
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_key_material,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    if json_output or not sys.stderr.isatty():
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
