"""Structured logging configuration using structlog.

Provides JSON output for production and human-readable console output for
development. Everything is written to stderr so the CLI can keep stdout for
JSON results. All logging throughout the project should use get_logger()
instead of print().

Every run binds its scrape session id as context (``bind_run_context``), and
credential fields are masked before rendering.
"""

import logging
import sys
from typing import Any

import structlog

# Event keys that may carry portal credentials
SECRET_KEYS = frozenset({"password", "portal_pass", "rnd", "cookie"})


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor masking credential values."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Configure structlog with appropriate processors and output format.

    Args:
        json_output: If True, output JSON (production). If False, console format (dev).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Third-party loggers (httpx, asyncio) go to the same stream
    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(sys.stderr)]
    root.setLevel(numeric_level)
    # httpx logs every request at INFO; the session already does that
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def bind_run_context(session_id: str | None, **extra: object) -> None:
    """Attach the scrape session id to every log line of the current run."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(session_id=session_id, **extra)


def get_logger(name: str) -> structlog.BoundLogger:
    """Module logger; ``name`` is usually ``__name__``."""
    return structlog.get_logger(name)
