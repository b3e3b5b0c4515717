"""Logging setup and redaction helpers."""

from __future__ import annotations

import logging
import sys

import structlog


def mask_sensitive(value: str | None, keep: int = 4) -> str:
    """Return *value* with everything but the first *keep* characters hidden.

    >>> mask_sensitive("abcdef123456", 4)
    'abcd****'
    """
    if not value:
        return "<none>"
    if len(value) <= keep:
        return "*" * len(value)
    return f"{value[:keep]}****"


def setup_logging(level: int | str = logging.INFO, *, json_logs: bool = False) -> logging.Logger:
    """Route standard-library logging through a structlog formatter.

    Call sites keep using :func:`logging.getLogger`; the formatter merges
    structlog context variables (e.g. ``correlation_id`` bound by
    :class:`~palm_insight.servers.correlation.CorrelationIdMiddleware`) into
    every record.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level if isinstance(level, int) else level.upper())

    logger = logging.getLogger("palm-insight")
    logger.debug("Logging configured level=%s json=%s", level, json_logs)
    return logger
