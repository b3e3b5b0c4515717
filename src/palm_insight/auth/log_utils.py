"""Structured logging helpers for auth components.

This module restricts **which** contextual attributes are attached to log
records in order to avoid accidentally leaking secrets. The adapter ONLY
injects the following *non-sensitive* fields:

- ``flow``           – Page flow being processed (``callback``, ``recovery``…)
- ``intent``         – The :class:`~palm_insight.auth.redirect.RedirectIntent`
- ``browser_id``     – Browser storage namespace (first 6 chars kept)
- ``correlation_id`` – Request correlation id, when the HTTP layer has one

Usage
-----
>>> from palm_insight.auth.log_utils import get_auth_logger
>>> log = get_auth_logger(flow="recovery", browser_id="b3f1c9e0aa41")
>>> log.info("Verifying reset link")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _AuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted auth context into log records."""

    extra_keys = ("flow", "intent", "browser_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "browser_id":
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_auth_logger(
    *,
    base_logger_name: str = "palm-insight.auth",
    flow: str | None = None,
    intent: str | None = None,
    browser_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with auth context."""
    logger = logging.getLogger(base_logger_name)
    return _AuthLoggerAdapter(
        logger,
        {
            "flow": flow,
            "intent": intent,
            "browser_id": browser_id,
            "correlation_id": correlation_id,
        },
    )
