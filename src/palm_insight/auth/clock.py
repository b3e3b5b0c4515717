"""Clock abstraction for testable time handling in the auth core.

All time-based decisions inside :mod:`palm_insight.auth` (session expiry,
reset-flow timestamps) depend on an injected ``Clock`` rather than calling
``time.time()`` directly.

Example
-------
>>> from palm_insight.auth.clock import default_clock, isoformat
>>> isinstance(default_clock(), float)
True
>>> isoformat(0.0)
'1970-01-01T00:00:00.000Z'
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()


def isoformat(ts: float) -> str:
    """Render *ts* the way browsers render ``new Date().toISOString()``."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
