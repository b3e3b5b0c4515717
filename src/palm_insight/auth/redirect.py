"""Redirect URL parsing, intent classification and route decisions.

The auth provider sends the browser back to ``{redirectTo}?code=...&type=...``
on success or ``{redirectTo}?error=...&error_description=...`` on failure.
Everything here is pure: no storage, no network.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

RECOVERY_TYPE = "recovery"
_AUTH_PARAMS = ("code", "type")


@dataclass(frozen=True, slots=True)
class RedirectParams:
    code: str | None = None
    type: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def has_auth_params(self) -> bool:
        return bool(self.code or self.error)


class RedirectIntent(str, enum.Enum):
    """Classification of a page load, computed once."""

    NO_CODE = "no_code"
    RECOVERY_CODE = "recovery_code"
    CODE = "code"
    ERROR = "error"
    EXISTING_SESSION = "existing_session"


class Route(str, enum.Enum):
    DASHBOARD = "/dashboard"
    RESET_PASSWORD = "/reset-password"
    LOGIN = "/login"
    FORGOT_PASSWORD = "/forgot-password"


def parse_redirect_params(url: str) -> RedirectParams:
    """Extract ``code``, ``type``, ``error`` and ``error_description``.

    Only the query string is consulted; blank values count as absent.
    """
    query = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    return RedirectParams(
        code=query.get("code") or None,
        type=query.get("type") or None,
        error=query.get("error") or None,
        error_description=query.get("error_description") or None,
    )


def classify_intent(params: RedirectParams, *, has_session: bool = False) -> RedirectIntent:
    if params.error:
        return RedirectIntent.ERROR
    if params.code:
        if params.type == RECOVERY_TYPE:
            return RedirectIntent.RECOVERY_CODE
        return RedirectIntent.CODE
    return RedirectIntent.EXISTING_SESSION if has_session else RedirectIntent.NO_CODE


def strip_auth_params(url: str) -> str:
    """Return *url* without ``code`` and ``type``; everything else is kept."""
    parts = urlsplit(url)
    kept = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in _AUTH_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))


def decide_route(intent: RedirectIntent, *, reset_requested: bool = False) -> Route:
    """Landing route after a successful verification."""
    if intent is RedirectIntent.RECOVERY_CODE or reset_requested:
        return Route.RESET_PASSWORD
    return Route.DASHBOARD


def failure_route(*, recovery_flow: bool) -> Route:
    """Where a failed verification sends the user next."""
    return Route.FORGOT_PASSWORD if recovery_flow else Route.LOGIN
