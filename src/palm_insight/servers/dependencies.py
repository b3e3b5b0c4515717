"""Request-scoped helpers: application context, browser identity, origins.

Each browser is identified by an opaque random cookie. The cookie value is
the storage namespace for that browser's verifier keys, reset flags and
session, so a reset link opened in the browser that requested it finds the
verifier written there.
"""

from __future__ import annotations

import logging
import secrets

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from palm_insight.servers.context import AppContext, BrowserAuthContext

logger = logging.getLogger("palm-insight.servers.dependencies")

DEFAULT_COOKIE_NAME = "palm_insight_browser"
_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


def get_app_context(request: Request) -> AppContext:
    return request.app.state.app_context


def _cookie_settings(ctx: AppContext) -> tuple[str, bool]:
    if ctx.settings is None:
        return DEFAULT_COOKIE_NAME, False
    return ctx.settings.cookie_name, ctx.settings.cookie_secure


class BrowserIdMiddleware(BaseHTTPMiddleware):
    """Ensure every request carries a browser id; set the cookie when new."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = get_app_context(request)
        cookie_name, secure = _cookie_settings(ctx)
        browser_id = request.cookies.get(cookie_name)
        is_new = not browser_id
        if is_new:
            browser_id = secrets.token_urlsafe(24)
            logger.debug("Assigned new browser id %s****", browser_id[:6])
        request.state.browser_id = browser_id

        response = await call_next(request)
        if is_new:
            response.set_cookie(
                cookie_name,
                browser_id,
                max_age=_COOKIE_MAX_AGE,
                httponly=True,
                samesite="lax",
                secure=secure,
            )
        return response


def get_browser_context(request: Request) -> BrowserAuthContext:
    """Return the :class:`BrowserAuthContext` of the calling browser."""
    return get_app_context(request).browser(request.state.browser_id)


def site_origin(request: Request) -> str:
    """Absolute origin used to build provider ``redirectTo`` URLs."""
    settings = get_app_context(request).settings
    if settings is not None and settings.site_url:
        return settings.site_url
    return f"{request.url.scheme}://{request.url.netloc}"
