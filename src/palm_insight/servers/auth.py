"""Browser-facing auth pages.

Handlers stay thin:

1. Parse HTTP-layer parameters (query string, form fields).
2. Delegate to the auth core (``RedirectRouter``, ``AuthStateStore``) in a
   worker thread, since the provider client is blocking.
3. Turn the result into a page or a redirect.

Every page that can be the target of a provider redirect (``/``, ``/login``,
``/auth/callback``, ``/reset-password``) runs the redirect router when the
URL carries ``code`` or ``error``. A successful exchange answers with a 303 to
the URL without ``code``/``type``, so the consumed code never stays in the
address bar or the history.

SECURITY NOTE
-------------
No raw secrets (codes, verifiers, tokens, passwords) are ever logged.
"""

from __future__ import annotations

import functools
import html
import logging
from typing import Awaitable, Callable
from urllib.parse import urlencode, urlsplit

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from palm_insight.auth.errors import (
    AuthError,
    AuthRetryableError,
    AuthSessionMissingError,
    PasswordPolicyError,
)
from palm_insight.auth.redirect import Route, parse_redirect_params
from palm_insight.auth.router import Location, NextAction, RedirectOutcome
from palm_insight.servers.dependencies import get_app_context, get_browser_context, site_origin

_LOG = logging.getLogger("palm-insight.auth.routes")

Handler = Callable[[Request], Awaitable[Response]]


# --------------------------------------------------------------------------- #
# rendering helpers                                                           #
# --------------------------------------------------------------------------- #
def _e(text: str | None) -> str:
    return html.escape(text or "")


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny HTML page; *body* is trusted markup, escape inputs first."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{_e(title)} - PalmInsight</title></head><body><h1>{_e(title)}</h1>{body}</body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _error_block(message: str | None) -> str:
    return f"<p class='error' role='alert'>{_e(message)}</p>" if message else ""


def _local_path(url: str) -> str:
    """Path + query of *url*; never an absolute URL (no open redirects)."""
    parts = urlsplit(url)
    path = parts.path
    # browsers drop tab/CR/LF and read "/\host" as "//host"
    collapsed = "".join(ch for ch in path if ch not in "\t\r\n")
    if not collapsed.startswith("/") or collapsed[1:2] in ("/", "\\"):
        path = "/"
    return f"{path}?{parts.query}" if parts.query else path


def _login_form(error: str | None = None, retry: str | None = None) -> str:
    retry_link = (
        f"<p><a href='{_e(_local_path(retry))}'>Try again</a></p>" if retry else ""
    )
    return (
        _error_block(error)
        + retry_link
        + "<form method='post' action='/login'>"
        "<label>Email <input type='email' name='email' required></label>"
        "<label>Password <input type='password' name='password' required></label>"
        "<button type='submit'>Sign in</button></form>"
        "<p><a href='/auth/google/start'>Continue with Google</a></p>"
        "<p><a href='/forgot-password'>Forgot password?</a> "
        "<a href='/signup'>Create an account</a></p>"
    )


def _signup_form(error: str | None = None) -> str:
    return (
        _error_block(error)
        + "<form method='post' action='/signup'>"
        "<label>Name <input type='text' name='name' required></label>"
        "<label>Email <input type='email' name='email' required></label>"
        "<label>Password <input type='password' name='password' minlength='8' required></label>"
        "<button type='submit'>Sign up</button></form>"
        "<p><a href='/login'>Back to Login</a></p>"
    )


def _forgot_form(error: str | None = None, email: str | None = None) -> str:
    return (
        _error_block(error)
        + "<form method='post' action='/forgot-password'>"
        f"<label>Email <input type='email' name='email' value='{_e(email)}' required></label>"
        "<button type='submit'>Send Reset Link</button></form>"
        "<p><a href='/login'>Back to Login</a></p>"
    )


def _reset_form(error: str | None = None) -> str:
    return (
        _error_block(error)
        + "<form method='post' action='/reset-password'>"
        "<label>New Password <input type='password' name='password' minlength='8' required></label>"
        "<label>Confirm Password <input type='password' name='confirm_password' required></label>"
        "<p>Password must be at least 8 characters long</p>"
        "<button type='submit'>Update Password</button></form>"
    )


def _invalid_link_page(message: str | None, retry: str | None = None) -> HTMLResponse:
    retry_link = f"<a href='{_e(_local_path(retry))}'>Try again</a> " if retry else ""
    return _html_page(
        "Invalid or expired link",
        _error_block(message)
        + "<p>"
        + retry_link
        + "<a href='/forgot-password'>Request a new link</a> "
        "<a href='/login'>Back to Login</a></p>",
        400,
    )


def _outcome_redirect(outcome: RedirectOutcome) -> RedirectResponse:
    """303 to the decided route; failures carry the message (and retry URL)."""
    if outcome.authenticated:
        return RedirectResponse(outcome.route.value, status_code=303)
    query = {"message": outcome.message or "Authentication failed"}
    if outcome.next_action is NextAction.RETRY:
        query["retry"] = _local_path(outcome.url)
    return RedirectResponse(f"{outcome.route.value}?{urlencode(query)}", status_code=303)


def _requires_config(handler: Handler) -> Handler:
    """Answer 503 with the configuration problem instead of running *handler*."""

    @functools.wraps(handler)
    async def _wrapped(request: Request) -> Response:
        ctx = get_app_context(request)
        if not ctx.configured:
            return _html_page(
                "Sign-in unavailable",
                _error_block(ctx.config_error or "Authentication is not configured.")
                + "<p>Please contact the site administrator.</p>",
                503,
            )
        return await handler(request)

    return _wrapped


async def _run_router(request: Request, flow: str) -> RedirectOutcome:
    ctx = get_app_context(request)
    browser = get_browser_context(request)
    router = ctx.redirect_router(browser)
    outcome = await run_in_threadpool(router.handle, Location(str(request.url)), flow=flow)
    _LOG.info(
        "Redirect flow=%s intent=%s state=%s route=%s correlation_id=%s",
        flow,
        outcome.intent.value,
        outcome.state.value,
        outcome.route.value,
        getattr(request.state, "correlation_id", "-"),
    )
    return outcome


# --------------------------------------------------------------------------- #
# handlers                                                                    #
# --------------------------------------------------------------------------- #
@_requires_config
async def home(request: Request) -> Response:
    if parse_redirect_params(str(request.url)).has_auth_params:
        return _outcome_redirect(await _run_router(request, "home"))
    browser = get_browser_context(request)
    signed_in = await run_in_threadpool(browser.auth.check_session)
    link = (
        "<a href='/dashboard'>Go to your dashboard</a>"
        if signed_in
        else "<a href='/login'>Sign in</a> <a href='/signup'>Sign up</a>"
    )
    return _html_page("PalmInsight", f"<p>Discover what your palm reveals.</p><p>{link}</p>")


@_requires_config
async def auth_callback(request: Request) -> Response:
    return _outcome_redirect(await _run_router(request, "callback"))


@_requires_config
async def login_page(request: Request) -> Response:
    if parse_redirect_params(str(request.url)).has_auth_params:
        return _outcome_redirect(await _run_router(request, "login"))
    browser = get_browser_context(request)
    await run_in_threadpool(browser.repository.ensure_verifier)
    return _html_page(
        "Sign in",
        _login_form(request.query_params.get("message"), request.query_params.get("retry")),
    )


@_requires_config
async def login_submit(request: Request) -> Response:
    form = await request.form()
    email = str(form.get("email") or "").strip()
    password = str(form.get("password") or "")
    browser = get_browser_context(request)
    try:
        await run_in_threadpool(browser.auth.sign_in, email, password)
    except AuthError as exc:
        return _html_page("Sign in", _login_form(exc.message), 400)
    return RedirectResponse(Route.DASHBOARD.value, status_code=303)


@_requires_config
async def signup_page(request: Request) -> Response:
    return _html_page("Create an account", _signup_form(request.query_params.get("message")))


@_requires_config
async def signup_submit(request: Request) -> Response:
    form = await request.form()
    name = str(form.get("name") or "").strip()
    email = str(form.get("email") or "").strip()
    password = str(form.get("password") or "")
    browser = get_browser_context(request)
    try:
        needs_confirmation = await run_in_threadpool(
            functools.partial(
                browser.auth.sign_up,
                name,
                email,
                password,
                redirect_to=f"{site_origin(request)}/auth/callback",
            )
        )
    except (PasswordPolicyError, AuthError) as exc:
        return _html_page("Create an account", _signup_form(str(exc)), 400)
    if needs_confirmation:
        return _html_page(
            "Check your email",
            "<p>We sent you a confirmation link. Open it to finish signing up.</p>"
            "<p><a href='/login'>Back to Login</a></p>",
        )
    return RedirectResponse(Route.DASHBOARD.value, status_code=303)


@_requires_config
async def logout(request: Request) -> Response:
    browser = get_browser_context(request)
    try:
        await run_in_threadpool(browser.auth.sign_out)
    except AuthError as exc:
        # local session is gone either way; only the server-side revoke failed
        _LOG.warning("Sign out error: %s", exc.message)
    return RedirectResponse(Route.LOGIN.value, status_code=303)


@_requires_config
async def google_start(request: Request) -> Response:
    browser = get_browser_context(request)
    url = await run_in_threadpool(
        browser.auth.sign_in_with_google, f"{site_origin(request)}/auth/callback"
    )
    _LOG.info(
        "Google sign-in started correlation_id=%s",
        getattr(request.state, "correlation_id", "-"),
    )
    return RedirectResponse(url, status_code=303)


@_requires_config
async def auth_status(request: Request) -> Response:
    browser = get_browser_context(request)
    await run_in_threadpool(browser.auth.check_session)
    return JSONResponse(browser.auth.get_state().to_dict())


@_requires_config
async def forgot_password_page(request: Request) -> Response:
    # pre-fill with the address of the last reset request from this browser
    email = get_browser_context(request).repository.reset_email()
    return _html_page(
        "Reset your password", _forgot_form(request.query_params.get("message"), email)
    )


@_requires_config
async def forgot_password_submit(request: Request) -> Response:
    form = await request.form()
    email = str(form.get("email") or "").strip()
    browser = get_browser_context(request)
    try:
        await run_in_threadpool(
            browser.auth.forgot_password, email, f"{site_origin(request)}/reset-password"
        )
    except ValueError as exc:
        return _html_page("Reset your password", _forgot_form(str(exc), email), 400)
    except AuthRetryableError:
        return _html_page(
            "Reset your password",
            _forgot_form("We couldn't send a reset link. Please try again later.", email),
            503,
        )
    except AuthError as exc:
        return _html_page("Reset your password", _forgot_form(exc.message, email), 400)
    return _html_page(
        "Reset link sent",
        f"<p>We sent a password reset link to {_e(email)}. "
        "Open it in this browser and use it within 5 minutes.</p>"
        "<p><a href='/forgot-password'>Send another link</a> "
        "<a href='/login'>Back to Login</a></p>",
    )


@_requires_config
async def reset_password_page(request: Request) -> Response:
    outcome = await _run_router(request, "recovery")
    if not outcome.authenticated:
        retry = outcome.url if outcome.next_action is NextAction.RETRY else None
        return _invalid_link_page(outcome.message, retry)
    if outcome.url != str(request.url):
        return RedirectResponse(_local_path(outcome.url), status_code=303)
    return _html_page("Choose a new password", _reset_form())


@_requires_config
async def reset_password_submit(request: Request) -> Response:
    form = await request.form()
    password = str(form.get("password") or "")
    confirm = str(form.get("confirm_password") or "")
    browser = get_browser_context(request)
    try:
        await run_in_threadpool(browser.auth.update_password, password, confirm)
    except PasswordPolicyError as exc:
        return _html_page("Choose a new password", _reset_form(str(exc)), 400)
    except AuthSessionMissingError:
        return _invalid_link_page("Your reset session has expired.")
    except AuthError as exc:
        return _html_page(
            "Choose a new password",
            _reset_form(exc.message or "Please try again or request a new reset link."),
            400,
        )
    return _html_page(
        "Password updated",
        "<p>You can now log in with your new password.</p><p><a href='/login'>Go to Login</a></p>",
    )


@_requires_config
async def dashboard(request: Request) -> Response:
    browser = get_browser_context(request)
    await run_in_threadpool(browser.auth.check_session)
    state = browser.auth.get_state()
    if not state.is_authenticated or state.user is None:
        return RedirectResponse(Route.LOGIN.value, status_code=303)
    return _html_page(
        "Dashboard",
        f"<p>Welcome, {_e(state.user.name)}.</p>"
        "<form method='post' action='/logout'><button type='submit'>Sign out</button></form>",
    )


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def register_auth_routes(app: Starlette, *, base_path: str = "/auth") -> None:
    """Attach the auth pages to *app*; provider-facing paths live under *base_path*."""
    app.add_route("/", home, methods=["GET"])
    app.add_route("/login", login_page, methods=["GET"])
    app.add_route("/login", login_submit, methods=["POST"])
    app.add_route("/signup", signup_page, methods=["GET"])
    app.add_route("/signup", signup_submit, methods=["POST"])
    app.add_route("/logout", logout, methods=["POST"])
    app.add_route("/forgot-password", forgot_password_page, methods=["GET"])
    app.add_route("/forgot-password", forgot_password_submit, methods=["POST"])
    app.add_route("/reset-password", reset_password_page, methods=["GET"])
    app.add_route("/reset-password", reset_password_submit, methods=["POST"])
    app.add_route("/dashboard", dashboard, methods=["GET"])
    app.add_route(f"{base_path}/callback", auth_callback, methods=["GET"])
    app.add_route(f"{base_path}/google/start", google_start, methods=["GET"])
    app.add_route(f"{base_path}/status", auth_status, methods=["GET"])
