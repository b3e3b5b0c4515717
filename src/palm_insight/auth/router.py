"""Redirect-recovery state machine.

Every page load that may carry an authorization code (home, login, the
explicit callback page, the reset-password page) runs
:meth:`RedirectRouter.handle`::

    IDLE -> VERIFYING -> AUTHENTICATED | FAILED

1. ``error`` in the URL                 -> FAILED(description); no exchange.
2. ``code`` in the URL                  -> resolve verifier (one fresh
   fallback at most), place it for the provider, exchange exactly once,
   strip ``code``/``type`` from the visible URL on success.
3. neither                              -> existing session ? AUTHENTICATED
   : FAILED("no code in URL").

Running the machine twice for the same URL never exchanges the same code
twice: successful exchanges strip the URL, and every code that reached the
provider is remembered (hashed) in :class:`ConsumedCodes`.

This module is the only place that turns exchange errors into user-facing
messages and next steps.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from hashlib import sha256
from typing import Protocol

from cachetools import TTLCache

from palm_insight.auth.errors import AuthError, ExchangeErrorKind, VerifierStoreError
from palm_insight.auth.exchange import ExchangeResult, TokenExchangeClient
from palm_insight.auth.log_utils import get_auth_logger
from palm_insight.auth.models import Session
from palm_insight.auth.redirect import (
    RedirectIntent,
    RedirectParams,
    Route,
    classify_intent,
    decide_route,
    failure_route,
    parse_redirect_params,
    strip_auth_params,
)
from palm_insight.auth.verifiers import VerifierRepository

NO_CODE_MESSAGE = "no code in URL"
ALREADY_USED_MESSAGE = "This link has already been used. Please request a new link."
NO_VERIFIER_MESSAGE = (
    "This link was opened in a browser that did not request it. Please request a new link."
)
UNEXPECTED_ERROR_MESSAGE = "Error verifying link"

RECOVERY_FLOW = "recovery"


class FlowState(str, enum.Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class NextAction(str, enum.Enum):
    """What a failure page offers the user."""

    NONE = "none"
    RETRY = "retry"
    REQUEST_NEW_LINK = "request_new_link"
    RETURN_TO_LOGIN = "return_to_login"


class SessionSource(Protocol):
    def get_session(self) -> Session | None: ...


class Location:
    """The page URL plus a history-replacement hook.

    ``replace_state`` swaps the visible URL without navigating, like
    ``history.replaceState``; ``history`` records every replacement.
    """

    def __init__(self, href: str) -> None:
        self.href = href
        self.history: list[str] = []

    def replace_state(self, url: str) -> None:
        self.history.append(url)
        self.href = url


class ConsumedCodes:
    """Process-wide memory of authorization codes already sent to the provider.

    Codes are kept as SHA-256 digests only.
    """

    def __init__(self, *, ttl_seconds: int = 3600, maxsize: int = 10_000) -> None:
        self._cache: TTLCache[str, bool] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)
        self._lock = threading.Lock()

    @staticmethod
    def _key(code: str) -> str:
        return sha256(code.encode("utf-8")).hexdigest()

    def add(self, code: str) -> None:
        with self._lock:
            self._cache[self._key(code)] = True

    def __contains__(self, code: object) -> bool:
        if not isinstance(code, str):
            return False
        with self._lock:
            return self._key(code) in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


@dataclass(slots=True)
class RedirectOutcome:
    state: FlowState
    intent: RedirectIntent
    route: Route
    message: str | None = None
    next_action: NextAction = NextAction.NONE
    session: Session | None = None
    url: str = ""
    exchange_attempted: bool = False
    error_kind: ExchangeErrorKind | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is FlowState.AUTHENTICATED


class RedirectRouter:
    """Decide where a page load lands, exchanging its code when it has one."""

    def __init__(
        self,
        repository: VerifierRepository,
        exchange_client: TokenExchangeClient,
        sessions: SessionSource,
        *,
        consumed_codes: ConsumedCodes,
        allow_fresh_verifier_fallback: bool = True,
        browser_id: str | None = None,
    ) -> None:
        self.repository = repository
        self.exchange_client = exchange_client
        self.sessions = sessions
        self.consumed_codes = consumed_codes
        self.allow_fresh_verifier_fallback = allow_fresh_verifier_fallback
        self.browser_id = browser_id
        self.state = FlowState.IDLE

    # ------------------------------------------------------------------ #
    def handle(self, location: Location, *, flow: str = "callback") -> RedirectOutcome:
        params = parse_redirect_params(location.href)
        intent = classify_intent(params)
        log = get_auth_logger(
            base_logger_name="palm-insight.auth.router",
            flow=flow,
            intent=intent.value,
            browser_id=self.browser_id,
        )
        self.state = FlowState.VERIFYING
        recovery = flow == RECOVERY_FLOW or intent is RedirectIntent.RECOVERY_CODE

        try:
            if intent is RedirectIntent.ERROR:
                message = params.error_description or params.error or UNEXPECTED_ERROR_MESSAGE
                log.info("Provider redirected with error=%s", params.error)
                return self._fail(intent, location, message, recovery=recovery)

            if params.code:
                return self._handle_code(params, intent, location, recovery=recovery, log=log)

            session = self.sessions.get_session()
            if session is not None:
                intent = RedirectIntent.EXISTING_SESSION
                route = decide_route(
                    intent, reset_requested=recovery or self.repository.is_reset_requested()
                )
                return self._succeed(intent, location, route, session)
            return self._fail(intent, location, NO_CODE_MESSAGE, recovery=recovery)
        except (AuthError, VerifierStoreError, OSError, TimeoutError) as exc:
            log.error("Unexpected failure while verifying redirect: %s", exc, exc_info=True)
            return self._fail(
                intent,
                location,
                UNEXPECTED_ERROR_MESSAGE,
                recovery=recovery,
                next_action=NextAction.RETRY,
            )

    # ------------------------------------------------------------------ #
    def _handle_code(
        self,
        params: RedirectParams,
        intent: RedirectIntent,
        location: Location,
        *,
        recovery: bool,
        log,
    ) -> RedirectOutcome:
        code = params.code or ""
        reset_requested = recovery or self.repository.is_reset_requested()

        if code in self.consumed_codes:
            log.info("Authorization code already consumed; not exchanging again")
            location.replace_state(strip_auth_params(location.href))
            session = self.sessions.get_session()
            if session is not None:
                return self._succeed(
                    intent, location, decide_route(intent, reset_requested=reset_requested), session
                )
            return self._fail(intent, location, ALREADY_USED_MESSAGE, recovery=recovery)

        verifier = self.repository.resolve_verifier()
        if verifier is None:
            if not self.allow_fresh_verifier_fallback:
                log.warning("No code verifier found; refusing to exchange")
                return self._fail(
                    intent,
                    location,
                    NO_VERIFIER_MESSAGE,
                    recovery=recovery,
                    next_action=NextAction.REQUEST_NEW_LINK,
                )
            # A fresh verifier cannot match a challenge issued earlier in the
            # flow; the provider will almost certainly reject it.
            log.warning("No code verifier found; trying a freshly generated one, success unlikely")
            verifier = self.repository.generate_and_store()
        else:
            self.repository.store_verifier(verifier)

        result = self.exchange_client.exchange_code_for_session(code, redirect_type=params.type)
        if result.ok or not (result.error and result.error.retryable):
            self.consumed_codes.add(code)

        if result.ok:
            location.replace_state(strip_auth_params(location.href))
            self.repository.discard_verifiers()
            route = decide_route(intent, reset_requested=reset_requested)
            log.info("Code exchange succeeded; routing to %s", route.value)
            return self._succeed(intent, location, route, result.session, exchanged=True)

        return self._exchange_failed(result, intent, location, code, verifier, recovery=recovery)

    def _exchange_failed(
        self,
        result: ExchangeResult,
        intent: RedirectIntent,
        location: Location,
        code: str,
        verifier: str,
        *,
        recovery: bool,
    ) -> RedirectOutcome:
        error = result.error
        assert error is not None
        if error.kind is ExchangeErrorKind.VERIFIER_MISMATCH:
            message = (
                "Authentication error: The code verifier doesn't match the code. "
                + ("Please request a new reset link." if recovery else "Please sign in again.")
            )
        elif error.kind is ExchangeErrorKind.NO_SESSION:
            message = str(error)
        else:
            message = f"Error: {error}"

        if recovery:
            self.repository.record_reset_error(str(error), code, verifier)

        outcome = self._fail(
            intent,
            location,
            message,
            recovery=recovery,
            next_action=NextAction.RETRY if error.retryable else None,
        )
        outcome.exchange_attempted = True
        outcome.error_kind = error.kind
        return outcome

    # ------------------------------------------------------------------ #
    def _succeed(
        self,
        intent: RedirectIntent,
        location: Location,
        route: Route,
        session: Session | None,
        *,
        exchanged: bool = False,
    ) -> RedirectOutcome:
        self.state = FlowState.AUTHENTICATED
        return RedirectOutcome(
            state=self.state,
            intent=intent,
            route=route,
            session=session,
            url=location.href,
            exchange_attempted=exchanged,
        )

    def _fail(
        self,
        intent: RedirectIntent,
        location: Location,
        message: str,
        *,
        recovery: bool,
        next_action: NextAction | None = None,
    ) -> RedirectOutcome:
        self.state = FlowState.FAILED
        if next_action is None:
            next_action = NextAction.REQUEST_NEW_LINK if recovery else NextAction.RETURN_TO_LOGIN
        return RedirectOutcome(
            state=self.state,
            intent=intent,
            route=failure_route(recovery_flow=recovery),
            message=message,
            next_action=next_action,
            url=location.href,
        )
