"""Authorization-code exchange with structured results.

The provider client raises; this layer converts every outcome into an
:class:`ExchangeResult`. Messages and navigation are decided by the
redirect router.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from palm_insight.auth.errors import (
    AuthApiError,
    AuthError,
    AuthVerifierMissingError,
    ExchangeError,
    ExchangeErrorKind,
)
from palm_insight.auth.models import Session

_LOG = logging.getLogger("palm-insight.auth.exchange")

_VERIFIER_ERROR_CODES = frozenset(
    {"bad_code_verifier", "flow_state_not_found", "flow_state_expired", "verifier_missing"}
)


class CodeExchanger(Protocol):
    def exchange_code_for_session(
        self, code: str, *, redirect_type: str | None = None
    ) -> Session | None: ...


@dataclass(frozen=True, slots=True)
class ExchangeResult:
    session: Session | None = None
    error: ExchangeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.session is not None


def classify_provider_error(exc: AuthError) -> ExchangeError:
    """Map a provider error onto :class:`ExchangeErrorKind`."""
    if isinstance(exc, AuthVerifierMissingError) or exc.code in _VERIFIER_ERROR_CODES:
        return ExchangeError(ExchangeErrorKind.VERIFIER_MISMATCH, exc.message)
    if isinstance(exc, AuthApiError) and "code verifier" in exc.message.lower():
        return ExchangeError(ExchangeErrorKind.VERIFIER_MISMATCH, exc.message)
    status = exc.status if isinstance(exc, AuthApiError) else None
    return ExchangeError(ExchangeErrorKind.NETWORK_OR_PROVIDER, exc.message, status=status)


class TokenExchangeClient:
    """Exchanges an authorization code for a session through *provider*.

    The provider reads the verifier from its own storage key, so callers must
    place the resolved verifier there before calling
    :meth:`exchange_code_for_session`.
    """

    def __init__(self, provider: CodeExchanger) -> None:
        self.provider = provider

    def exchange_code_for_session(
        self, code: str, *, redirect_type: str | None = None
    ) -> ExchangeResult:
        try:
            session = self.provider.exchange_code_for_session(code, redirect_type=redirect_type)
        except AuthError as exc:
            error = classify_provider_error(exc)
            _LOG.warning("Code exchange failed kind=%s: %s", error.kind.value, exc.message)
            return ExchangeResult(error=error)

        if session is None:
            _LOG.warning("Code exchange succeeded but no session was returned")
            return ExchangeResult(
                error=ExchangeError(
                    ExchangeErrorKind.NO_SESSION,
                    "Authentication succeeded but no session was created",
                )
            )
        return ExchangeResult(session=session)
