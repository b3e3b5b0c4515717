"""PalmInsight authentication core.

This namespace hosts the **HTTP-agnostic** building blocks of the PKCE login
and password-reset flows.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Secure verifier generation and S256 challenges.
storage
    ``localStorage``-like key/value namespaces (memory, disk).
verifiers
    Verifier repository: redundant writes, prioritised recovery, reset flags.
redirect
    Redirect URL parsing, intent classification and route decisions.
provider
    Supabase GoTrue REST client.
exchange
    Authorization-code exchange with structured results.
router
    The redirect-recovery state machine.
state_store
    Observable auth state per browser session.
models
    Immutable dataclasses (session, user, auth state, reset record).
errors
    Exception types used by the auth core.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .errors import (  # noqa: F401
    AuthApiError,
    AuthError,
    AuthRetryableError,
    AuthSessionMissingError,
    AuthVerifierMissingError,
    ConfigurationError,
    ExchangeError,
    ExchangeErrorKind,
    InsecureRandomError,
    PasswordPolicyError,
    VerifierStoreError,
)
from .exchange import ExchangeResult, TokenExchangeClient  # noqa: F401
from .log_utils import get_auth_logger  # noqa: F401
from .models import AuthState, PasswordResetInfo, ProviderUser, Session, User  # noqa: F401
from .pkce import code_challenge_s256, generate_verifier  # noqa: F401
from .provider import SupabaseAuthClient  # noqa: F401
from .redirect import (  # noqa: F401
    RedirectIntent,
    RedirectParams,
    Route,
    classify_intent,
    decide_route,
    parse_redirect_params,
    strip_auth_params,
)
from .router import (  # noqa: F401
    ConsumedCodes,
    FlowState,
    Location,
    NextAction,
    RedirectOutcome,
    RedirectRouter,
)
from .state_store import AuthStateStore  # noqa: F401
from .storage import DiskStorage, KeyValueStorage, MemoryStorage  # noqa: F401
from .verifiers import VerifierRepository  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # errors
    "AuthApiError",
    "AuthError",
    "AuthRetryableError",
    "AuthSessionMissingError",
    "AuthVerifierMissingError",
    "ConfigurationError",
    "ExchangeError",
    "ExchangeErrorKind",
    "InsecureRandomError",
    "PasswordPolicyError",
    "VerifierStoreError",
    # exchange
    "ExchangeResult",
    "TokenExchangeClient",
    # logging helpers
    "get_auth_logger",
    # models
    "AuthState",
    "PasswordResetInfo",
    "ProviderUser",
    "Session",
    "User",
    # pkce
    "code_challenge_s256",
    "generate_verifier",
    # provider
    "SupabaseAuthClient",
    # redirect
    "RedirectIntent",
    "RedirectParams",
    "Route",
    "classify_intent",
    "decide_route",
    "parse_redirect_params",
    "strip_auth_params",
    # router
    "ConsumedCodes",
    "FlowState",
    "Location",
    "NextAction",
    "RedirectOutcome",
    "RedirectRouter",
    # state
    "AuthStateStore",
    # storage
    "DiskStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "VerifierRepository",
]
