"""Exception types raised by the PalmInsight auth core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can transform them into pages or JSON payloads. None of them ever carry
a verifier, an authorization code or a token.
"""

from __future__ import annotations

import enum


class ConfigurationError(RuntimeError):
    """Raised when required settings (provider URL, API key) are missing."""

    def __init__(self, missing: list[str] | tuple[str, ...] = (), message: str | None = None) -> None:
        self.missing: tuple[str, ...] = tuple(missing)
        super().__init__(
            message
            or "Authentication is not configured: missing "
            + ", ".join(self.missing or ("settings",))
        )


class InsecureRandomError(RuntimeError):
    """Raised when no cryptographically secure random source is available."""


class VerifierStoreError(RuntimeError):
    """Raised when a code verifier could not be persisted consistently."""


class PasswordPolicyError(ValueError):
    """Raised when a new password does not satisfy the password rules."""


# --------------------------------------------------------------------------- #
# Provider errors                                                             #
# --------------------------------------------------------------------------- #
class AuthError(Exception):
    """Base class of every error reported by the auth provider client."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class AuthApiError(AuthError):
    """The provider answered with an error status or an unreadable body."""

    def __init__(self, message: str, status: int, *, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status = status

    def __repr__(self) -> str:
        return f"AuthApiError(status={self.status}, code={self.code!r}, message={self.message!r})"


class AuthRetryableError(AuthError):
    """The provider could not be reached (DNS, TLS, timeout, reset)."""


class AuthVerifierMissingError(AuthError):
    """No code verifier was available where the provider client looks for it."""

    def __init__(self, message: str = "Could not find a valid code verifier") -> None:
        super().__init__(message, code="verifier_missing")


class AuthSessionMissingError(AuthError):
    """An operation requiring a session was attempted without one."""

    def __init__(self, message: str = "Auth session missing") -> None:
        super().__init__(message, code="session_missing")


# --------------------------------------------------------------------------- #
# Code exchange                                                               #
# --------------------------------------------------------------------------- #
class ExchangeErrorKind(str, enum.Enum):
    VERIFIER_MISMATCH = "verifier_mismatch"
    NO_SESSION = "no_session"
    NETWORK_OR_PROVIDER = "network_or_provider"


class ExchangeError(Exception):
    """Structured failure of an authorization-code exchange."""

    def __init__(
        self, kind: ExchangeErrorKind, message: str, *, status: int | None = None
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:
        """Only transport failures, 5xx and 429 may succeed on a second attempt.

        A ``status`` of ``None`` means the provider was never reached.
        """
        if self.kind is not ExchangeErrorKind.NETWORK_OR_PROVIDER:
            return False
        return self.status is None or self.status >= 500 or self.status == 429

    def to_payload(self) -> dict[str, str | bool]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "error": self.kind.value,
            "message": str(self),
            "retryable": self.retryable,
        }
