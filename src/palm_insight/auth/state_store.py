"""Observable auth state for one browser session.

:class:`AuthStateStore` owns the :class:`~palm_insight.auth.models.AuthState`
snapshot. It changes only when the provider emits an auth event or when one
of the explicit operations below runs; every change is pushed synchronously
to all current subscribers.

Consumers must treat ``is_loading=True`` as "nothing conclusive yet" and not
redirect to the login page on it.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from palm_insight.auth.errors import AuthError, PasswordPolicyError
from palm_insight.auth.models import AuthState, Session, User
from palm_insight.auth.pkce import code_challenge_s256
from palm_insight.auth.provider import SupabaseAuthClient
from palm_insight.auth.verifiers import VerifierRepository
from palm_insight.utils.logging import mask_sensitive

_LOG = logging.getLogger("palm-insight.auth.state")

MIN_PASSWORD_LENGTH = 8

Listener = Callable[[AuthState], None]


def validate_new_password(password: str, confirm: str | None = None) -> None:
    """Raise :class:`PasswordPolicyError` unless *password* is acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordPolicyError(
            f"Your password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )
    if confirm is not None and password != confirm:
        raise PasswordPolicyError("Please make sure both passwords match.")


class AuthStateStore:
    """Holds the current :class:`AuthState` and the sign-in/out operations."""

    def __init__(self, provider: SupabaseAuthClient, repository: VerifierRepository) -> None:
        self.provider = provider
        self.repository = repository
        self._state = AuthState()
        self._listeners: list[Listener] = []
        provider.on_auth_state_change(self._on_auth_event)

    # ------------------------------------------------------------------ #
    # observation                                                        #
    # ------------------------------------------------------------------ #
    def get_state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* now and after every change until unsubscribed."""
        self._listeners.append(listener)
        listener(self._state)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            # a listener may unsubscribe another one mid-notification
            if listener in self._listeners:
                listener(self._state)

    def _apply_session(self, session: Session | None) -> None:
        if session is not None:
            self._update(
                user=User.from_provider(session.user), is_authenticated=True, is_loading=False
            )
        else:
            self._update(user=None, is_authenticated=False, is_loading=False)

    def _on_auth_event(self, event: str, session: Session | None) -> None:
        _LOG.debug("Auth state change: %s", event)
        if event in ("SIGNED_IN", "TOKEN_REFRESHED", "PASSWORD_RECOVERY"):
            self._apply_session(session)
        elif event == "SIGNED_OUT":
            self._apply_session(None)
        elif event == "USER_UPDATED":
            self._update(
                user=User.from_provider(session.user) if session else None,
                is_authenticated=session is not None,
                is_loading=False,
            )

    # ------------------------------------------------------------------ #
    # operations                                                         #
    # ------------------------------------------------------------------ #
    def check_session(self) -> bool:
        """Resolve the stored session; ``is_loading`` stays set until then."""
        if not self._state.is_loading:
            self._update(is_loading=True)
        try:
            session = self.provider.get_session()
        except AuthError as exc:
            _LOG.error("Error checking session: %s", exc)
            self._update(is_loading=False)
            return False
        self._apply_session(session)
        return session is not None

    def sign_in(self, email: str, password: str) -> bool:
        self._update(is_loading=True)
        try:
            self.provider.sign_in_with_password(email, password)
        except AuthError:
            _LOG.info("Sign in failed for %s", mask_sensitive(email, 3))
            self._update(is_loading=False)
            raise
        return True

    def sign_up(self, name: str, email: str, password: str, *, redirect_to: str | None = None) -> bool:
        """Create an account.

        Returns ``True`` when the provider still requires email confirmation
        (no session yet), ``False`` when the user is signed in right away.
        """
        validate_new_password(password)
        self._update(is_loading=True)
        try:
            _, session = self.provider.sign_up(
                email, password, data={"full_name": name}, redirect_to=redirect_to
            )
        except AuthError:
            self._update(is_loading=False)
            raise
        if session is None:
            self._update(is_loading=False)
            return True
        return False

    def sign_out(self) -> None:
        self._update(is_loading=True)
        try:
            self.provider.sign_out()
        finally:
            self._update(user=None, is_authenticated=False, is_loading=False)

    def sign_in_with_google(self, redirect_to: str) -> str:
        """Start the Google OAuth flow and return the provider authorize URL."""
        self._update(is_loading=True)
        verifier = self.repository.generate_and_store()
        url = self.provider.get_url_for_provider(
            "google",
            redirect_to=redirect_to,
            code_challenge=code_challenge_s256(verifier),
            query_params={"prompt": "select_account", "access_type": "offline"},
        )
        self._update(is_loading=False)
        return url

    def forgot_password(self, email: str, redirect_to: str) -> None:
        """Email a PKCE password-reset link that lands on *redirect_to*."""
        if not email:
            raise ValueError("Please enter your email address.")
        self.repository.clear_reset_error()
        verifier = self.repository.generate_and_store()
        challenge = code_challenge_s256(verifier)
        self.repository.store_reset_info(email, verifier, redirect_to, challenge)
        self.repository.mark_reset_requested(email)
        self.provider.reset_password_for_email(
            email, redirect_to=redirect_to, code_challenge=challenge
        )
        _LOG.info("Password reset link requested for %s", mask_sensitive(email, 3))

    def update_password(self, password: str, confirm: str | None = None) -> None:
        validate_new_password(password, confirm)
        self._update(is_loading=True)
        try:
            self.provider.update_user(password=password)
        finally:
            self._update(is_loading=False)
        self.repository.clear_reset_info()
