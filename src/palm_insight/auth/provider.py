"""Client for the Supabase GoTrue auth REST API.

Only the calls the PalmInsight flows need are implemented. The client keeps
its session in the browser's :class:`~palm_insight.auth.storage.KeyValueStorage`
namespace (key ``supabase.auth.token``) and reads the PKCE verifier from
``supabase.auth.code_verifier`` when exchanging a code, the same places the
JavaScript client uses.

Auth events emitted to :meth:`SupabaseAuthClient.on_auth_state_change`
subscribers: ``SIGNED_IN``, ``SIGNED_OUT``, ``PASSWORD_RECOVERY``,
``TOKEN_REFRESHED``, ``USER_UPDATED``.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, Literal, Mapping
from urllib.parse import urlencode

import requests

from palm_insight.auth.clock import Clock, default_clock
from palm_insight.auth.errors import (
    AuthApiError,
    AuthRetryableError,
    AuthSessionMissingError,
    AuthVerifierMissingError,
)
from palm_insight.auth.models import ProviderUser, Session
from palm_insight.auth.storage import KeyValueStorage
from palm_insight.auth.verifiers import SUPABASE_CODE_VERIFIER_KEY

_LOG = logging.getLogger("palm-insight.auth.provider")

SESSION_STORAGE_KEY = "supabase.auth.token"

AuthChangeEvent = Literal[
    "SIGNED_IN", "SIGNED_OUT", "PASSWORD_RECOVERY", "TOKEN_REFRESHED", "USER_UPDATED"
]
AuthChangeCallback = Callable[[str, "Session | None"], None]


class SupabaseAuthClient:
    """Synchronous GoTrue client bound to one browser storage namespace."""

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        storage: KeyValueStorage,
        http: requests.Session | None = None,
        timeout: tuple[float, float] = (5, 20),
        clock: Clock = default_clock,
    ) -> None:
        self.auth_url = f"{url.rstrip('/')}/auth/v1"
        self._api_key = api_key
        self.storage = storage
        self._http = http or requests.Session()
        self._timeout = timeout
        self._clock = clock
        self._subscribers: dict[str, AuthChangeCallback] = {}

    # ------------------------------------------------------------------ #
    # events                                                             #
    # ------------------------------------------------------------------ #
    def on_auth_state_change(self, callback: AuthChangeCallback) -> Callable[[], None]:
        """Register *callback*; return a function that unregisters it."""
        sub_id = uuid.uuid4().hex
        self._subscribers[sub_id] = callback

        def _unsubscribe() -> None:
            self._subscribers.pop(sub_id, None)

        return _unsubscribe

    def _notify(self, event: AuthChangeEvent, session: Session | None) -> None:
        _LOG.debug("Auth event %s (session=%s)", event, "yes" if session else "no")
        for callback in list(self._subscribers.values()):
            callback(event, session)

    # ------------------------------------------------------------------ #
    # session persistence                                                #
    # ------------------------------------------------------------------ #
    def _save_session(self, session: Session) -> None:
        self.storage.set_item(SESSION_STORAGE_KEY, json.dumps(session.to_dict()))

    def _remove_session(self) -> None:
        self.storage.remove_item(SESSION_STORAGE_KEY)

    def _load_session(self) -> Session | None:
        raw = self.storage.get_item(SESSION_STORAGE_KEY)
        if not raw:
            return None
        try:
            return Session.from_dict(json.loads(raw), clock=self._clock)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            _LOG.warning("Dropping unreadable stored session")
            self._remove_session()
            return None

    # ------------------------------------------------------------------ #
    # HTTP                                                               #
    # ------------------------------------------------------------------ #
    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, str] | None = None,
        jwt: str | None = None,
        redirect_to: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self._api_key, "Content-Type": "application/json"}
        if jwt:
            headers["Authorization"] = f"Bearer {jwt}"
        params = dict(query or {})
        if redirect_to:
            params["redirect_to"] = redirect_to

        try:
            resp = self._http.request(
                method,
                f"{self.auth_url}/{path}",
                headers=headers,
                params=params or None,
                json=body,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise AuthRetryableError(f"Auth provider unreachable: {exc}") from exc

        if not resp.ok:
            raise _api_error(resp)
        if not resp.content:
            return {}
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthApiError(
                "Auth provider returned an unreadable response",
                resp.status_code,
                code="invalid_response",
            ) from exc
        if not isinstance(payload, dict):
            raise AuthApiError(
                "Auth provider returned an unexpected response",
                resp.status_code,
                code="invalid_response",
            )
        return payload

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #
    def sign_in_with_password(self, email: str, password: str) -> Session:
        self._remove_session()
        data = self._request(
            "POST",
            "token",
            query={"grant_type": "password"},
            body={"email": email, "password": password},
        )
        session = Session.from_dict(data, clock=self._clock)
        self._save_session(session)
        self._notify("SIGNED_IN", session)
        return session

    def sign_up(
        self,
        email: str,
        password: str,
        *,
        data: Mapping[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> tuple[ProviderUser | None, Session | None]:
        """Create a user; the session is ``None`` while email confirmation is pending."""
        self._remove_session()
        resp = self._request(
            "POST",
            "signup",
            body={"email": email, "password": password, "data": dict(data or {})},
            redirect_to=redirect_to,
        )
        if resp.get("access_token"):
            session = Session.from_dict(resp, clock=self._clock)
            self._save_session(session)
            self._notify("SIGNED_IN", session)
            return session.user, session
        user = ProviderUser.from_dict(resp["user"] if "user" in resp else resp) if resp else None
        return user, None

    def sign_out(self) -> None:
        """Revoke the session server-side and forget it locally."""
        session = self._load_session()
        try:
            if session:
                self._request("POST", "logout", jwt=session.access_token)
        finally:
            self._remove_session()
            self._notify("SIGNED_OUT", None)

    def reset_password_for_email(
        self, email: str, *, redirect_to: str, code_challenge: str | None = None
    ) -> None:
        body: dict[str, Any] = {"email": email}
        if code_challenge:
            body["code_challenge"] = code_challenge
            body["code_challenge_method"] = "s256"
        self._request("POST", "recover", body=body, redirect_to=redirect_to)

    def exchange_code_for_session(
        self, code: str, *, redirect_type: str | None = None
    ) -> Session | None:
        """Trade an authorization *code* for a session using the stored verifier.

        Returns ``None`` when the provider accepted the code but answered
        without a session.
        """
        verifier = self.storage.get_item(SUPABASE_CODE_VERIFIER_KEY)
        if not verifier:
            raise AuthVerifierMissingError()
        try:
            data = self._request(
                "POST",
                "token",
                query={"grant_type": "pkce"},
                body={"auth_code": code, "code_verifier": verifier},
            )
        finally:
            self.storage.remove_item(SUPABASE_CODE_VERIFIER_KEY)

        if not data.get("access_token"):
            return None
        try:
            session = Session.from_dict(data, clock=self._clock)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise AuthApiError(
                "Auth provider returned an incomplete session",
                200,
                code="invalid_response",
            ) from exc
        self._save_session(session)
        self._notify("PASSWORD_RECOVERY" if redirect_type == "recovery" else "SIGNED_IN", session)
        return session

    def get_session(self) -> Session | None:
        """Return the stored session, refreshing it if the access token expired."""
        session = self._load_session()
        if session is None or not session.is_expired(clock=self._clock):
            return session
        if not session.refresh_token:
            self._remove_session()
            return None
        return self._refresh_session(session.refresh_token)

    def _refresh_session(self, refresh_token: str) -> Session | None:
        try:
            data = self._request(
                "POST",
                "token",
                query={"grant_type": "refresh_token"},
                body={"refresh_token": refresh_token},
            )
        except AuthApiError as exc:
            _LOG.info("Refresh token rejected (%s); signing out locally", exc.status)
            self._remove_session()
            self._notify("SIGNED_OUT", None)
            return None
        session = Session.from_dict(data, clock=self._clock)
        self._save_session(session)
        self._notify("TOKEN_REFRESHED", session)
        return session

    def update_user(self, *, password: str | None = None, data: Mapping[str, Any] | None = None) -> ProviderUser:
        session = self.get_session()
        if session is None:
            raise AuthSessionMissingError()
        body: dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if data is not None:
            body["data"] = dict(data)
        resp = self._request("PUT", "user", body=body, jwt=session.access_token)
        user = ProviderUser.from_dict(resp)
        updated = Session(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
            user=user,
            token_type=session.token_type,
        )
        self._save_session(updated)
        self._notify("USER_UPDATED", updated)
        return user

    def get_url_for_provider(
        self,
        provider: str,
        *,
        redirect_to: str,
        code_challenge: str,
        query_params: Mapping[str, str] | None = None,
    ) -> str:
        """Return the OAuth authorize URL for *provider* (PKCE, S256)."""
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        }
        params.update(query_params or {})
        return f"{self.auth_url}/authorize?{urlencode(params)}"


def _api_error(resp: requests.Response) -> AuthApiError:
    """Build an :class:`AuthApiError` from a GoTrue error body."""
    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = (
        payload.get("msg")
        or payload.get("message")
        or payload.get("error_description")
        or payload.get("error")
        or resp.text[:200]
        or f"HTTP {resp.status_code}"
    )
    code = payload.get("error_code") or payload.get("code") or payload.get("error")
    return AuthApiError(str(message), resp.status_code, code=str(code) if code else None)
