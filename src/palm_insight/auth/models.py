"""Typed, immutable records used by the auth core."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

from palm_insight.auth.clock import Clock, default_clock


@dataclass(frozen=True, slots=True)
class ProviderUser:
    """User record as returned by the auth provider."""

    id: str
    email: str | None = None
    created_at: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    app_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderUser":
        return cls(
            id=str(data["id"]),
            email=data.get("email"),
            created_at=data.get("created_at"),
            user_metadata=dict(data.get("user_metadata") or {}),
            app_metadata=dict(data.get("app_metadata") or {}),
        )


@dataclass(frozen=True, slots=True)
class Session:
    """Credential bundle returned by a successful sign-in or code exchange."""

    access_token: str
    refresh_token: str | None
    expires_at: int
    user: ProviderUser
    token_type: str = "bearer"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, clock: Clock = default_clock) -> "Session":
        """Build from a provider token response or a persisted session.

        Token responses carry ``expires_in`` and sometimes ``expires_at``;
        persisted sessions always carry ``expires_at``.
        """
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = int(clock()) + int(data.get("expires_in", 3600))
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=int(expires_at),
            user=ProviderUser.from_dict(data["user"]),
            token_type=data.get("token_type", "bearer"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def is_expired(self, *, clock: Clock = default_clock, margin: int = 10) -> bool:
        """Return *True* if the access token expires within *margin* seconds."""
        return (self.expires_at - clock()) <= margin


@dataclass(frozen=True, slots=True)
class User:
    """The application's view of the signed-in user."""

    id: str
    email: str
    name: str
    created_at: str | None = None

    @classmethod
    def from_provider(cls, user: ProviderUser | None) -> "User | None":
        if user is None:
            return None
        meta = user.user_metadata
        email = user.email or ""
        name = (
            meta.get("full_name")
            or meta.get("name")
            or (email.split("@")[0] if email else "")
            or "User"
        )
        return cls(id=user.id, email=email, name=name, created_at=user.created_at)


@dataclass(frozen=True, slots=True)
class AuthState:
    """Snapshot published by :class:`~palm_insight.auth.state_store.AuthStateStore`."""

    user: User | None = None
    is_loading: bool = True
    is_authenticated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": asdict(self.user) if self.user else None,
            "isLoading": self.is_loading,
            "isAuthenticated": self.is_authenticated,
        }


@dataclass(frozen=True, slots=True)
class PasswordResetInfo:
    """The ``passwordResetInfo`` record written when a reset link is requested.

    Serialized with the camelCase keys older page loads already read.
    """

    email: str | None
    timestamp: str
    full_verifier: str | None
    verifier: str | None = None
    verifier_length: int | None = None
    redirect_url: str | None = None
    challenge_preview: str | None = None

    _KEYS = {
        "email": "email",
        "timestamp": "timestamp",
        "full_verifier": "fullVerifier",
        "verifier": "verifier",
        "verifier_length": "verifierLength",
        "redirect_url": "redirectUrl",
        "challenge_preview": "challengePreview",
    }

    def to_json_dict(self) -> dict[str, Any]:
        return {
            wire: getattr(self, attr)
            for attr, wire in self._KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_json_dict(cls, data: Mapping[str, Any]) -> "PasswordResetInfo":
        values = {attr: data.get(wire) for attr, wire in cls._KEYS.items()}
        values["timestamp"] = values["timestamp"] or ""
        return cls(**values)
