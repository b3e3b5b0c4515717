"""Code-verifier repository.

The PKCE verifier created when a flow starts must survive a full page
navigation (the user leaves for their inbox or the provider's consent screen
and comes back on a different page load). Earlier versions of the web client
read it back from different keys, so every write lands on *all* recognised
keys and every read walks them in a fixed priority order:

1. ``palm_reader.auth.last_used_verifier`` - the most recent explicit write,
   i.e. the verifier whose challenge was most likely sent to the provider.
2. ``passwordResetInfo.fullVerifier`` - written together with the reset
   redirect URL.
3. ``palm_reader.auth.code_verifier`` - primary app key.
4. ``supabase.auth.code_verifier`` - the provider client's default key.

All storage key names used by the auth flow live in this module.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Final

from palm_insight.auth.clock import Clock, default_clock, isoformat
from palm_insight.auth.errors import VerifierStoreError
from palm_insight.auth.models import PasswordResetInfo
from palm_insight.auth.pkce import generate_verifier
from palm_insight.auth.storage import KeyValueStorage
from palm_insight.utils.logging import mask_sensitive

_LOG = logging.getLogger("palm-insight.auth.verifiers")

CODE_VERIFIER_KEY: Final[str] = "palm_reader.auth.code_verifier"
LAST_USED_VERIFIER_KEY: Final[str] = "palm_reader.auth.last_used_verifier"
SUPABASE_CODE_VERIFIER_KEY: Final[str] = "supabase.auth.code_verifier"
VERIFIER_TIMESTAMP_KEY: Final[str] = "codeVerifierTimestamp"

PASSWORD_RESET_INFO_KEY: Final[str] = "passwordResetInfo"
PASSWORD_RESET_REQUESTED_KEY: Final[str] = "passwordResetRequested"
PASSWORD_RESET_TIMESTAMP_KEY: Final[str] = "passwordResetTimestamp"
PASSWORD_RESET_EMAIL_KEY: Final[str] = "passwordResetEmail"
RESET_PASSWORD_ERROR_KEY: Final[str] = "resetPasswordError"

_VERIFIER_KEYS: Final[tuple[str, ...]] = (
    CODE_VERIFIER_KEY,
    SUPABASE_CODE_VERIFIER_KEY,
    LAST_USED_VERIFIER_KEY,
)


@dataclass(frozen=True, slots=True)
class VerifierCandidate:
    """One storage location consulted by :meth:`VerifierRepository.resolve_verifier`."""

    source: str
    value: str | None

    @property
    def present(self) -> bool:
        return bool(self.value)


class VerifierRepository:
    """Single owner of every verifier and reset-flow key in a browser namespace."""

    SOURCE_LAST_USED: Final[str] = "last_used"
    SOURCE_RESET_INFO: Final[str] = "reset_info"
    SOURCE_PRIMARY: Final[str] = "primary"
    SOURCE_LEGACY: Final[str] = "legacy"

    def __init__(self, storage: KeyValueStorage, *, clock: Clock = default_clock) -> None:
        self.storage = storage
        self._clock = clock

    # ------------------------------------------------------------------ #
    # write path                                                         #
    # ------------------------------------------------------------------ #
    def store_verifier(self, verifier: str) -> None:
        """Persist *verifier* under every recognised key.

        Raises
        ------
        ValueError
            If *verifier* is empty.
        VerifierStoreError
            If the primary key does not read back the value just written.
        """
        if not verifier:
            raise ValueError("refusing to store an empty code verifier")

        self.storage.set_items({key: verifier for key in _VERIFIER_KEYS})
        if self.storage.get_item(CODE_VERIFIER_KEY) != verifier:
            raise VerifierStoreError("code verifier did not persist")

        try:
            self.storage.set_item(VERIFIER_TIMESTAMP_KEY, isoformat(self._clock()))
        except OSError as exc:
            _LOG.warning("Could not record verifier timestamp: %s", exc)

        _LOG.debug(
            "Stored code verifier %s (length %d) in %d locations",
            mask_sensitive(verifier, 6),
            len(verifier),
            len(_VERIFIER_KEYS),
        )

    def generate_and_store(self) -> str:
        """Create and store a fresh verifier.

        An existing reset record is updated to carry the new verifier; one is
        never created here (see :meth:`store_reset_info`).
        """
        verifier = generate_verifier()
        self.store_verifier(verifier)

        existing = self._read_reset_json()
        if existing is None:
            return verifier
        existing.update(
            {
                "fullVerifier": verifier,
                "verifier": verifier[:10] + "...",
                "verifierLength": len(verifier),
                "timestamp": isoformat(self._clock()),
            }
        )
        self.storage.set_item(PASSWORD_RESET_INFO_KEY, json.dumps(existing))
        return verifier

    def ensure_verifier(self) -> str:
        """Return the resolvable verifier, generating one if none exists."""
        return self.resolve_verifier() or self.generate_and_store()

    def discard_verifiers(self) -> None:
        """Forget the stored verifier once its code has been exchanged."""
        self.storage.remove_items(_VERIFIER_KEYS + (VERIFIER_TIMESTAMP_KEY,))
        data = self._read_reset_json()
        if data and data.pop("fullVerifier", None) is not None:
            self.storage.set_item(PASSWORD_RESET_INFO_KEY, json.dumps(data))

    # ------------------------------------------------------------------ #
    # read path                                                          #
    # ------------------------------------------------------------------ #
    def read_candidates(self) -> list[VerifierCandidate]:
        """Return every verifier location in priority order."""
        reset_info = self.load_reset_info()
        return [
            VerifierCandidate(self.SOURCE_LAST_USED, self.storage.get_item(LAST_USED_VERIFIER_KEY)),
            VerifierCandidate(
                self.SOURCE_RESET_INFO, reset_info.full_verifier if reset_info else None
            ),
            VerifierCandidate(self.SOURCE_PRIMARY, self.storage.get_item(CODE_VERIFIER_KEY)),
            VerifierCandidate(
                self.SOURCE_LEGACY, self.storage.get_item(SUPABASE_CODE_VERIFIER_KEY)
            ),
        ]

    def resolve_verifier(self) -> str | None:
        """Return the first present, non-empty verifier, or ``None``."""
        for candidate in self.read_candidates():
            if candidate.present:
                _LOG.debug("Resolved code verifier from %s", candidate.source)
                return candidate.value
        return None

    # ------------------------------------------------------------------ #
    # password-reset bookkeeping                                         #
    # ------------------------------------------------------------------ #
    def store_reset_info(
        self, email: str, verifier: str, redirect_url: str, code_challenge: str
    ) -> PasswordResetInfo:
        info = PasswordResetInfo(
            email=email,
            timestamp=isoformat(self._clock()),
            full_verifier=verifier,
            verifier=verifier[:10] + "...",
            verifier_length=len(verifier),
            redirect_url=redirect_url,
            challenge_preview=code_challenge[:10] + "...",
        )
        self.storage.set_items(
            {
                PASSWORD_RESET_EMAIL_KEY: email,
                PASSWORD_RESET_INFO_KEY: json.dumps(info.to_json_dict()),
            }
        )
        return info

    def load_reset_info(self) -> PasswordResetInfo | None:
        data = self._read_reset_json()
        return PasswordResetInfo.from_json_dict(data) if data is not None else None

    def mark_reset_requested(self, email: str | None = None) -> None:
        items = {
            PASSWORD_RESET_REQUESTED_KEY: "true",
            PASSWORD_RESET_TIMESTAMP_KEY: isoformat(self._clock()),
        }
        if email:
            items[PASSWORD_RESET_EMAIL_KEY] = email
        self.storage.set_items(items)

    def is_reset_requested(self) -> bool:
        return self.storage.get_item(PASSWORD_RESET_REQUESTED_KEY) == "true"

    def reset_email(self) -> str | None:
        return self.storage.get_item(PASSWORD_RESET_EMAIL_KEY)

    def record_reset_error(self, message: str, code: str, verifier: str | None) -> None:
        """Keep a diagnostic record of the last failed reset-link exchange."""
        record = {
            "error": message,
            "code": code[:5] + "...",
            "hasVerifier": bool(verifier),
            "verifierLength": len(verifier) if verifier else 0,
            "timestamp": isoformat(self._clock()),
        }
        self.storage.set_item(RESET_PASSWORD_ERROR_KEY, json.dumps(record))

    def clear_reset_error(self) -> None:
        self.storage.remove_item(RESET_PASSWORD_ERROR_KEY)

    def clear_reset_info(self) -> None:
        self.storage.remove_items(
            (
                PASSWORD_RESET_INFO_KEY,
                PASSWORD_RESET_EMAIL_KEY,
                PASSWORD_RESET_REQUESTED_KEY,
                PASSWORD_RESET_TIMESTAMP_KEY,
                RESET_PASSWORD_ERROR_KEY,
            )
        )

    # ------------------------------------------------------------------ #
    def _read_reset_json(self) -> dict | None:
        raw = self.storage.get_item(PASSWORD_RESET_INFO_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            _LOG.warning("Ignoring malformed %s record", PASSWORD_RESET_INFO_KEY)
            return None
        if not isinstance(data, dict):
            _LOG.warning("Ignoring non-object %s record", PASSWORD_RESET_INFO_KEY)
            return None
        return data
