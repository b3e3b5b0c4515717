"""Settings loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Mapping, Tuple

from palm_insight.auth.errors import ConfigurationError
from palm_insight.auth.storage import default_storage_dir

logger = logging.getLogger("palm-insight.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")

_REQUIRED: Final[Tuple[str, ...]] = ("SUPABASE_URL", "SUPABASE_ANON_KEY")


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(message=f"{key} must be an integer, got {raw!r}") from None


def log_level_from_env(env: Mapping[str, str] | None = None) -> str:
    """Root log level from ``PALM_INSIGHT_LOG_LEVEL``.

    Read apart from :class:`AppSettings` so an unconfigured server still logs
    at the requested level.
    """
    env = os.environ if env is None else env
    return (env.get("PALM_INSIGHT_LOG_LEVEL") or "").strip().upper() or "INFO"


@dataclass(frozen=True)
class AppSettings:
    """Runtime configuration of the web application."""

    supabase_url: str
    supabase_anon_key: str
    site_url: str | None = None
    storage_dir: Path = Path("~/.palm-insight/storage")
    cookie_name: str = "palm_insight_browser"
    cookie_secure: bool = False
    verifier_fallback: bool = True
    consumed_code_ttl: int = 3600
    http_timeout: int = 20

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "AppSettings":
        """Build settings from *env* (defaults to :data:`os.environ`).

        Raises
        ------
        ConfigurationError
            If the auth provider URL or key is missing. There are no built-in
            fallbacks for either.
        """
        env = os.environ if env is None else env
        missing = [key for key in _REQUIRED if not (env.get(key) or "").strip()]
        if missing:
            raise ConfigurationError(missing)

        site_url = (env.get("PALM_INSIGHT_SITE_URL") or "").strip().rstrip("/") or None
        storage_dir = (
            Path(env["PALM_INSIGHT_STORAGE_DIR"]).expanduser()
            if env.get("PALM_INSIGHT_STORAGE_DIR")
            else default_storage_dir()
        )
        settings = cls(
            supabase_url=env["SUPABASE_URL"].strip().rstrip("/"),
            supabase_anon_key=env["SUPABASE_ANON_KEY"].strip(),
            site_url=site_url,
            storage_dir=storage_dir,
            cookie_name=env.get("PALM_INSIGHT_COOKIE_NAME") or "palm_insight_browser",
            cookie_secure=_truthy(env.get("PALM_INSIGHT_COOKIE_SECURE")),
            verifier_fallback=_truthy(env.get("PALM_INSIGHT_VERIFIER_FALLBACK"), default=True),
            consumed_code_ttl=_int(env, "PALM_INSIGHT_CONSUMED_CODE_TTL", 3600),
            http_timeout=_int(env, "PALM_INSIGHT_HTTP_TIMEOUT", 20),
        )
        logger.info(
            "Auth provider %s, storage at %s, verifier fallback %s",
            settings.supabase_url,
            settings.storage_dir,
            "ENABLED" if settings.verifier_fallback else "DISABLED",
        )
        return settings
