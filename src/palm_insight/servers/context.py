from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable

from cachetools import TTLCache

from palm_insight.auth.exchange import TokenExchangeClient
from palm_insight.auth.provider import SupabaseAuthClient
from palm_insight.auth.router import ConsumedCodes, RedirectRouter
from palm_insight.auth.state_store import AuthStateStore
from palm_insight.auth.storage import DiskStorage, KeyValueStorage
from palm_insight.auth.verifiers import VerifierRepository
from palm_insight.utils.environment import AppSettings

StorageFactory = Callable[[str], KeyValueStorage]
ProviderFactory = Callable[[KeyValueStorage], SupabaseAuthClient]


@dataclass(frozen=True)
class BrowserAuthContext:
    """Everything the auth flows need for one browser (one storage namespace)."""

    browser_id: str
    storage: KeyValueStorage
    repository: VerifierRepository
    provider: SupabaseAuthClient
    auth: AuthStateStore


@dataclass
class AppContext:
    """
    Context built once at application start-up and shared by every request.
    Holds the settings, the process-wide consumed-code memory and a cache of
    per-browser contexts. When configuration failed, ``config_error`` carries
    the message shown to users instead.
    """

    settings: AppSettings | None
    storage_factory: StorageFactory | None = None
    provider_factory: ProviderFactory | None = None
    config_error: str | None = None
    consumed_codes: ConsumedCodes = field(default_factory=ConsumedCodes)
    browser_ttl: int = 1800
    _browsers: TTLCache = field(init=False, repr=False)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._browsers = TTLCache(maxsize=4096, ttl=self.browser_ttl)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "AppContext":
        """Wire disk storage and the GoTrue client from *settings*."""

        def _storage(browser_id: str) -> KeyValueStorage:
            return DiskStorage(settings.storage_dir, browser_id)

        def _provider(storage: KeyValueStorage) -> SupabaseAuthClient:
            return SupabaseAuthClient(
                url=settings.supabase_url,
                api_key=settings.supabase_anon_key,
                storage=storage,
                timeout=(5, settings.http_timeout),
            )

        return cls(
            settings=settings,
            storage_factory=_storage,
            provider_factory=_provider,
            consumed_codes=ConsumedCodes(ttl_seconds=settings.consumed_code_ttl),
        )

    @property
    def configured(self) -> bool:
        return self.config_error is None and self.storage_factory is not None

    def browser(self, browser_id: str) -> BrowserAuthContext:
        """Return (and cache) the context for *browser_id*."""
        with self._lock:
            cached = self._browsers.get(browser_id)
            if cached is not None:
                return cached
            if self.storage_factory is None or self.provider_factory is None:
                raise RuntimeError("application context is not configured")
            storage = self.storage_factory(browser_id)
            repository = VerifierRepository(storage)
            provider = self.provider_factory(storage)
            ctx = BrowserAuthContext(
                browser_id=browser_id,
                storage=storage,
                repository=repository,
                provider=provider,
                auth=AuthStateStore(provider, repository),
            )
            self._browsers[browser_id] = ctx
            return ctx

    def redirect_router(self, browser: BrowserAuthContext) -> RedirectRouter:
        return RedirectRouter(
            browser.repository,
            TokenExchangeClient(browser.provider),
            browser.provider,
            consumed_codes=self.consumed_codes,
            allow_fresh_verifier_fallback=(
                self.settings.verifier_fallback if self.settings else True
            ),
            browser_id=browser.browser_id,
        )
