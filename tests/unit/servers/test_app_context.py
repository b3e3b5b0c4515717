"""Unit tests for AppContext wiring and request helpers."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from palm_insight.auth.router import ConsumedCodes
from palm_insight.auth.storage import DiskStorage
from palm_insight.servers.context import AppContext
from palm_insight.servers.dependencies import site_origin
from palm_insight.utils.environment import AppSettings


@pytest.fixture()
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        supabase_url="https://project.supabase.test",
        supabase_anon_key="anon",
        storage_dir=tmp_path,
        verifier_fallback=False,
        consumed_code_ttl=120,
    )


def test_from_settings_wires_disk_storage(settings: AppSettings, tmp_path: Path) -> None:
    ctx = AppContext.from_settings(settings)
    browser = ctx.browser("browser-1")

    assert ctx.configured
    assert isinstance(browser.storage, DiskStorage)
    assert browser.storage.base_dir == tmp_path
    assert browser.provider.auth_url == "https://project.supabase.test/auth/v1"
    assert browser.repository.storage is browser.storage


def test_browser_contexts_are_cached_per_id(settings: AppSettings) -> None:
    ctx = AppContext.from_settings(settings)
    assert ctx.browser("a") is ctx.browser("a")
    assert ctx.browser("a") is not ctx.browser("b")


def test_redirect_router_shares_consumed_codes(settings: AppSettings) -> None:
    ctx = AppContext.from_settings(settings)
    browser = ctx.browser("a")
    first = ctx.redirect_router(browser)
    second = ctx.redirect_router(browser)

    assert first.consumed_codes is second.consumed_codes is ctx.consumed_codes
    assert first.allow_fresh_verifier_fallback is False


def test_unconfigured_context_refuses_browsers() -> None:
    ctx = AppContext(settings=None, config_error="missing SUPABASE_URL")
    assert not ctx.configured
    assert isinstance(ctx.consumed_codes, ConsumedCodes)
    with pytest.raises(RuntimeError):
        ctx.browser("a")


def _request(ctx: AppContext) -> SimpleNamespace:
    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(app_context=ctx)),
        url=SimpleNamespace(scheme="http", netloc="localhost:8000"),
    )


def test_site_origin_prefers_configured_url(settings: AppSettings) -> None:
    configured = AppContext.from_settings(
        AppSettings(supabase_url="u", supabase_anon_key="k", site_url="https://palm.example.com")
    )
    assert site_origin(_request(configured)) == "https://palm.example.com"
    assert site_origin(_request(AppContext.from_settings(settings))) == "http://localhost:8000"
