"""Configuration for integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def supabase_env(tmp_path: Path, monkeypatch) -> Path:
    """Point the app at a fake provider and a throw-away storage root."""
    storage_dir = tmp_path / "storage"
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key-123")
    monkeypatch.setenv("PALM_INSIGHT_SITE_URL", "http://testserver")
    monkeypatch.setenv("PALM_INSIGHT_STORAGE_DIR", str(storage_dir))
    return storage_dir
