"""
Unit tests for VerifierRepository.

Coverage:
* Redundant writes land on every recognised key (+ timestamp)
* Read priority: last-used > reset info > primary > legacy
* Malformed reset records are skipped, not fatal
* Reset-flow bookkeeping
"""

from __future__ import annotations

import json

import pytest

from palm_insight.auth.errors import VerifierStoreError
from palm_insight.auth.storage import MemoryStorage
from palm_insight.auth.verifiers import (
    CODE_VERIFIER_KEY,
    LAST_USED_VERIFIER_KEY,
    PASSWORD_RESET_EMAIL_KEY,
    PASSWORD_RESET_INFO_KEY,
    PASSWORD_RESET_REQUESTED_KEY,
    RESET_PASSWORD_ERROR_KEY,
    SUPABASE_CODE_VERIFIER_KEY,
    VERIFIER_TIMESTAMP_KEY,
    VerifierRepository,
)

V1 = "a" * 128
V2 = "b" * 128
V3 = "c" * 128


# --------------------------------------------------------------------------- #
# write path                                                                  #
# --------------------------------------------------------------------------- #
def test_store_then_resolve_round_trip(repository: VerifierRepository, storage: MemoryStorage) -> None:
    repository.store_verifier(V1)

    assert repository.resolve_verifier() == V1
    for key in (CODE_VERIFIER_KEY, SUPABASE_CODE_VERIFIER_KEY, LAST_USED_VERIFIER_KEY):
        assert storage.get_item(key) == V1
    assert storage.get_item(VERIFIER_TIMESTAMP_KEY) == "2023-11-14T22:13:20.000Z"


def test_store_is_idempotent(repository: VerifierRepository, storage: MemoryStorage) -> None:
    repository.store_verifier(V1)
    first = storage.snapshot()
    repository.store_verifier(V1)
    assert storage.snapshot() == first


def test_store_rejects_empty(repository: VerifierRepository) -> None:
    with pytest.raises(ValueError):
        repository.store_verifier("")


def test_store_detects_failed_persist(clock) -> None:
    class _Forgetful(MemoryStorage):
        def set_items(self, items):  # writes silently dropped
            pass

    repo = VerifierRepository(_Forgetful(), clock=clock)
    with pytest.raises(VerifierStoreError):
        repo.store_verifier(V1)


def test_generate_and_store_leaves_reset_info_alone_outside_reset(
    repository: VerifierRepository, storage: MemoryStorage
) -> None:
    verifier = repository.generate_and_store()

    assert len(verifier) == 128
    assert repository.resolve_verifier() == verifier
    assert storage.get_item(PASSWORD_RESET_INFO_KEY) is None


def test_ensure_verifier_on_fresh_browser_creates_no_reset_info(
    repository: VerifierRepository, storage: MemoryStorage
) -> None:
    repository.ensure_verifier()
    assert repository.load_reset_info() is None


def test_generate_and_store_mirrors_into_existing_reset_info(
    repository: VerifierRepository, storage: MemoryStorage
) -> None:
    repository.store_reset_info("ada@example.com", V1, "https://app.test/reset-password", "chal")
    verifier = repository.generate_and_store()

    assert verifier != V1
    info = json.loads(storage.get_item(PASSWORD_RESET_INFO_KEY))
    assert info["fullVerifier"] == verifier
    assert info["verifierLength"] == 128
    assert info["verifier"] == verifier[:10] + "..."


def test_ensure_verifier_keeps_existing(repository: VerifierRepository) -> None:
    repository.store_verifier(V1)
    assert repository.ensure_verifier() == V1


def test_ensure_verifier_generates_when_empty(repository: VerifierRepository) -> None:
    verifier = repository.ensure_verifier()
    assert repository.resolve_verifier() == verifier


def test_discard_verifiers(repository: VerifierRepository, storage: MemoryStorage) -> None:
    repository.store_verifier(V1)
    repository.discard_verifiers()
    for key in (CODE_VERIFIER_KEY, SUPABASE_CODE_VERIFIER_KEY, LAST_USED_VERIFIER_KEY):
        assert storage.get_item(key) is None


# --------------------------------------------------------------------------- #
# read priority                                                               #
# --------------------------------------------------------------------------- #
def test_last_used_wins_over_primary(clock) -> None:
    storage = MemoryStorage({CODE_VERIFIER_KEY: V1, LAST_USED_VERIFIER_KEY: V2})
    assert VerifierRepository(storage, clock=clock).resolve_verifier() == V2


def test_reset_info_wins_over_primary_and_legacy(clock) -> None:
    storage = MemoryStorage(
        {
            CODE_VERIFIER_KEY: V1,
            SUPABASE_CODE_VERIFIER_KEY: V3,
            PASSWORD_RESET_INFO_KEY: json.dumps({"fullVerifier": V2, "timestamp": "t"}),
        }
    )
    assert VerifierRepository(storage, clock=clock).resolve_verifier() == V2


def test_legacy_key_is_last_resort(clock) -> None:
    storage = MemoryStorage({SUPABASE_CODE_VERIFIER_KEY: V3})
    repo = VerifierRepository(storage, clock=clock)
    assert repo.resolve_verifier() == V3
    sources = [c.source for c in repo.read_candidates()]
    assert sources == ["last_used", "reset_info", "primary", "legacy"]


def test_empty_values_are_skipped(clock) -> None:
    storage = MemoryStorage({LAST_USED_VERIFIER_KEY: "", CODE_VERIFIER_KEY: V1})
    assert VerifierRepository(storage, clock=clock).resolve_verifier() == V1


@pytest.mark.parametrize("raw", ["{broken", "[1, 2]", '"just a string"'])
def test_malformed_reset_info_is_skipped(raw: str, clock) -> None:
    storage = MemoryStorage({PASSWORD_RESET_INFO_KEY: raw, CODE_VERIFIER_KEY: V1})
    repo = VerifierRepository(storage, clock=clock)
    assert repo.load_reset_info() is None
    assert repo.resolve_verifier() == V1


def test_nothing_stored_resolves_to_none(repository: VerifierRepository) -> None:
    assert repository.resolve_verifier() is None


# --------------------------------------------------------------------------- #
# reset bookkeeping                                                           #
# --------------------------------------------------------------------------- #
def test_reset_info_and_flags(repository: VerifierRepository, storage: MemoryStorage) -> None:
    info = repository.store_reset_info(
        "ada@example.com", V1, "https://app.test/reset-password", "challengechallenge"
    )
    repository.mark_reset_requested("ada@example.com")

    assert info.challenge_preview == "challengec..."
    loaded = repository.load_reset_info()
    assert loaded is not None
    assert loaded.full_verifier == V1
    assert loaded.redirect_url == "https://app.test/reset-password"
    assert repository.is_reset_requested() is True
    assert repository.reset_email() == "ada@example.com"
    assert storage.get_item(PASSWORD_RESET_REQUESTED_KEY) == "true"


def test_record_reset_error_never_stores_full_code(
    repository: VerifierRepository, storage: MemoryStorage
) -> None:
    repository.record_reset_error("bad verifier", "abcdefghij", V1)
    record = json.loads(storage.get_item(RESET_PASSWORD_ERROR_KEY))
    assert record["code"] == "abcde..."
    assert record["hasVerifier"] is True
    assert V1 not in storage.get_item(RESET_PASSWORD_ERROR_KEY)


def test_clear_reset_info(repository: VerifierRepository, storage: MemoryStorage) -> None:
    repository.store_reset_info("ada@example.com", V1, "https://app.test/r", "chal")
    repository.mark_reset_requested()
    repository.record_reset_error("x", "code1", None)
    repository.clear_reset_info()

    for key in (
        PASSWORD_RESET_INFO_KEY,
        PASSWORD_RESET_EMAIL_KEY,
        PASSWORD_RESET_REQUESTED_KEY,
        RESET_PASSWORD_ERROR_KEY,
    ):
        assert storage.get_item(key) is None
    assert repository.is_reset_requested() is False


def test_discard_verifiers_drops_reset_copy(repository: VerifierRepository) -> None:
    repository.store_reset_info("ada@example.com", V1, "https://app.test/reset-password", "chal")
    repository.store_verifier(V1)
    repository.discard_verifiers()
    assert repository.resolve_verifier() is None
    assert repository.load_reset_info() is not None
