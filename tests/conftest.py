"""Shared fixtures: a scripted GoTrue HTTP double and in-memory storage."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from palm_insight.auth.provider import SupabaseAuthClient
from palm_insight.auth.storage import MemoryStorage
from palm_insight.auth.verifiers import VerifierRepository

SUPABASE_URL = "https://project.supabase.test"
ANON_KEY = "anon-key-123"
FROZEN_NOW = 1_700_000_000.0  # 2023-11-14T22:13:20Z


# --------------------------------------------------------------------------- #
# pytest hooks                                                                #
# --------------------------------------------------------------------------- #
def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' always run because they stub every external
    call.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)


# --------------------------------------------------------------------------- #
# GoTrue double                                                               #
# --------------------------------------------------------------------------- #
def make_response(status: int = 200, payload: Any = None) -> SimpleNamespace:
    """Minimal stand-in for :class:`requests.Response`."""
    body = json.dumps(payload).encode() if payload is not None else b""
    return SimpleNamespace(
        ok=200 <= status < 400,
        status_code=status,
        content=body,
        text=body.decode(),
        json=lambda: json.loads(body),
    )


def token_payload(
    access_token: str = "access-1",
    *,
    refresh_token: str = "refresh-1",
    email: str = "ada@example.com",
    name: str | None = None,
    expires_in: int = 3600,
) -> dict[str, Any]:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "user": {
            "id": "user-1",
            "email": email,
            "user_metadata": {"full_name": name} if name else {},
        },
    }


class FakeGoTrue:
    """Scripted replacement for the ``requests.Session`` used by the client.

    Responses are queued per ``(method, path, grant_type)``; the last queued
    response for a key is reused once the queue is down to one entry.
    Unscripted calls answer 404.
    """

    def __init__(self) -> None:
        self.calls: list[SimpleNamespace] = []
        self._routes: dict[tuple[str, str, str | None], list[Any]] = {}

    def queue(self, method: str, path: str, response: Any, *, grant_type: str | None = None) -> None:
        self._routes.setdefault((method, path, grant_type), []).append(response)

    def request(self, method, url, *, headers=None, params=None, json=None, timeout=None):
        path = url.split("/auth/v1/", 1)[1]
        params = dict(params or {})
        grant_type = params.get("grant_type")
        self.calls.append(
            SimpleNamespace(method=method, path=path, params=params, json=json, headers=headers or {})
        )
        queued = self._routes.get((method, path, grant_type))
        if not queued:
            return make_response(404, {"msg": f"no fake for {method} {path}"})
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, Exception):
            raise response
        return response

    def calls_to(self, path: str, grant_type: str | None = None) -> list[SimpleNamespace]:
        return [
            c
            for c in self.calls
            if c.path == path and (grant_type is None or c.params.get("grant_type") == grant_type)
        ]


# --------------------------------------------------------------------------- #
# fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> Callable[[], float]:
    return lambda: FROZEN_NOW


@pytest.fixture
def fake_gotrue() -> FakeGoTrue:
    return FakeGoTrue()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def repository(storage: MemoryStorage, clock) -> VerifierRepository:
    return VerifierRepository(storage, clock=clock)


@pytest.fixture
def provider(storage: MemoryStorage, fake_gotrue: FakeGoTrue, clock) -> SupabaseAuthClient:
    return SupabaseAuthClient(
        url=SUPABASE_URL, api_key=ANON_KEY, storage=storage, http=fake_gotrue, clock=clock
    )


@pytest.fixture
def gotrue_response() -> Callable[..., SimpleNamespace]:
    return make_response


@pytest.fixture
def session_payload() -> Callable[..., dict[str, Any]]:
    return token_payload
