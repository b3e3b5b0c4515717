"""Unit tests for exchange-error classification and TokenExchangeClient."""

from __future__ import annotations

import pytest

from palm_insight.auth.errors import (
    AuthApiError,
    AuthRetryableError,
    AuthVerifierMissingError,
    ExchangeErrorKind,
)
from palm_insight.auth.exchange import TokenExchangeClient, classify_provider_error


class _Provider:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls: list[tuple[str, str | None]] = []

    def exchange_code_for_session(self, code, *, redirect_type=None):
        self.calls.append((code, redirect_type))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (AuthVerifierMissingError(), ExchangeErrorKind.VERIFIER_MISMATCH),
        (AuthApiError("flow state expired", 400, code="flow_state_expired"), ExchangeErrorKind.VERIFIER_MISMATCH),
        (AuthApiError("invalid request: both auth code and code verifier should be non-empty", 400), ExchangeErrorKind.VERIFIER_MISMATCH),
        (AuthApiError("rate limited", 429, code="over_request_rate_limit"), ExchangeErrorKind.NETWORK_OR_PROVIDER),
        (AuthRetryableError("timeout"), ExchangeErrorKind.NETWORK_OR_PROVIDER),
    ],
)
def test_classify_provider_error(error, kind) -> None:
    assert classify_provider_error(error).kind is kind


def test_exchange_success() -> None:
    stub = _Provider(outcome=object())
    result = TokenExchangeClient(stub).exchange_code_for_session("c1", redirect_type="recovery")
    assert result.ok
    assert stub.calls == [("c1", "recovery")]


def test_exchange_no_session() -> None:
    result = TokenExchangeClient(_Provider(outcome=None)).exchange_code_for_session("c1")
    assert not result.ok
    assert result.error.kind is ExchangeErrorKind.NO_SESSION
    assert str(result.error) == "Authentication succeeded but no session was created"


def test_exchange_error_payload_is_secret_free() -> None:
    result = TokenExchangeClient(
        _Provider(outcome=AuthRetryableError("Auth provider unreachable"))
    ).exchange_code_for_session("secret-code")
    payload = result.error.to_payload()
    assert payload == {
        "error": "network_or_provider",
        "message": "Auth provider unreachable",
        "retryable": True,
    }
    assert "secret-code" not in str(payload)


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (AuthRetryableError("timeout"), True),
        (AuthApiError("upstream", 503), True),
        (AuthApiError("rate limited", 429, code="over_request_rate_limit"), True),
        (AuthApiError("Invalid authorization code", 400, code="invalid_grant"), False),
        (AuthApiError("Auth provider returned an incomplete session", 200, code="invalid_response"), False),
        (AuthApiError("flow state expired", 400, code="flow_state_expired"), False),
    ],
)
def test_only_transport_and_server_errors_are_retryable(error, retryable) -> None:
    assert classify_provider_error(error).retryable is retryable
