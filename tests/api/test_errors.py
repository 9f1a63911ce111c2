from __future__ import annotations

import httpx
import pytest

from prereg.api.errors import (
    ApiError,
    ErrorCode,
    combine_validation_errors,
    create_api_error,
    create_validation_error,
    handle_backend_error,
    handle_network_error,
    is_rate_limit_error,
    is_transient_error,
    message_for,
    safe_call,
    with_retry,
)
from prereg.backend.base import BackendError


def test_messages_exist_for_every_code_and_language() -> None:
    for code in ErrorCode:
        for language in ("ko", "en", "ja"):
            assert message_for(code, language)


def test_unknown_language_falls_back_to_korean() -> None:
    assert message_for(ErrorCode.NOT_FOUND, "fr") == message_for(ErrorCode.NOT_FOUND, "ko")


@pytest.mark.parametrize(
    ("message", "code", "field"),
    [
        ('duplicate key value violates unique constraint "users_email_key"', "EMAIL_DUPLICATE", "email"),
        ('duplicate key value violates unique constraint "users_nickname_key"', "NICKNAME_DUPLICATE", "nickname"),
        ('duplicate key value violates unique constraint "referrals_referrer_id_referee_id_key"', "ALREADY_EXISTS", None),
    ],
)
def test_unique_violation_mapping(message: str, code: str, field: str | None) -> None:
    error = handle_backend_error(BackendError("23505", message), "en")

    assert error.code == code
    assert error.field == field


def test_other_backend_codes() -> None:
    assert handle_backend_error(BackendError("23503", "fk")).code == "INVALID_REFERRAL_CODE"
    assert handle_backend_error(BackendError("PGRST116", "no rows")).code == "NOT_FOUND"

    check = handle_backend_error(BackendError("23514", 'violates check constraint "users_email_check"'), "en")
    assert check.code == "INVALID_INPUT"
    assert check.field == "email"
    assert check.message == "Invalid email format"

    generic = handle_backend_error(BackendError("23514", 'violates check constraint "other"'))
    assert generic.code == "VALIDATION_FAILED"

    server = handle_backend_error(BackendError("XX000", "disk full"))
    assert server.code == "SERVER_ERROR"
    assert server.message == "disk full"

    assert handle_backend_error(None).code == "UNKNOWN_ERROR"


def test_network_error_mapping() -> None:
    request = httpx.Request("GET", "https://example.invalid")

    assert handle_network_error(httpx.ReadTimeout("slow", request=request)).code == "TIMEOUT"
    assert handle_network_error(httpx.ConnectError("down", request=request)).code == "NETWORK_ERROR"
    assert handle_network_error(ValueError("odd")).code == "UNKNOWN_ERROR"


def test_create_api_error_uses_localized_default() -> None:
    error = create_api_error(ErrorCode.EMAIL_DUPLICATE, language="ja", field="email")

    assert error.code == "EMAIL_DUPLICATE"
    assert error.message == "すでに使用されているメールアドレスです"
    assert error.field == "email"


def test_combine_validation_errors() -> None:
    combined = combine_validation_errors([
        create_validation_error("email", "bad email."),
        create_validation_error("nickname", "bad nickname."),
    ])

    assert combined.code == "VALIDATION_FAILED"
    assert combined.field == "email, nickname"
    assert combined.message == "bad email. bad nickname."
    assert len(combined.details) == 2


def test_transient_and_rate_limit_classification() -> None:
    assert is_transient_error(ApiError(code="NETWORK_ERROR", message="x"))
    assert is_transient_error(ApiError(code="SERVER_ERROR", message="x"))
    assert is_transient_error(ApiError(code="X", message="Too Many Requests"))
    assert is_rate_limit_error(ApiError(code="X", message="rate limit reached"))
    assert not is_transient_error(ApiError(code="EMAIL_DUPLICATE", message="x"))


@pytest.mark.anyio
async def test_safe_call_returns_pairs() -> None:
    async def ok() -> int:
        return 1

    async def fails() -> int:
        raise BackendError("PGRST116", "no rows")

    assert await safe_call(ok) == (1, None)
    result, error = await safe_call(fails)
    assert result is None
    assert error.code == "NOT_FOUND"


@pytest.mark.anyio
async def test_with_retry_retries_then_succeeds(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("prereg.api.errors.asyncio.sleep", fake_sleep)
    attempts: list[int] = []

    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("flaky")
        return "ok"

    assert await with_retry(flaky, max_retries=3, delay=0.5) == "ok"
    assert len(attempts) == 3
    assert delays == [0.5, 1.0]


@pytest.mark.anyio
async def test_with_retry_reraises_last_error(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    async def fake_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr("prereg.api.errors.asyncio.sleep", fake_sleep)
    attempts: list[int] = []

    async def always() -> None:
        attempts.append(1)
        raise RuntimeError(f"attempt {len(attempts)}")

    with pytest.raises(RuntimeError, match="attempt 3"):
        await with_retry(always, max_retries=2, delay=1.0)
    assert len(attempts) == 3


@pytest.mark.anyio
async def test_with_retry_stops_when_predicate_rejects() -> None:
    attempts: list[int] = []

    async def conflict() -> None:
        attempts.append(1)
        raise BackendError("23505", "duplicate")

    with pytest.raises(BackendError):
        await with_retry(conflict, max_retries=5, delay=0, should_retry=lambda e: False)
    assert len(attempts) == 1
