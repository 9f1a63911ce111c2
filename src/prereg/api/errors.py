"""Structured failures and the helpers that produce them.

Every remote failure is normalised into an ``ApiError`` at the service
boundary: backend codes (PostgreSQL / PostgREST) and transport exceptions
are mapped onto a small set of error codes with localized messages.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Literal, Optional, Tuple, TypeVar

import httpx
from pydantic import BaseModel

from ..backend.base import BackendError
from ..util.error import log_error
from ..util.log import Log

log = Log.create({"service": "api.errors"})

T = TypeVar("T")

Language = Literal["ko", "en", "ja"]
DEFAULT_LANGUAGE: Language = "ko"


class ErrorCode(str, Enum):
    """Standard error codes."""
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    EMAIL_DUPLICATE = "EMAIL_DUPLICATE"
    NICKNAME_DUPLICATE = "NICKNAME_DUPLICATE"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_REFERRAL_CODE = "INVALID_REFERRAL_CODE"
    SELF_REFERRAL_NOT_ALLOWED = "SELF_REFERRAL_NOT_ALLOWED"
    REFERRAL_LIMIT_EXCEEDED = "REFERRAL_LIMIT_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_MESSAGES: Dict[ErrorCode, Dict[str, str]] = {
    ErrorCode.UNAUTHORIZED: {
        "ko": "로그인이 필요합니다",
        "en": "Login required",
        "ja": "ログインが必要です",
    },
    ErrorCode.FORBIDDEN: {
        "ko": "권한이 없습니다",
        "en": "Access forbidden",
        "ja": "アクセス権限がありません",
    },
    ErrorCode.VALIDATION_FAILED: {
        "ko": "입력값 검증에 실패했습니다",
        "en": "Validation failed",
        "ja": "入力値の検証に失敗しました",
    },
    ErrorCode.INVALID_INPUT: {
        "ko": "잘못된 입력값입니다",
        "en": "Invalid input",
        "ja": "無効な入力値です",
    },
    ErrorCode.EMAIL_DUPLICATE: {
        "ko": "이미 사용 중인 이메일입니다",
        "en": "Email already in use",
        "ja": "すでに使用されているメールアドレスです",
    },
    ErrorCode.NICKNAME_DUPLICATE: {
        "ko": "이미 사용 중인 닉네임입니다",
        "en": "Nickname already in use",
        "ja": "すでに使用されているニックネームです",
    },
    ErrorCode.NOT_FOUND: {
        "ko": "요청한 리소스를 찾을 수 없습니다",
        "en": "Resource not found",
        "ja": "リソースが見つかりません",
    },
    ErrorCode.ALREADY_EXISTS: {
        "ko": "이미 존재하는 데이터입니다",
        "en": "Resource already exists",
        "ja": "すでに存在するデータです",
    },
    ErrorCode.INVALID_REFERRAL_CODE: {
        "ko": "유효하지 않은 추천 코드입니다",
        "en": "Invalid referral code",
        "ja": "無効な紹介コードです",
    },
    ErrorCode.SELF_REFERRAL_NOT_ALLOWED: {
        "ko": "자기 자신을 추천할 수 없습니다",
        "en": "Self-referral not allowed",
        "ja": "自己紹介はできません",
    },
    ErrorCode.REFERRAL_LIMIT_EXCEEDED: {
        "ko": "추천 가능 횟수를 초과했습니다",
        "en": "Referral limit exceeded",
        "ja": "紹介可能回数を超えました",
    },
    ErrorCode.NETWORK_ERROR: {
        "ko": "네트워크 오류가 발생했습니다",
        "en": "Network error occurred",
        "ja": "ネットワークエラーが発生しました",
    },
    ErrorCode.SERVER_ERROR: {
        "ko": "서버 오류가 발생했습니다",
        "en": "Server error occurred",
        "ja": "サーバーエラーが発生しました",
    },
    ErrorCode.TIMEOUT: {
        "ko": "요청 시간이 초과되었습니다",
        "en": "Request timeout",
        "ja": "リクエストタイムアウト",
    },
    ErrorCode.UNKNOWN_ERROR: {
        "ko": "알 수 없는 오류가 발생했습니다",
        "en": "Unknown error occurred",
        "ja": "不明なエラーが発生しました",
    },
}

# Field-specific messages for check violations
FIELD_MESSAGES: Dict[str, Dict[str, str]] = {
    "email": {
        "ko": "올바른 이메일 형식이 아닙니다",
        "en": "Invalid email format",
        "ja": "メールアドレスの形式が正しくありません",
    },
    "nickname": {
        "ko": "닉네임은 2자 이상 50자 이하여야 합니다",
        "en": "Nickname must be 2 to 50 characters",
        "ja": "ニックネームは2文字以上50文字以下である必要があります",
    },
}

TRANSIENT_CODES = {ErrorCode.NETWORK_ERROR, ErrorCode.TIMEOUT, ErrorCode.SERVER_ERROR}


class ApiError(BaseModel):
    """Structured failure: a value, never raised."""
    code: str
    message: str
    field: Optional[str] = None
    details: Any = None


def message_for(code: ErrorCode | str, language: str = DEFAULT_LANGUAGE) -> str:
    """Localized default message for an error code."""
    try:
        messages = ERROR_MESSAGES[ErrorCode(code)]
    except ValueError:
        messages = ERROR_MESSAGES[ErrorCode.UNKNOWN_ERROR]
    return messages.get(language) or messages[DEFAULT_LANGUAGE]


def create_api_error(
    code: ErrorCode | str,
    *,
    language: str = DEFAULT_LANGUAGE,
    message: Optional[str] = None,
    field: Optional[str] = None,
    details: Any = None,
) -> ApiError:
    """Build an ``ApiError`` with the localized default message."""
    value = code.value if isinstance(code, ErrorCode) else str(code)
    return ApiError(
        code=value,
        message=message or message_for(code, language),
        field=field,
        details=details,
    )


def handle_backend_error(error: Optional[BackendError], language: str = DEFAULT_LANGUAGE) -> ApiError:
    """Map a backend error code onto an ``ApiError``."""
    if error is None:
        return create_api_error(ErrorCode.UNKNOWN_ERROR, language=language)

    text = error.message or ""
    if error.code == "23505":  # unique_violation
        if "email" in text:
            return create_api_error(ErrorCode.EMAIL_DUPLICATE, language=language, field="email", details=error.details)
        if "nickname" in text:
            return create_api_error(ErrorCode.NICKNAME_DUPLICATE, language=language, field="nickname", details=error.details)
        return create_api_error(ErrorCode.ALREADY_EXISTS, language=language, details=error.details)

    if error.code == "23503":  # foreign_key_violation
        return create_api_error(ErrorCode.INVALID_REFERRAL_CODE, language=language, details=error.details)

    if error.code == "23514":  # check_violation
        for field in ("email", "nickname"):
            if field in text:
                return create_api_error(
                    ErrorCode.INVALID_INPUT,
                    language=language,
                    message=FIELD_MESSAGES[field].get(language),
                    field=field,
                    details=error.details,
                )
        if "self" in text:
            return create_api_error(ErrorCode.SELF_REFERRAL_NOT_ALLOWED, language=language, details=error.details)
        return create_api_error(ErrorCode.VALIDATION_FAILED, language=language, details=error.details)

    if error.code == "PGRST116":  # no rows returned
        return create_api_error(ErrorCode.NOT_FOUND, language=language, details=error.details)

    return create_api_error(
        ErrorCode.SERVER_ERROR,
        language=language,
        message=text or None,
        details=error.details,
    )


def handle_network_error(error: BaseException, language: str = DEFAULT_LANGUAGE) -> ApiError:
    """Map a transport exception onto an ``ApiError``."""
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return create_api_error(ErrorCode.TIMEOUT, language=language, details=str(error))
    if isinstance(error, httpx.TransportError):
        return create_api_error(ErrorCode.NETWORK_ERROR, language=language, details=str(error))
    return create_api_error(ErrorCode.UNKNOWN_ERROR, language=language, details=str(error))


def to_api_error(error: BaseException, language: str = DEFAULT_LANGUAGE) -> ApiError:
    """Normalise any exception raised below the service boundary."""
    if isinstance(error, BackendError):
        return handle_backend_error(error, language)
    return handle_network_error(error, language)


async def safe_call(
    fn: Callable[[], Awaitable[T]],
    language: str = DEFAULT_LANGUAGE,
) -> Tuple[Optional[T], Optional[ApiError]]:
    """Run ``fn`` and return ``(result, None)`` or ``(None, error)``."""
    try:
        return await fn(), None
    except Exception as e:
        log_error(e, "safe_call")
        return None, to_api_error(e, language)


def create_validation_error(field: str, message: str) -> ApiError:
    return ApiError(code=ErrorCode.VALIDATION_FAILED.value, message=message, field=field)


def combine_validation_errors(errors: Iterable[ApiError], language: str = DEFAULT_LANGUAGE) -> ApiError:
    """Fold several field errors into one."""
    errors = list(errors)
    fields = ", ".join(e.field for e in errors if e.field)
    messages = " ".join(e.message for e in errors)
    return ApiError(
        code=ErrorCode.VALIDATION_FAILED.value,
        message=messages or message_for(ErrorCode.VALIDATION_FAILED, language),
        field=fields or None,
        details=[e.model_dump() for e in errors],
    )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    *,
    should_retry: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """Call ``fn`` until it succeeds, at most ``max_retries`` extra times.

    The wait before retry ``n`` is ``delay * n`` seconds. The last exception
    is re-raised once retries are exhausted, or at once when
    ``should_retry`` rejects it.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= max_retries:
                raise
            if should_retry is not None and not should_retry(e):
                raise
            attempt += 1
            log.warn("retrying after failure", {
                "attempt": attempt,
                "max_retries": max_retries,
                "delay": delay * attempt,
                "error": e,
            })
            await asyncio.sleep(delay * attempt)


def is_rate_limit_error(error: ApiError) -> bool:
    text = error.message.lower()
    return error.code == "PGRST107" or "rate limit" in text or "too many requests" in text


def is_transient_error(error: ApiError) -> bool:
    """Whether retrying the failed call may succeed."""
    return error.code in {code.value for code in TRANSIENT_CODES} or is_rate_limit_error(error)
