"""Registration form validation."""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from .errors import DEFAULT_LANGUAGE, ApiError, ErrorCode
from .models import Language, Playstyle

NICKNAME_PATTERN = re.compile(r"^[a-zA-Z0-9가-힣_-]+$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^[0-9\-+() ]+$")
REFERRAL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6,12}$")

FORM_MESSAGES: Dict[str, Dict[str, str]] = {
    "nickname_too_short": {
        "ko": "닉네임은 최소 2자 이상이어야 합니다",
        "en": "Nickname must be at least 2 characters",
        "ja": "ニックネームは2文字以上である必要があります",
    },
    "nickname_too_long": {
        "ko": "닉네임은 최대 50자까지 가능합니다",
        "en": "Nickname must be at most 50 characters",
        "ja": "ニックネームは50文字以内である必要があります",
    },
    "nickname_pattern": {
        "ko": "닉네임은 영문, 숫자, 한글, _, - 만 사용 가능합니다",
        "en": "Nickname may only contain letters, digits, Hangul, _ and -",
        "ja": "ニックネームには英数字、ハングル、_、- のみ使用できます",
    },
    "email_format": {
        "ko": "올바른 이메일 형식이 아닙니다",
        "en": "Invalid email format",
        "ja": "メールアドレスの形式が正しくありません",
    },
    "phone_format": {
        "ko": "올바른 전화번호 형식이 아닙니다",
        "en": "Invalid phone number format",
        "ja": "電話番号の形式が正しくありません",
    },
    "playstyle": {
        "ko": "플레이 스타일을 선택해주세요",
        "en": "Please choose a playstyle",
        "ja": "プレイスタイルを選択してください",
    },
    "referral_code_format": {
        "ko": "올바른 추천 코드 형식이 아닙니다",
        "en": "Invalid referral code format",
        "ja": "紹介コードの形式が正しくありません",
    },
    "language": {
        "ko": "지원하지 않는 언어입니다",
        "en": "Unsupported language",
        "ja": "サポートされていない言語です",
    },
    "required": {
        "ko": "필수 입력 항목입니다",
        "en": "This field is required",
        "ja": "必須項目です",
    },
}

# Pydantic's own error types for the fields that use built-in checks
_BUILTIN_MESSAGES = {
    "playstyle": "playstyle",
    "language": "language",
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RegistrationForm(BaseModel):
    """Pre-registration form input."""

    nickname: str
    email: str
    phone: Optional[str] = None
    playstyle: Optional[Playstyle] = None
    referred_by_code: Optional[str] = Field(None, alias="referredByCode")
    language: Language = "ko"

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @field_validator("nickname")
    @classmethod
    def _check_nickname(cls, value: str) -> str:
        if len(value) < 2:
            raise PydanticCustomError("nickname_too_short", "nickname too short")
        if len(value) > 50:
            raise PydanticCustomError("nickname_too_long", "nickname too long")
        if not NICKNAME_PATTERN.match(value):
            raise PydanticCustomError("nickname_pattern", "nickname has invalid characters")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not EMAIL_PATTERN.match(value):
            raise PydanticCustomError("email_format", "invalid email")
        return value.lower()

    @field_validator("phone", "playstyle", "referred_by_code", mode="before")
    @classmethod
    def _optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not PHONE_PATTERN.match(value):
            raise PydanticCustomError("phone_format", "invalid phone number")
        return value

    @field_validator("referred_by_code")
    @classmethod
    def _check_referral_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.upper()
        if not REFERRAL_CODE_PATTERN.match(value):
            raise PydanticCustomError("referral_code_format", "invalid referral code")
        return value


def _message(error: Mapping[str, Any], field: Optional[str], language: str) -> str:
    key = error.get("type", "")
    if key not in FORM_MESSAGES:
        if key == "missing":
            key = "required"
        else:
            key = _BUILTIN_MESSAGES.get(field or "", "")
    messages = FORM_MESSAGES.get(key)
    if messages is None:
        return str(error.get("msg", ""))
    return messages.get(language) or messages[DEFAULT_LANGUAGE]


def _field_name(loc: Tuple[Any, ...]) -> Optional[str]:
    if not loc:
        return None
    name = str(loc[0])
    return "referred_by_code" if name == "referredByCode" else name


def validate_registration(
    data: Mapping[str, Any] | RegistrationForm,
    language: str = DEFAULT_LANGUAGE,
) -> Tuple[Optional[RegistrationForm], Optional[ApiError]]:
    """Validate form input.

    Returns ``(form, None)`` or ``(None, error)`` where ``error`` describes
    the first failing field and carries every failure in ``details``.
    """
    if isinstance(data, RegistrationForm):
        data = data.model_dump()
    try:
        return RegistrationForm.model_validate(dict(data)), None
    except ValidationError as e:
        errors = e.errors(include_url=False, include_input=False)
        first = errors[0]
        field = _field_name(tuple(first.get("loc", ())))
        details = [
            {"field": _field_name(tuple(err.get("loc", ()))), "type": err.get("type"), "message": err.get("msg")}
            for err in errors
        ]
        return None, ApiError(
            code=ErrorCode.VALIDATION_FAILED.value,
            message=_message(first, field, language),
            field=field,
            details=details,
        )
