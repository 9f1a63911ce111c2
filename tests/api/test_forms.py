from __future__ import annotations

from prereg.api.forms import RegistrationForm, validate_registration


def test_valid_form_is_normalised() -> None:
    form, error = validate_registration({
        "email": "  Player@Example.COM ",
        "nickname": " 용사_01 ",
        "phone": "",
        "playstyle": "mage",
        "referredByCode": "abc123xy",
        "language": "en",
    })

    assert error is None
    assert form == RegistrationForm(
        email="player@example.com",
        nickname="용사_01",
        phone=None,
        playstyle="mage",
        referred_by_code="ABC123XY",
        language="en",
    )


def test_blank_optional_fields_become_none() -> None:
    form, error = validate_registration({"email": "a@b.co", "nickname": "ab", "playstyle": "", "referredByCode": " "})

    assert error is None
    assert form.playstyle is None
    assert form.referred_by_code is None
    assert form.language == "ko"


def test_nickname_errors_are_localized() -> None:
    _, short = validate_registration({"email": "a@b.co", "nickname": "a"}, "en")
    assert short.code == "VALIDATION_FAILED"
    assert short.field == "nickname"
    assert short.message == "Nickname must be at least 2 characters"

    _, long = validate_registration({"email": "a@b.co", "nickname": "a" * 51}, "ko")
    assert long.message == "닉네임은 최대 50자까지 가능합니다"

    _, pattern = validate_registration({"email": "a@b.co", "nickname": "bad name!"}, "en")
    assert pattern.details[0]["type"] == "nickname_pattern"


def test_email_phone_and_code_formats() -> None:
    _, email = validate_registration({"email": "not-an-email", "nickname": "player"}, "en")
    assert email.field == "email"
    assert email.message == "Invalid email format"

    _, phone = validate_registration({"email": "a@b.co", "nickname": "player", "phone": "call me"}, "en")
    assert phone.field == "phone"

    _, code = validate_registration({"email": "a@b.co", "nickname": "player", "referredByCode": "x!"}, "en")
    assert code.field == "referred_by_code"
    assert code.message == "Invalid referral code format"


def test_enum_and_missing_fields() -> None:
    _, playstyle = validate_registration({"email": "a@b.co", "nickname": "player", "playstyle": "bard"}, "en")
    assert playstyle.field == "playstyle"
    assert playstyle.message == "Please choose a playstyle"

    _, missing = validate_registration({"nickname": "player"}, "en")
    assert missing.field == "email"
    assert missing.message == "This field is required"


def test_every_failure_is_listed_in_details() -> None:
    _, error = validate_registration({"email": "bad", "nickname": "x"})

    fields = {item["field"] for item in error.details}
    assert fields == {"email", "nickname"}


def test_accepts_an_existing_form() -> None:
    original = RegistrationForm(email="a@b.co", nickname="player")

    form, error = validate_registration(original)

    assert error is None
    assert form == original
