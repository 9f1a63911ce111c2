from __future__ import annotations

import json
from pathlib import Path

import pytest

from prereg.core.global_paths import GlobalPath
from prereg.util.error import format_error, log_error
from prereg.util.log import Log, LogFormat, LogLevel


def test_log_writes_console_and_file(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=True, file=True, dev=True)

    log = Log.create({"service": "test.log"})
    log.info("hello", {"value": 7, "skipped": None})
    log.debug("hidden")
    Log.close()

    stderr = capsys.readouterr().err
    text = (tmp_path / "dev.log").read_text(encoding="utf-8")

    assert "msg=hello" in stderr
    assert "service=test.log" in stderr
    assert "skipped" not in stderr
    assert "hidden" not in stderr
    assert "value=7" in text


def test_log_supports_json_format(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(GlobalPath, "log", classmethod(lambda cls: str(tmp_path)))
    Log.configure(level=LogLevel.INFO, format=LogFormat.JSON, console=False, file=True, dev=True)

    log = Log.create({"service": "test.json"})
    log.info("hello world", {"meta": {"k": "v"}, "error": ValueError("bad")})
    Log.close()

    line = (tmp_path / "dev.log").read_text(encoding="utf-8").strip()
    payload = json.loads(line)

    assert payload["level"] == "info"
    assert payload["msg"] == "hello world"
    assert payload["service"] == "test.json"
    assert payload["meta"] == {"k": "v"}
    assert payload["error"] == "bad"


def test_loggers_are_cached_by_service() -> None:
    assert Log.create({"service": "cached"}) is Log.create({"service": "cached"})
    assert Log.create() is not Log.create()


def test_level_and_format_parsing() -> None:
    assert LogLevel.parse(None) is LogLevel.INFO
    assert LogLevel.parse("warning") is LogLevel.WARN
    assert LogLevel.parse(" Debug ") is LogLevel.DEBUG
    assert LogFormat.parse("PRETTY") is LogFormat.PRETTY

    with pytest.raises(ValueError):
        LogLevel.parse("loud")
    with pytest.raises(ValueError):
        LogFormat.parse("xml")


def test_log_error_renders_api_style_errors(capsys) -> None:  # type: ignore[no-untyped-def]
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=True, file=False)

    class Failure(Exception):
        code = "NOT_FOUND"
        message = "missing"
        field = "email"

    log_error(Failure(), "lookup", {"id": "u1"})

    stderr = capsys.readouterr().err
    assert "context=lookup" in stderr
    assert 'error="[NOT_FOUND] missing (email)"' in stderr
    assert "type=Failure" in stderr
    assert format_error(RuntimeError("plain")) is None


def test_contact_details_are_masked(capsys) -> None:  # type: ignore[no-untyped-def]
    Log.configure(level=LogLevel.INFO, format=LogFormat.KV, console=True, file=False)

    log = Log.create({"service": "test.mask"})
    log.info("signup", {"email": "hero@example.com", "metadata": {"phone": "010-1234-5678", "nickname": "hero"}})

    stderr = capsys.readouterr().err
    assert "hero@example.com" not in stderr
    assert "email=h***@example.com" in stderr
    assert '"phone":"***5678"' in stderr
    assert '"nickname":"hero"' in stderr
