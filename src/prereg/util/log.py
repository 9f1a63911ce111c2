"""Structured logging with console and file sinks.

Loggers are created per service and carry tags that are merged into every
record. Records render as ``key=value`` pairs, JSON lines or a short pretty
form, and go to stderr and/or a rotating set of files under the log dir.

Contact details (e-mail addresses, phone numbers, API keys) never reach a
sink in clear text: tags with those names are masked when the record is
built.
"""

import json
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TextIO

from ..core.global_paths import GlobalPath

KEEP_LOG_FILES = 10
MASKED_TAGS = frozenset({"email", "phone", "anon_key", "apikey"})
RESERVED_FIELDS = ("time", "delta_ms", "level", "msg")


class LogLevel(str, Enum):
    """Log severity levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def priority(self) -> int:
        return list(LogLevel).index(self)

    @classmethod
    def parse(cls, value: str | None) -> "LogLevel":
        if value is None:
            return cls.INFO
        text = value.strip().lower()
        if text == "warning":
            text = "warn"
        for level in cls:
            if level.value.lower() == text:
                return level
        raise ValueError(f"invalid log level: {value}")


class LogFormat(str, Enum):
    """Log output format."""

    KV = "kv"
    JSON = "json"
    PRETTY = "pretty"

    @classmethod
    def parse(cls, value: str | None) -> "LogFormat":
        if value is None:
            return cls.KV
        text = value.strip().lower()
        for fmt in cls:
            if fmt.value == text:
                return fmt
        raise ValueError(f"invalid log format: {value}")


@dataclass
class LogConfig:
    """Process-wide logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.KV
    console: bool = False
    file: bool = False
    log_file_path: Optional[str] = None
    _file_handle: Optional[TextIO] = None


_config = LogConfig()
_last_timestamp = time.time()


def mask(value: Any) -> str:
    """Keep just enough of a contact detail to tell records apart."""
    text = str(value)
    if "@" in text:
        local, _, domain = text.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(text) <= 4:
        return "***"
    return f"***{text[-4:]}"


def _format_error(error: BaseException, depth: int = 0) -> str:
    result = str(error) or type(error).__name__
    if error.__cause__ and depth < 10:
        result += " Caused by: " + _format_error(error.__cause__, depth + 1)
    return result


def _normalize(value: Any, key: Optional[str] = None) -> Any:
    if key in MASKED_TAGS and value is not None:
        return mask(value)
    if isinstance(value, BaseException):
        return _format_error(value)
    if isinstance(value, dict):
        return {k: _normalize(v, k) for k, v in value.items()}
    if isinstance(value, (list, tuple, int, float, bool)) or value is None:
        return value
    return str(value)


def _kv_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    text = str(value)
    if text == "" or any(ch.isspace() for ch in text) or "=" in text:
        return json.dumps(text, ensure_ascii=False)
    return text


def _pairs(payload: Dict[str, Any]) -> str:
    return " ".join(f"{k}={_kv_value(v)}" for k, v in payload.items() if k not in RESERVED_FIELDS)


def _render_kv(payload: Dict[str, Any]) -> str:
    parts = [
        str(payload["time"]),
        f"+{payload['delta_ms']}ms",
        f"level={payload['level']}",
        f"msg={_kv_value(payload.get('msg'))}",
        _pairs(payload),
    ]
    return " ".join(part for part in parts if part)


def _render_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def _render_pretty(payload: Dict[str, Any]) -> str:
    pairs = _pairs(payload)
    suffix = f" ({pairs})" if pairs else ""
    return f"{payload['time']} {payload['level'].upper()} {payload.get('msg') or ''}{suffix} +{payload['delta_ms']}ms"


RENDERERS: Dict[LogFormat, Callable[[Dict[str, Any]], str]] = {
    LogFormat.KV: _render_kv,
    LogFormat.JSON: _render_json,
    LogFormat.PRETTY: _render_pretty,
}


class Logger:
    """Tagged structured logger."""

    def __init__(self, tags: Optional[Dict[str, Any]] = None):
        self.tags = tags or {}

    def _payload(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        global _last_timestamp

        now = time.time()
        delta_ms = int((now - _last_timestamp) * 1000)
        _last_timestamp = now

        data: Dict[str, Any] = {}
        for key, value in {**self.tags, **(extra or {})}.items():
            if value is None:
                continue
            data[key] = _normalize(value, key)

        return {
            "time": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "delta_ms": delta_ms,
            "level": level.value.lower(),
            "msg": _normalize(message),
            **data,
        }

    def _log(self, level: LogLevel, message: Any, extra: Optional[Dict[str, Any]]) -> None:
        if level.priority < _config.level.priority:
            return
        line = RENDERERS[_config.format](self._payload(level, message, extra)) + "\n"
        if _config.console:
            sys.stderr.write(line)
            sys.stderr.flush()
        if _config.file and _config._file_handle:
            _config._file_handle.write(line)
            _config._file_handle.flush()

    def debug(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.DEBUG, message, extra)

    def info(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.INFO, message, extra)

    def warn(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.WARN, message, extra)

    def error(self, message: Any = None, extra: Optional[Dict[str, Any]] = None) -> None:
        self._log(LogLevel.ERROR, message, extra)


class Log:
    """Logger factory and sink configuration."""

    _loggers: Dict[str, Logger] = {}

    @classmethod
    def create(cls, tags: Optional[Dict[str, Any]] = None) -> Logger:
        """Create a logger, cached by its ``service`` tag when present."""
        tags = tags or {}
        service = tags.get("service")
        if isinstance(service, str) and service:
            return cls._loggers.setdefault(service, Logger(tags=tags))
        return Logger(tags=tags)

    @classmethod
    def configure(
        cls,
        *,
        level: LogLevel | None = None,
        format: LogFormat | None = None,
        console: bool | None = None,
        file: bool | None = None,
        dev: bool = False,
    ) -> None:
        """Configure sinks and output format.

        With ``dev`` the file sink appends to ``dev.log``; otherwise each
        process writes a fresh timestamped file and only the newest
        ``KEEP_LOG_FILES`` are kept.
        """
        if level is not None:
            _config.level = level
        if format is not None:
            _config.format = format
        if console is not None:
            _config.console = console
        _config.file = True if file is None else file

        cls.close()
        if not _config.file:
            _config.log_file_path = None
            return

        log_dir = Path(GlobalPath.log())
        cls._rotate(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        if dev:
            log_path = log_dir / "dev.log"
        else:
            log_path = log_dir / f"{datetime.now().strftime('%Y-%m-%dT%H%M%S')}.log"

        _config.log_file_path = str(log_path)
        _config._file_handle = log_path.open("a" if dev else "w", encoding="utf-8")

    @classmethod
    def _rotate(cls, log_dir: Path) -> None:
        if not log_dir.exists():
            return
        stamped = sorted(log_dir.glob("????-??-??T??????.log"), key=lambda p: p.stat().st_mtime)
        for old in stamped[:-KEEP_LOG_FILES]:
            old.unlink(missing_ok=True)

    @classmethod
    def close(cls) -> None:
        if _config._file_handle:
            _config._file_handle.close()
            _config._file_handle = None
