"""Runtime logging bootstrap helpers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from ..core.config import ConfigManager
from ..core.config_schema import Config
from ..util.log import Log, LogFormat, LogLevel

LogMode = Literal["cli", "watch"]

# One-shot commands keep stderr for their own output; the long-running
# watcher streams its log next to the live counter.
MODE_DEFAULTS: Dict[str, Dict[str, bool]] = {
    "cli": {"console": False, "file": True, "dev_file": False},
    "watch": {"console": True, "file": True, "dev_file": False},
}


@dataclass(frozen=True)
class LogSettings:
    level: LogLevel
    format: LogFormat
    console: bool
    file: bool
    dev_file: bool


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def resolve_settings(
    cfg: Config,
    *,
    mode: LogMode,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
    dev_file: Optional[bool] = None,
) -> LogSettings:
    """Merge explicit options over the ``logging`` config block over mode defaults."""
    section = cfg.logging
    defaults = MODE_DEFAULTS[mode]

    def pick(explicit: Any, name: str) -> Any:
        configured = getattr(section, name) if section else None
        return _first(explicit, configured, defaults.get(name))

    return LogSettings(
        level=LogLevel.parse(_first(level, section.level if section else None, cfg.log_level)),
        format=LogFormat.parse(pick(format, "format")),
        console=pick(console, "console"),
        file=pick(file, "file"),
        dev_file=pick(dev_file, "dev_file"),
    )


def bootstrap_logging(
    *,
    mode: LogMode,
    level: Optional[str] = None,
    format: Optional[str] = None,
    console: Optional[bool] = None,
    file: Optional[bool] = None,
    dev_file: Optional[bool] = None,
) -> LogSettings:
    """Resolve config and initialize the process logger.

    Must be called outside a running event loop.
    """
    cfg = asyncio.run(ConfigManager.get())
    settings = resolve_settings(
        cfg,
        mode=mode,
        level=level,
        format=format,
        console=console,
        file=file,
        dev_file=dev_file,
    )
    Log.configure(
        level=settings.level,
        format=settings.format,
        console=settings.console,
        file=settings.file,
        dev=settings.dev_file,
    )
    return settings
