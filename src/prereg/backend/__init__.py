"""Data backends."""

from typing import Optional

from ..core.config_schema import BackendConfig, RealtimeConfig
from .base import (
    Backend,
    BackendError,
    ChangeEvent,
    Channel,
    ChannelStatus,
    Row,
    maybe_single,
    single,
)
from .local import LocalBackend
from .rest import RestBackend


def create_backend(config: BackendConfig, realtime: Optional[RealtimeConfig] = None) -> Backend:
    """Build the backend selected by configuration."""
    realtime = realtime or RealtimeConfig()
    if config.type == "rest":
        return RestBackend(
            url=config.url or "",
            anon_key=config.anon_key or "",
            timeout=config.timeout,
            poll_interval=realtime.poll_interval,
        )
    return LocalBackend(config.database, target_milestone=config.target_milestone)


__all__ = [
    "Backend",
    "BackendError",
    "ChangeEvent",
    "Channel",
    "ChannelStatus",
    "LocalBackend",
    "RestBackend",
    "Row",
    "create_backend",
    "maybe_single",
    "single",
]
