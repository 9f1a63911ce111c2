"""Application runtime context and lifecycle container."""

from __future__ import annotations

from contextvars import Token
from typing import Optional

from ..backend import Backend, create_backend
from ..core.bus import Bus
from ..core.config import ConfigManager
from ..core.config_schema import Config
from ..lifecycle.persisted import JsonFileStorage, KeyValueStorage, PersistedValue
from ..lifecycle.registry import Registry
from ..services import ReferralService, RegistrationService, RewardService
from ..util.log import Log

log = Log.create({"service": "runtime"})


class AppContext:
    """Application-level service container.

    Created once per process (one CLI run, one watch session) and threaded
    through the call graph. It owns the single subscription registry, the
    backend and the services built on it; ``shutdown()`` is the page-unload
    equivalent and releases every registered subscription.
    """

    __slots__ = (
        "config",
        "bus",
        "registry",
        "backend",
        "registration",
        "referrals",
        "rewards",
        "storage",
        "last_user",
        "started",
        "_bus_token",
        "_registry_token",
    )

    def __init__(
        self,
        config: Config,
        *,
        backend: Optional[Backend] = None,
        storage: Optional[KeyValueStorage] = None,
    ) -> None:
        self.config = config
        self.bus = Bus()
        self.registry = Registry()
        self.backend = backend or create_backend(config.backend, config.realtime)
        language = config.language
        self.referrals = ReferralService(self.backend, language, config.retry)
        self.registration = RegistrationService(self.backend, language, config.retry, self.referrals)
        self.rewards = RewardService(self.backend, language, config.retry)
        self.storage = storage or JsonFileStorage()
        self.last_user: PersistedValue[Optional[str]] = PersistedValue(self.storage, "last_user_id", None)
        self.started = False
        self._bus_token: Optional[Token[Bus]] = None
        self._registry_token: Optional[Token[Registry]] = None

    @classmethod
    async def create(cls, directory: str = ".", **kwargs) -> "AppContext":
        """Load configuration and build a started context."""
        config = await ConfigManager.load(directory)
        ctx = cls(config, **kwargs)
        await ctx.startup()
        return ctx

    @property
    def language(self) -> str:
        return self.config.language

    async def startup(self) -> None:
        if self.started:
            return
        self._bus_token = Bus.provide(self.bus)
        self._registry_token = Registry.provide(self.registry)
        self.started = True
        log.info("runtime started", {"backend": self.config.backend.type, "language": self.language})

    async def shutdown(self) -> None:
        """Release subscriptions, close the backend and unbind the context."""
        if not self.started:
            return
        self.started = False
        try:
            await self.registry.teardown_all()
            await self.backend.aclose()
        finally:
            if self._registry_token is not None:
                Registry.restore(self._registry_token)
                self._registry_token = None
            if self._bus_token is not None:
                Bus.restore(self._bus_token)
                self._bus_token = None
            log.info("runtime stopped")

    async def __aenter__(self) -> "AppContext":
        await self.startup()
        return self

    async def __aexit__(self, *args) -> None:
        await self.shutdown()
