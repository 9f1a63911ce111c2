"""Registry-managed periodic callbacks."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from ..core.id import Identifier
from ..util.error import log_error
from ..util.log import Log
from .owner import Owner
from .registry import Registry, SubscriptionKind

log = Log.create({"service": "lifecycle.interval"})

Tick = Callable[[], Union[None, Awaitable[None]]]


class ManagedInterval:
    """Fixed-period timer registered with kind ``interval``.

    Each tick invokes whatever callback is current at that moment, so
    replacing ``callback`` never restarts the timer. A period of ``None``
    keeps the timer paused.
    """

    def __init__(
        self,
        registry: Registry,
        callback: Tick,
        period: Optional[float],
        *,
        name: str = "interval",
        owner: Optional[Owner] = None,
    ) -> None:
        self._registry = registry
        self._callback = callback
        self._period = period
        self.name = name
        self._owner = owner or Owner(name)
        self._id: Optional[str] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._owner.on_dispose(self.stop)

    @property
    def callback(self) -> Tick:
        return self._callback

    @callback.setter
    def callback(self, value: Tick) -> None:
        self._callback = value

    @property
    def period(self) -> Optional[float]:
        return self._period

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def id(self) -> Optional[str]:
        return self._id

    def start(self) -> None:
        """Start ticking; does nothing while paused or already running."""
        if self._period is None or self.running or self._owner.disposed:
            return
        id = Identifier.unique(self.name)
        task = asyncio.get_running_loop().create_task(self._loop(self._period))
        self._id = id
        self._task = task
        self._registry.register(
            id,
            self._canceller(task),
            SubscriptionKind.INTERVAL,
            {"name": self.name, "period": self._period},
        )

    def _canceller(self, task: asyncio.Task[None]) -> Callable[[], None]:
        def cancel() -> None:
            task.cancel()
            if self._task is task:
                self._task = None
                self._id = None

        return cancel

    async def stop(self) -> None:
        id = self._id
        if id is not None:
            await self._registry.unregister(id)

    async def set_period(self, period: Optional[float]) -> None:
        """Change the period; the timer restarts only when it changed."""
        if period == self._period:
            return
        await self.stop()
        self._period = period
        self.start()

    async def _loop(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_error(e, f"interval:{self.name}")


def managed_interval(
    registry: Registry,
    callback: Tick,
    period: float,
    *,
    name: str = "interval",
) -> Callable[[], Awaitable[None]]:
    """Start a registered interval and return its async releaser."""
    interval = ManagedInterval(registry, callback, period, name=name)
    interval.start()
    return interval.stop
