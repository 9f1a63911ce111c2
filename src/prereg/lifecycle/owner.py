"""Disposal scopes.

An ``Owner`` stands in for a view's lifetime. Trackers, bindings and timers
attach disposal callbacks to it and check ``disposed`` before every state
commit, so nothing writes into a view after it has gone away.
"""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, List, Optional, Union

from ..util.error import log_error
from ..util.log import Log

log = Log.create({"service": "lifecycle.owner"})

DisposeCallback = Callable[[], Union[None, Awaitable[None]]]


class Owner:
    """Cancellation scope with LIFO disposal callbacks."""

    def __init__(self, name: str = "owner", parent: Optional["Owner"] = None) -> None:
        self.name = name
        self._disposed = False
        self._callbacks: List[DisposeCallback] = []
        if parent is not None:
            parent.on_dispose(self.dispose)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def child(self, name: str) -> "Owner":
        """Create a scope that is disposed together with this one."""
        return Owner(name, parent=self)

    def on_dispose(self, callback: DisposeCallback) -> Callable[[], None]:
        """Run ``callback`` when the scope is disposed.

        Returns a function that detaches the callback. Attaching to an
        already disposed scope is a no-op.
        """
        if self._disposed:
            log.debug("on_dispose after disposal ignored", {"owner": self.name})
            return lambda: None
        self._callbacks.append(callback)

        def detach() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return detach

    async def dispose(self) -> None:
        """Dispose the scope; later calls are no-ops."""
        if self._disposed:
            return
        self._disposed = True

        while self._callbacks:
            callback = self._callbacks.pop()
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_error(e, f"dispose:{self.name}")

    async def __aenter__(self) -> "Owner":
        return self

    async def __aexit__(self, *args) -> None:
        await self.dispose()
