"""Subscription binding.

Ties a registry record to an owner's lifetime: binding opens the
subscription through its factory and registers the teardown under a fresh
id; unbinding (or disposing the owner) unregisters it. A binding never holds
more than one live subscription.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.id import Identifier
from ..util.error import log_error
from ..util.log import Log
from .owner import Owner
from .registry import Cleanup, Registry, SubscriptionKind

log = Log.create({"service": "lifecycle.binding"})

Factory = Callable[[], Cleanup]
ErrorCallback = Callable[[Exception], Any]


class SubscriptionBinding:
    """Declarative subscription driven by (name, factory, deps, enabled).

    The subscription is opened on construction when enabled. ``update``
    re-opens it when the dependencies change and closes it when the binding
    is disabled.
    """

    def __init__(
        self,
        registry: Registry,
        name: str,
        factory: Factory,
        *,
        owner: Optional[Owner] = None,
        deps: Sequence[Any] = (),
        enabled: bool = True,
        on_error: Optional[ErrorCallback] = None,
        kind: SubscriptionKind = SubscriptionKind.REALTIME,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._registry = registry
        self.name = name
        self._factory = factory
        self._owner = owner or Owner(name)
        self._deps = tuple(deps)
        self._enabled = enabled
        self._on_error = on_error
        self._kind = kind
        self._metadata = {"subscription_id": name, **(metadata or {})}
        self._id: Optional[str] = None
        self._connected = False
        self._listeners: List[Callable[[bool], None]] = []
        self._owner.on_dispose(self.unbind)
        if enabled:
            self.bind()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def id(self) -> Optional[str]:
        return self._id

    @property
    def enabled(self) -> bool:
        return self._enabled

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Observe connection state. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_connected(self, value: bool) -> None:
        if self._connected == value:
            return
        self._connected = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                log_error(e, f"binding:{self.name}:listener")

    def bind(self) -> bool:
        """Open the subscription and register it. Returns success."""
        if not self._enabled or self._owner.disposed:
            return False
        if self._id is not None:
            log.warn("binding already open", {"name": self.name, "id": self._id})
            return True

        id = Identifier.unique(self.name)
        try:
            cleanup = self._factory()
        except Exception as e:
            log_error(e, f"binding:{self.name}")
            self._set_connected(False)
            self._report(e)
            return False

        self._id = id
        self._registry.register(id, self._release(id, cleanup), self._kind, self._metadata)
        self._set_connected(True)
        return True

    def _release(self, id: str, cleanup: Cleanup) -> Cleanup:
        def release() -> Any:
            if self._id == id:
                self._id = None
                self._set_connected(False)
            return cleanup()

        return release

    def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            log_error(e, f"binding:{self.name}:on_error")

    async def unbind(self) -> None:
        """Close the subscription if one is open."""
        id = self._id
        self._id = None
        self._set_connected(False)
        if id is not None:
            await self._registry.unregister(id)

    async def update(
        self,
        *,
        deps: Optional[Sequence[Any]] = None,
        enabled: Optional[bool] = None,
        factory: Optional[Factory] = None,
    ) -> None:
        """Apply new inputs; re-open only when deps or enabled changed."""
        if factory is not None:
            self._factory = factory

        changed = False
        if deps is not None and tuple(deps) != self._deps:
            self._deps = tuple(deps)
            changed = True
        if enabled is not None and enabled != self._enabled:
            self._enabled = enabled
            changed = True
        if not changed:
            return

        await self.unbind()
        if self._enabled:
            self.bind()
