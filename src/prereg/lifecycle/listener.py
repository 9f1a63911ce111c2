"""Registry-managed event bus listeners."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from ..core.bus import Bus, BusEvent, SubscriptionCallback
from .registry import Registry, SubscriptionKind


def managed_event_listener(
    registry: Registry,
    id: str,
    event: BusEvent[Any],
    handler: SubscriptionCallback,
    *,
    bus: Optional[Bus] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Callable[[], Awaitable[None]]:
    """Subscribe ``handler`` to ``event`` and register the unsubscribe.

    Uses the context-bound bus unless one is given. Returns an async
    releaser that unregisters ``id``.
    """
    target = bus or Bus._current()
    unsubscribe = target._raw_subscribe(event.type, handler)
    registry.register(id, unsubscribe, SubscriptionKind.EVENT, {"event": event.type, **(metadata or {})})

    async def release() -> None:
        await registry.unregister(id)

    return release
