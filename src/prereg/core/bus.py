"""Application event bus.

Typed events are defined with pydantic property models and delivered to
subscribers of the event type or of ``"*"``. The active bus is bound through
a ContextVar so each ``AppContext`` owns its own instance.

Example:
    class ToastProps(BaseModel):
        level: str
        message: str

    Toast = BusEvent.define("ui.toast", ToastProps)

    unsubscribe = Bus.subscribe(Toast, lambda payload: print(payload.properties))
    await Bus.publish(Toast, ToastProps(level="error", message="boom"))
    unsubscribe()
"""

import inspect
from contextvars import ContextVar, Token
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar('T', bound=BaseModel)

# Lazy logger to avoid circular imports
_log: Optional[Any] = None


def _get_log():
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


class BusEvent(Generic[T]):
    """Event definition: a type string plus a properties model."""

    def __init__(self, event_type: str, properties_type: type[T]):
        self.type = event_type
        self.properties_type = properties_type

    @staticmethod
    def define(event_type: str, properties_type: type[T]) -> 'BusEvent[T]':
        """Define and register a new event type."""
        event = BusEvent(event_type, properties_type)
        _registry[event_type] = event
        return event


# Defined events, for introspection
_registry: Dict[str, BusEvent] = {}


class EventPayload(BaseModel):
    """Payload delivered to subscribers."""
    type: str
    properties: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


_bus_var: ContextVar['Bus'] = ContextVar('_bus_var')


class Bus:
    """Event bus for publishing and subscribing to events.

    ContextVar-backed: class methods resolve the active instance.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[SubscriptionCallback]] = {}

    @classmethod
    def _current(cls) -> 'Bus':
        try:
            return _bus_var.get()
        except LookupError:
            raise RuntimeError("No Bus is bound to the current context")

    @classmethod
    def current(cls) -> 'Bus':
        """The bus bound to the current context."""
        return cls._current()

    @classmethod
    def provide(cls, bus: 'Bus') -> Token['Bus']:
        return _bus_var.set(bus)

    @classmethod
    def restore(cls, token: Token['Bus']) -> None:
        _bus_var.reset(token)

    @classmethod
    async def publish(cls, event: BusEvent[T], properties: Union[T, Dict[str, Any]]) -> None:
        await cls._current().emit(event, properties)

    @classmethod
    def subscribe(cls, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._raw_subscribe(event.type, callback)

    @classmethod
    def subscribe_all(cls, callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._raw_subscribe("*", callback)

    async def emit(self, event: BusEvent[T], properties: Union[T, Dict[str, Any]]) -> None:
        """Deliver an event on this bus instance."""
        if not isinstance(properties, event.properties_type):
            if isinstance(properties, dict):
                properties = event.properties_type(**properties)
            else:
                raise TypeError(
                    f"Properties must be instance of {event.properties_type.__name__}"
                )

        payload = EventPayload(type=event.type, properties=properties.model_dump())

        callbacks: List[SubscriptionCallback] = []
        for key in (event.type, "*"):
            callbacks.extend(self._subscriptions.get(key, []))

        for callback in callbacks:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": e,
                    "type": event.type,
                })

    def _raw_subscribe(self, event_type: str, callback: SubscriptionCallback) -> Callable[[], None]:
        self._subscriptions.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            subs = self._subscriptions.get(event_type, [])
            if callback in subs:
                subs.remove(callback)

        return unsubscribe

    def listener_count(self, event_type: str) -> int:
        return len(self._subscriptions.get(event_type, []))

    def clear(self) -> None:
        self._subscriptions.clear()
