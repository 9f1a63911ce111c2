"""Resource lifecycle: registry, trackers, bindings and timing primitives."""

from .binding import SubscriptionBinding
from .debounce import Debounced
from .interval import ManagedInterval, managed_interval
from .listener import managed_event_listener
from .owner import Owner
from .persisted import JsonFileStorage, KeyValueStorage, MemoryStorage, PersistedValue
from .registry import Registry, SubscriptionKind, SubscriptionRecord, managed_subscription
from .tracker import AsyncState, AsyncTracker

__all__ = [
    "AsyncState",
    "AsyncTracker",
    "Debounced",
    "JsonFileStorage",
    "KeyValueStorage",
    "ManagedInterval",
    "MemoryStorage",
    "Owner",
    "PersistedValue",
    "Registry",
    "SubscriptionBinding",
    "SubscriptionKind",
    "SubscriptionRecord",
    "managed_event_listener",
    "managed_interval",
    "managed_subscription",
]
