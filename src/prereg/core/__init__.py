"""Core infrastructure modules."""

from .global_paths import GlobalPath
from .id import Identifier
from .bus import Bus, BusEvent, EventPayload

__all__ = ["GlobalPath", "Identifier", "Bus", "BusEvent", "EventPayload"]

# Log is exported separately from util to avoid circular imports
# To use: from prereg.util.log import Log
