"""prereg - pre-registration client core.

Resource-lifecycle and subscription management for a game pre-registration
page: a subscription registry, async operation trackers, realtime bindings,
and the registration, referral and reward services they front.
"""

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy import module components."""
    if name in ("GlobalPath", "Identifier", "Bus", "BusEvent"):
        from . import core
        return getattr(core, name)
    if name == "Log":
        from .util.log import Log
        return Log
    if name in ("Registry", "AsyncTracker", "SubscriptionBinding", "Owner"):
        from . import lifecycle
        return getattr(lifecycle, name)
    if name == "AppContext":
        from .runtime import AppContext
        return AppContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "GlobalPath",
    "Identifier",
    "Bus",
    "BusEvent",
    "Log",
    "Registry",
    "AsyncTracker",
    "SubscriptionBinding",
    "Owner",
    "AppContext",
]
