"""Debounced values.

The output follows the input only after the input has been quiet for the
configured delay. A new input restarts the timer; the pending propagation
is dropped.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, List, Optional, TypeVar

from ..util.error import log_error
from .owner import Owner

T = TypeVar("T")


class Debounced(Generic[T]):
    """A value that settles ``delay`` seconds after its last change."""

    def __init__(self, value: T, delay: float = 0.5, *, owner: Optional[Owner] = None) -> None:
        self._value = value
        self._latest = value
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[[T], Any]] = []
        self._owner = owner or Owner("debounce")
        self._owner.on_dispose(self.cancel)

    @property
    def value(self) -> T:
        """The settled value."""
        return self._value

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def on_change(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set(self, value: T) -> None:
        """Feed a new input and restart the quiet period."""
        if self._owner.disposed:
            return
        self._latest = value
        self.cancel()
        if value == self._value:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._settle)

    def cancel(self) -> None:
        """Drop the pending propagation, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _settle(self) -> None:
        self._handle = None
        if self._owner.disposed or self._latest == self._value:
            return
        self._value = self._latest
        for listener in list(self._listeners):
            try:
                listener(self._value)
            except Exception as e:
                log_error(e, "debounce:listener")
