"""Common plumbing for views.

A view is the long-lived state behind one part of the page. It owns an
``Owner`` scope; trackers, bindings and timers created through the view are
attached to that scope and released by ``dispose()``.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional

from ..api.errors import DEFAULT_LANGUAGE, ApiError, ErrorCode, create_api_error
from ..api.notify import notify_error
from ..lifecycle.owner import Owner
from ..lifecycle.registry import Registry
from ..lifecycle.tracker import AsyncTracker, Operation
from ..util.error import log_error
from ..util.log import Log

log = Log.create({"service": "views"})


class View:
    """Base class with an owner scope, change listeners and error reporting.

    Args:
        registry: Registry that holds the view's subscriptions
        owner: Parent scope; the view gets a child scope of it
        language: Language of fallback error messages
        toast: Publish a toast for every reported error
    """

    name = "view"

    def __init__(
        self,
        registry: Registry,
        *,
        owner: Optional[Owner] = None,
        language: str = DEFAULT_LANGUAGE,
        toast: bool = True,
    ) -> None:
        self.registry = registry
        self.owner = owner.child(self.name) if owner is not None else Owner(self.name)
        self.language = language
        self.toast = toast
        self.error: Optional[ApiError] = None
        self._listeners: List[Callable[[], Any]] = []

    @property
    def disposed(self) -> bool:
        return self.owner.disposed

    def on_change(self, callback: Callable[[], Any]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _changed(self, *_: Any) -> None:
        if self.owner.disposed:
            return
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                log_error(e, f"{self.name}:listener")

    def _tracker(self, op: Operation[Any], *, name: str, report: bool = True, **kwargs: Any) -> AsyncTracker[Any]:
        if report:
            kwargs.setdefault("on_error", self._report)
        tracker: AsyncTracker[Any] = AsyncTracker(
            op,
            owner=self.owner,
            name=f"{self.name}:{name}",
            language=self.language,
            **kwargs,
        )
        tracker.on_change(self._changed)
        return tracker

    async def _report(self, error: ApiError) -> None:
        self.error = error
        self._changed()
        if not self.toast:
            return
        try:
            await notify_error(error)
        except RuntimeError as e:
            log.debug("toast skipped", {"view": self.name, "reason": str(e)})

    def _subscription_error(self, error: Exception) -> None:
        self.error = create_api_error(ErrorCode.NETWORK_ERROR, language=self.language, details=str(error))
        self._changed()

    async def dispose(self) -> None:
        await self.owner.dispose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args) -> None:
        await self.dispose()
