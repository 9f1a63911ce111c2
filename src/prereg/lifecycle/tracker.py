"""Async operation tracker.

Wraps one call site's remote operation in an idle → loading → success/error
state machine. Only the most recent invocation may commit; older pending
invocations are abandoned and their results dropped. Once the owner is
disposed nothing is committed and the in-flight task is cancelled.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Literal, Optional, Set, TypeVar, Union

from ..api.errors import ApiError, ErrorCode, create_api_error
from ..api.response import ApiResponse
from ..util.error import log_error
from ..util.log import Log
from .owner import Owner

log = Log.create({"service": "lifecycle.tracker"})

T = TypeVar("T")

Status = Literal["idle", "loading", "success", "error"]
Operation = Callable[..., Awaitable[ApiResponse[T]]]
Callback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class AsyncState(Generic[T]):
    """Snapshot of a tracker; ``status`` is the single source of truth."""

    status: Status = "idle"
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @property
    def is_idle(self) -> bool:
        return self.status == "idle"

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


IDLE: AsyncState[Any] = AsyncState()
LOADING: AsyncState[Any] = AsyncState(status="loading")


class AsyncTracker(Generic[T]):
    """Request state for one call site.

    Args:
        op: Remote operation returning an ``ApiResponse``
        owner: Disposal scope; a private one is created when omitted
        on_success: Called with the data of a committed success
        on_error: Called with the ``ApiError`` of a committed failure
        name: Label used in logs
        immediate: Execute once with no arguments right away
        language: Language of the fallback error message
    """

    def __init__(
        self,
        op: Operation[T],
        *,
        owner: Optional[Owner] = None,
        on_success: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        name: Optional[str] = None,
        immediate: bool = False,
        language: str = "ko",
    ) -> None:
        self._op = op
        self.name = name or getattr(op, "__name__", "operation")
        self._owner = owner or Owner(self.name)
        self._on_success = on_success
        self._on_error = on_error
        self._language = language
        self._state: AsyncState[T] = IDLE
        self._seq = 0
        self._task: Optional[asyncio.Task[AsyncState[T]]] = None
        self._in_flight: Set[asyncio.Task[AsyncState[T]]] = set()
        self._listeners: List[Callable[[AsyncState[T]], None]] = []
        self._owner.on_dispose(self._on_owner_disposed)
        if immediate:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                log.warn("immediate execution needs a running loop", {"name": self.name})
            else:
                self.execute()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def owner(self) -> Owner:
        return self._owner

    @property
    def state(self) -> AsyncState[T]:
        return self._state

    @property
    def data(self) -> Optional[T]:
        return self._state.data

    @property
    def error(self) -> Optional[ApiError]:
        return self._state.error

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def is_success(self) -> bool:
        return self._state.is_success

    @property
    def is_error(self) -> bool:
        return self._state.is_error

    def on_change(self, callback: Callable[[AsyncState[T]], None]) -> Callable[[], None]:
        """Observe state transitions. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_state(self, state: AsyncState[T]) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                log_error(e, f"{self.name}:listener")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, *args: Any, **kwargs: Any) -> asyncio.Task[AsyncState[T]]:
        """Start an invocation, superseding any pending one.

        Returns the task running the invocation; awaiting it yields the
        tracker state after settlement.
        """
        loop = asyncio.get_running_loop()
        if self._owner.disposed:
            log.debug("execute after disposal ignored", {"name": self.name})
            return loop.create_task(self._current_state())

        if self._task is not None and not self._task.done():
            log.debug("superseding pending invocation", {"name": self.name, "seq": self._seq})

        self._seq += 1
        seq = self._seq
        self._set_state(LOADING)
        task = loop.create_task(self._run(seq, args, kwargs))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        self._task = task
        return task

    def reset(self) -> None:
        """Return to idle; a pending invocation will not commit."""
        self._seq += 1
        self._set_state(IDLE)

    def _is_live(self, seq: int) -> bool:
        return seq == self._seq and not self._owner.disposed

    async def _current_state(self) -> AsyncState[T]:
        return self._state

    async def _run(self, seq: int, args: tuple, kwargs: dict) -> AsyncState[T]:
        try:
            response = await self._op(*args, **kwargs)
        except asyncio.CancelledError:
            if self._owner.disposed:
                return self._state
            raise
        except Exception as e:
            if not self._is_live(seq):
                return self._state
            log_error(e, f"{self.name}:execute")
            error = create_api_error(
                ErrorCode.UNKNOWN_ERROR,
                language=self._language,
                details=str(e),
            )
            await self._fail(error)
            return self._state

        if not self._is_live(seq):
            log.debug("dropping stale result", {"name": self.name, "seq": seq})
            return self._state

        if response.success:
            self._set_state(AsyncState(status="success", data=response.data))
            await self._fire(self._on_success, response.data)
        else:
            await self._fail(response.error or create_api_error(ErrorCode.UNKNOWN_ERROR, language=self._language))
        return self._state

    async def _fail(self, error: ApiError) -> None:
        self._set_state(AsyncState(status="error", error=error))
        await self._fire(self._on_error, error)

    async def _fire(self, callback: Optional[Callback], value: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(e, f"{self.name}:callback")

    def _on_owner_disposed(self) -> None:
        # Superseded invocations may still be running; signal all of them.
        self._task = None
        for task in list(self._in_flight):
            if not task.done():
                task.cancel()
