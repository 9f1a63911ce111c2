"""Shared plumbing for the service layer.

Services are the boundary where backend exceptions become ``ApiError``
values: every public operation returns an ``ApiResponse`` and never raises.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

import httpx
from pydantic import BaseModel

from ..api.errors import DEFAULT_LANGUAGE, ErrorCode, create_api_error, to_api_error, with_retry
from ..api.response import ApiResponse
from ..backend.base import Backend, BackendError, ChannelStatus
from ..core.bus import Bus, BusEvent
from ..core.config_schema import RetryConfig
from ..util.error import log_error

T = TypeVar("T")

ErrorHandler = Callable[[Exception], None]


class RealtimeStatusProps(BaseModel):
    channel: str
    status: str


RealtimeStatus = BusEvent.define("realtime.status", RealtimeStatusProps)

_status_tasks: Set[asyncio.Task[None]] = set()


def publish_status(channel: str, status: ChannelStatus) -> None:
    """Announce a channel status change on the bus, when one is bound and a loop runs."""
    try:
        bus = Bus.current()
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    task = loop.create_task(bus.emit(RealtimeStatus, RealtimeStatusProps(channel=channel, status=status.value)))
    _status_tasks.add(task)
    task.add_done_callback(_status_tasks.discard)


class SubscriptionError(Exception):
    """A realtime channel could not be established."""


def is_retryable(error: Exception) -> bool:
    """Transport failures and 5xx responses; never constraint violations."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, BackendError):
        return bool(error.code and error.code.isdigit() and error.code.startswith("5") and len(error.code) == 3)
    return False


async def invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Call a sync or async callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class Service:
    """Base class holding the backend, the message language and retry policy."""

    def __init__(
        self,
        backend: Backend,
        language: str = DEFAULT_LANGUAGE,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self.backend = backend
        self.language = language
        self.retry = retry or RetryConfig(max_retries=0, delay=0)

    async def _read(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run an idempotent read under the retry policy."""
        return await with_retry(
            fn,
            max_retries=self.retry.max_retries,
            delay=self.retry.delay,
            should_retry=is_retryable,
        )

    def _fail(
        self,
        error: Exception,
        context: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse[Any]:
        log_error(error, context, metadata)
        if isinstance(error, (BackendError, httpx.HTTPError)):
            return ApiResponse.fail(to_api_error(error, self.language))
        return ApiResponse.fail(
            create_api_error(ErrorCode.SERVER_ERROR, language=self.language, details=str(error))
        )

    def _error(self, code: ErrorCode, **kwargs: Any) -> ApiResponse[Any]:
        return ApiResponse.fail(create_api_error(code, language=self.language, **kwargs))

    @staticmethod
    def _status_handler(
        context: str,
        on_error: Optional[ErrorHandler] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> Callable[[ChannelStatus], None]:
        def handle(status: ChannelStatus) -> None:
            publish_status(context, status)
            if status == ChannelStatus.SUBSCRIBED:
                if on_connect:
                    on_connect()
            elif status == ChannelStatus.CLOSED:
                if on_disconnect:
                    on_disconnect()
            elif status == ChannelStatus.CHANNEL_ERROR:
                error = SubscriptionError(f"failed to subscribe: {context}")
                log_error(error, f"{context}:status")
                if on_error:
                    on_error(error)

        return handle
