"""Subscription registry.

Process-wide table of long-lived resources (realtime channels, interval
timers, event listeners) keyed by id. Every record owns a cleanup that runs
exactly once: when the record is unregistered, when it is replaced by a
registration under the same id, or during ``teardown_all``.

Cleanup failures are logged and swallowed. A record is removed even when
its cleanup raises, so teardown never leaks entries.
"""

from __future__ import annotations

import asyncio
import inspect
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ..util.error import log_error
from ..util.log import Log

log = Log.create({"service": "lifecycle.registry"})

Cleanup = Callable[[], Union[None, Awaitable[None]]]


class SubscriptionKind(str, Enum):
    """Kind of resource held by a record."""
    REALTIME = "realtime"
    INTERVAL = "interval"
    EVENT = "event"


@dataclass
class SubscriptionRecord:
    """A registered resource and its teardown action."""

    id: str
    kind: SubscriptionKind
    cleanup: Cleanup
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> Union[None, Awaitable[None]]:
        """Invoke the cleanup; repeated calls do nothing."""
        if self._released:
            return None
        self._released = True
        return self.cleanup()

    def age(self) -> float:
        """Seconds since registration."""
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()


_registry_var: ContextVar['Registry'] = ContextVar('_registry_var')


class Registry:
    """Registry of active subscriptions.

    One instance is created per application context and passed to whatever
    needs it. ``provide``/``current`` bind it to the running context for
    code that cannot take it as an argument.
    """

    def __init__(self) -> None:
        self._records: Dict[str, SubscriptionRecord] = {}
        self._tearing_down = False
        self._pending: Set[asyncio.Task[None]] = set()

    @classmethod
    def current(cls) -> 'Registry':
        try:
            return _registry_var.get()
        except LookupError:
            raise RuntimeError("No Registry is bound to the current context")

    @classmethod
    def provide(cls, registry: 'Registry') -> Token['Registry']:
        return _registry_var.set(registry)

    @classmethod
    def restore(cls, token: Token['Registry']) -> None:
        _registry_var.reset(token)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def register(
        self,
        id: str,
        cleanup: Cleanup,
        kind: SubscriptionKind = SubscriptionKind.REALTIME,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Store a record, replacing any record with the same id.

        The replaced record's cleanup runs before the new record is stored.
        An async cleanup is scheduled on the running loop and awaited by
        ``teardown_all``.
        """
        existing = self._records.pop(id, None)
        if existing is not None:
            log.warn("subscription already exists, replacing", {"id": id, "kind": existing.kind.value})
            self._evict(existing)

        self._records[id] = SubscriptionRecord(
            id=id,
            kind=SubscriptionKind(kind),
            cleanup=cleanup,
            metadata=dict(metadata or {}),
        )
        log.debug("registered subscription", {"id": id, "kind": SubscriptionKind(kind).value, "active": len(self._records)})

    def _evict(self, record: SubscriptionRecord) -> None:
        try:
            result = record.release()
        except Exception as e:
            log_error(e, f"evict:{record.id}", record.metadata)
            return
        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(result):
                asyncio.run(self._settle(record, result, "evict"))
            else:
                log.warn("async cleanup dropped, no running loop", {"id": record.id, "kind": record.kind.value})
            return

        task = loop.create_task(self._settle(record, result, "evict"))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _settle(self, record: SubscriptionRecord, pending: Awaitable[None], context: str) -> None:
        try:
            await pending
        except Exception as e:
            log_error(e, f"{context}:{record.id}", record.metadata)

    async def _release(self, record: SubscriptionRecord, context: str) -> None:
        try:
            result = record.release()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(e, f"{context}:{record.id}", record.metadata)

    async def unregister(self, id: str) -> None:
        """Remove a record and run its cleanup. Unknown ids are ignored."""
        record = self._records.pop(id, None)
        if record is None:
            log.debug("subscription not found", {"id": id})
            return

        await self._release(record, "unregister")
        log.debug("unregistered subscription", {"id": id, "active": len(self._records)})

    async def unregister_by_kind(self, kind: SubscriptionKind) -> None:
        """Unregister every record of one kind concurrently."""
        kind = SubscriptionKind(kind)
        ids = [id for id, record in self._records.items() if record.kind == kind]
        await asyncio.gather(*(self.unregister(id) for id in ids))

    async def teardown_all(self) -> None:
        """Release every record concurrently.

        A call that arrives while a teardown is running returns immediately.
        """
        if self._tearing_down:
            log.warn("teardown already in progress")
            return

        self._tearing_down = True
        try:
            records = list(self._records.values())
            self._records.clear()
            log.info("tearing down subscriptions", {"count": len(records)})
            await asyncio.gather(*(self._release(record, "teardown") for record in records))
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
            log.info("subscriptions torn down")
        finally:
            self._tearing_down = False

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def tearing_down(self) -> bool:
        return self._tearing_down

    def has(self, id: str) -> bool:
        return id in self._records

    def get(self, id: str) -> Optional[SubscriptionRecord]:
        return self._records.get(id)

    def list(self) -> list[SubscriptionRecord]:
        return list(self._records.values())

    def debug(self) -> list[dict[str, Any]]:
        """Summarise active records and log the summary."""
        rows = [
            {"id": record.id, "kind": record.kind.value, "age": f"{round(record.age())}s"}
            for record in self._records.values()
        ]
        log.info("active subscriptions", {"count": len(rows), "records": rows})
        return rows


def managed_subscription(
    registry: Registry,
    id: str,
    open: Callable[[], Cleanup],
    kind: SubscriptionKind = SubscriptionKind.REALTIME,
    metadata: Optional[Dict[str, Any]] = None,
) -> Callable[[], Awaitable[None]]:
    """Open a resource, register its cleanup and return a releaser.

    The returned coroutine function unregisters ``id``, which runs the
    cleanup through the registry.
    """
    cleanup = open()
    registry.register(id, cleanup, kind, metadata)

    async def release() -> None:
        await registry.unregister(id)

    return release
