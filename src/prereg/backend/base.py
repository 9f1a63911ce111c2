"""Backend protocol shared by the local and REST implementations.

The surface is shaped after PostgREST: table selects with equality filters,
inserts and updates returning the affected rows, stored-procedure calls, and
realtime channels that report row changes. Failures are raised as
``BackendError`` carrying the PostgreSQL / PostgREST code.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

Row = Dict[str, Any]

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
NO_ROWS = "PGRST116"


class BackendError(Exception):
    """A failure reported by the data backend."""

    def __init__(
        self,
        code: Optional[str],
        message: str,
        details: Any = None,
        hint: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.hint = hint
        super().__init__(f"[{code}] {message}" if code else message)


class ChannelStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


class ChangeEvent(BaseModel):
    """A row change delivered to a channel."""
    type: str = Field(..., description="INSERT or UPDATE")
    table: str
    new: Row = Field(default_factory=dict)
    old: Optional[Row] = None


ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
StatusHandler = Callable[[ChannelStatus], None]


class Channel(Protocol):
    """An open realtime subscription."""

    name: str

    @property
    def status(self) -> ChannelStatus: ...

    async def close(self) -> None: ...


class Backend(Protocol):
    """Data access used by the services."""

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        eq: Optional[Dict[str, Any]] = None,
        gt: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]: ...

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]: ...

    async def update(self, table: str, values: Row, *, eq: Dict[str, Any]) -> List[Row]: ...

    async def rpc(self, fn: str, params: Optional[Dict[str, Any]] = None) -> Any: ...

    def channel(
        self,
        name: str,
        table: str,
        on_change: ChangeHandler,
        *,
        eq: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
        on_status: Optional[StatusHandler] = None,
    ) -> Channel: ...

    async def aclose(self) -> None: ...


def single(rows: List[Row]) -> Row:
    """Exactly one row, else ``PGRST116``."""
    if len(rows) != 1:
        raise BackendError(
            NO_ROWS,
            "JSON object requested, multiple (or no) rows returned",
            details=f"The result contains {len(rows)} rows",
        )
    return rows[0]


def maybe_single(rows: List[Row]) -> Optional[Row]:
    """The only row, ``None`` for no rows, ``PGRST116`` for several."""
    if not rows:
        return None
    return single(rows)


def matches(row: Row, eq: Optional[Dict[str, Any]]) -> bool:
    """Whether ``row`` satisfies every equality filter."""
    return all(row.get(key) == value for key, value in (eq or {}).items())
