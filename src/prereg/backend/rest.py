"""PostgREST backend over httpx.

Talks to a hosted project's ``/rest/v1`` endpoint with the anonymous key.
Realtime channels are emulated by polling the table and diffing snapshots;
a failing poll reports ``CHANNEL_ERROR`` and retries with exponential
backoff until the channel is closed.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..util.error import log_error
from ..util.log import Log
from .base import BackendError, ChangeEvent, ChangeHandler, ChannelStatus, Row, StatusHandler

log = Log.create({"service": "backend.rest"})

_POLL_BASE_DELAY = 0.5
_POLL_MAX_DELAY = 30.0
_POLL_BACKOFF = 2.0
_POLL_LIMIT = 1000


def _poll_delay(attempt: int) -> float:
    turn = max(int(attempt), 1)
    return min(_POLL_BASE_DELAY * (_POLL_BACKOFF ** (turn - 1)), _POLL_MAX_DELAY)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filters(
    eq: Optional[Dict[str, Any]] = None,
    gt: Optional[Dict[str, Any]] = None,
) -> List[tuple[str, str]]:
    params: List[tuple[str, str]] = []
    for key, value in (eq or {}).items():
        params.append((key, "is.null" if value is None else f"eq.{_literal(value)}"))
    for key, value in (gt or {}).items():
        params.append((key, f"gt.{_literal(value)}"))
    return params


class RestChannel:
    """Polling subscription to one table."""

    def __init__(
        self,
        backend: "RestBackend",
        name: str,
        table: str,
        on_change: ChangeHandler,
        *,
        eq: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
        on_status: Optional[StatusHandler] = None,
        interval: float = 2.0,
    ) -> None:
        self.name = name
        self.table = table
        self._backend = backend
        self._on_change = on_change
        self._eq = dict(eq or {})
        self._event = event
        self._on_status = on_status
        self._interval = interval
        self._status = ChannelStatus.CLOSED
        self._snapshot: Optional[Dict[str, Row]] = None
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def status(self) -> ChannelStatus:
        return self._status

    def _set_status(self, status: ChannelStatus) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception as e:
            log_error(e, f"channel:{self.name}:status")

    async def _poll(self) -> List[ChangeEvent]:
        rows = await self._backend.select(self.table, eq=self._eq, limit=_POLL_LIMIT)
        current = {str(row.get("id")): row for row in rows}
        previous, self._snapshot = self._snapshot, current
        if previous is None:
            return []

        events: List[ChangeEvent] = []
        for key, row in current.items():
            old = previous.get(key)
            if old is None:
                events.append(ChangeEvent(type="INSERT", table=self.table, new=row))
            elif old != row:
                events.append(ChangeEvent(type="UPDATE", table=self.table, new=row, old=old))
        if self._event is not None:
            events = [e for e in events if e.type == self._event]
        return events

    async def _deliver(self, event: ChangeEvent) -> None:
        try:
            result = self._on_change(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(e, f"channel:{self.name}:callback")

    async def _run(self) -> None:
        attempt = 0
        while True:
            try:
                events = await self._poll()
            except (BackendError, httpx.HTTPError) as e:
                attempt += 1
                delay = _poll_delay(attempt)
                log.warn("channel poll failed", {"name": self.name, "error": e, "retry_in": delay})
                self._set_status(ChannelStatus.CHANNEL_ERROR)
                await asyncio.sleep(delay)
                continue

            attempt = 0
            self._set_status(ChannelStatus.SUBSCRIBED)
            for event in events:
                await self._deliver(event)
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log_error(e, f"channel:{self.name}:poll")
        self._backend._detach(self)
        self._set_status(ChannelStatus.CLOSED)
        log.debug("channel closed", {"name": self.name})


class RestBackend:
    """Backend protocol over PostgREST.

    Args:
        url: Project URL, e.g. ``https://xyz.supabase.co``
        anon_key: Anonymous API key
        timeout: Request timeout in seconds
        poll_interval: Seconds between realtime polls
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        *,
        url: str,
        anon_key: str,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {anon_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.url = url.rstrip("/")
        self.poll_interval = poll_interval
        self._channels: List[RestChannel] = []
        self._client = client or httpx.AsyncClient(
            base_url=f"{self.url}/rest/v1",
            transport=transport,
            timeout=timeout,
            headers=headers,
        )
        if client is not None:
            self._client.headers.update(headers)

    async def aclose(self) -> None:
        for channel in list(self._channels):
            await channel.close()
        await self._client.aclose()

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: Optional[Sequence[tuple[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        response = await self._client.request(method, path, json=json_body, params=params, headers=headers)

        self._raise_for_status(response)
        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return

        try:
            payload = response.json()
        except ValueError:
            payload = response.text

        if isinstance(payload, dict):
            raise BackendError(
                payload.get("code") or str(response.status_code),
                payload.get("message") or f"HTTP {response.status_code}",
                details=payload.get("details"),
                hint=payload.get("hint"),
            )
        raise BackendError(
            str(response.status_code),
            f"HTTP {response.status_code} for {response.request.method} {response.request.url.path}",
            details=payload or None,
        )

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
    ) -> List[Row]:
        params = [("select", columns.replace(" ", ""))] + _filters(eq, gt)
        if order:
            params.append(("order", f"{order}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(int(limit))))
        result = await self._request_json("GET", f"/{table}", params=params)
        return result if isinstance(result, list) else []

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        result = await self._request_json(
            "POST",
            f"/{table}",
            json_body=list(rows),
            headers={"Prefer": "return=representation"},
        )
        return result if isinstance(result, list) else []

    async def update(self, table: str, values: Row, *, eq: Dict[str, Any]) -> List[Row]:
        if not eq:
            raise BackendError("21000", "UPDATE requires a WHERE clause")
        result = await self._request_json(
            "PATCH",
            f"/{table}",
            json_body=dict(values),
            params=_filters(eq),
            headers={"Prefer": "return=representation"},
        )
        return result if isinstance(result, list) else []

    async def rpc(self, fn: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request_json("POST", f"/rpc/{fn}", json_body=dict(params or {}))

    def channel(
        self,
        name: str,
        table: str,
        on_change: ChangeHandler,
        *,
        eq: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
        on_status: Optional[StatusHandler] = None,
    ) -> RestChannel:
        channel = RestChannel(
            self,
            name,
            table,
            on_change,
            eq=eq,
            event=event,
            on_status=on_status,
            interval=self.poll_interval,
        )
        self._channels.append(channel)
        log.debug("channel opened", {"name": name, "table": table})
        return channel

    def _detach(self, channel: RestChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
