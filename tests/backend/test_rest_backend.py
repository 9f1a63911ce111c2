from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from prereg.backend import BackendError, ChangeEvent, ChannelStatus, RestBackend
from prereg.backend.rest import _poll_delay


def _backend(handler, **kwargs) -> RestBackend:
    return RestBackend(
        url="https://demo.supabase.co/",
        anon_key="anon-key",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.anyio
async def test_select_builds_postgrest_query() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "u1", "nickname": "hero"}])

    backend = _backend(handler)
    try:
        rows = await backend.select(
            "users",
            columns="id, nickname",
            eq={"email": "a@b.co", "referred_by": None},
            gt={"created_at": "2026-01-01"},
            order="created_at",
            descending=True,
            limit=5,
        )
    finally:
        await backend.aclose()

    assert rows == [{"id": "u1", "nickname": "hero"}]
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/users"
    assert request.url.params.multi_items() == [
        ("select", "id,nickname"),
        ("email", "eq.a@b.co"),
        ("referred_by", "is.null"),
        ("created_at", "gt.2026-01-01"),
        ("order", "created_at.desc"),
        ("limit", "5"),
    ]
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer anon-key"


@pytest.mark.anyio
async def test_insert_update_and_rpc_requests() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.startswith("/rest/v1/rpc/"):
            return httpx.Response(200, json=[{"total_users": 3}])
        return httpx.Response(201, json=[json.loads(request.content)] if request.method == "PATCH" else json.loads(request.content))

    backend = _backend(handler)
    try:
        inserted = await backend.insert("referrals", [{"referrer_id": "a", "referee_id": "b"}])
        updated = await backend.update("user_rewards", {"claimed": True}, eq={"id": "r1", "user_id": "u1"})
        stats = await backend.rpc("get_global_stats")
    finally:
        await backend.aclose()

    assert inserted == [{"referrer_id": "a", "referee_id": "b"}]
    assert updated == [{"claimed": True}]
    assert stats == [{"total_users": 3}]

    post, patch, rpc = seen
    assert post.method == "POST"
    assert post.headers["prefer"] == "return=representation"
    assert patch.method == "PATCH"
    assert patch.url.params.multi_items() == [("id", "eq.r1"), ("user_id", "eq.u1")]
    assert rpc.url.path == "/rest/v1/rpc/get_global_stats"
    assert json.loads(rpc.content) == {}


@pytest.mark.anyio
async def test_error_body_becomes_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/users"):
            return httpx.Response(409, json={
                "code": "23505",
                "message": 'duplicate key value violates unique constraint "users_email_key"',
                "details": "Key (email) already exists.",
                "hint": None,
            })
        return httpx.Response(503, text="unavailable")

    backend = _backend(handler)
    try:
        with pytest.raises(BackendError) as conflict:
            await backend.insert("users", [{"email": "a@b.co"}])
        with pytest.raises(BackendError) as outage:
            await backend.select("referrals")
    finally:
        await backend.aclose()

    assert conflict.value.code == "23505"
    assert conflict.value.details == "Key (email) already exists."
    assert outage.value.code == "503"
    assert outage.value.details == "unavailable"


@pytest.mark.anyio
async def test_update_without_filter_is_refused() -> None:
    backend = _backend(lambda request: httpx.Response(200, json=[]))
    try:
        with pytest.raises(BackendError):
            await backend.update("users", {"phone": None}, eq={})
    finally:
        await backend.aclose()


@pytest.mark.anyio
async def test_channel_polls_and_diffs_snapshots() -> None:
    snapshots = [
        [{"id": "s1", "cumulative_registrations": 1}],
        [{"id": "s1", "cumulative_registrations": 2}, {"id": "s2", "cumulative_registrations": 0}],
    ]
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        index = min(len(calls) - 1, len(snapshots) - 1)
        return httpx.Response(200, json=snapshots[index])

    backend = _backend(handler, poll_interval=0.01)
    events: list[ChangeEvent] = []
    statuses: list[ChannelStatus] = []
    try:
        channel = backend.channel("stats", "registration_stats", events.append, on_status=statuses.append)
        for _ in range(100):
            if len(events) >= 2:
                break
            await asyncio.sleep(0.01)
        await channel.close()
        await channel.close()
    finally:
        await backend.aclose()

    assert sorted(e.type for e in events) == ["INSERT", "UPDATE"]
    update = next(e for e in events if e.type == "UPDATE")
    assert update.old == {"id": "s1", "cumulative_registrations": 1}
    assert statuses == [ChannelStatus.SUBSCRIBED, ChannelStatus.CLOSED]
    assert backend.channel_count == 0


@pytest.mark.anyio
async def test_channel_reports_error_and_recovers(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr("prereg.backend.rest._poll_delay", lambda attempt: 0.01)
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(500, json={"message": "db down"})
        return httpx.Response(200, json=[])

    backend = _backend(handler, poll_interval=0.01)
    statuses: list[ChannelStatus] = []
    try:
        backend.channel("stats", "registration_stats", lambda e: None, on_status=statuses.append)
        for _ in range(100):
            if ChannelStatus.SUBSCRIBED in statuses:
                break
            await asyncio.sleep(0.01)
    finally:
        await backend.aclose()

    assert statuses[:2] == [ChannelStatus.CHANNEL_ERROR, ChannelStatus.SUBSCRIBED]
    assert statuses[-1] == ChannelStatus.CLOSED


def test_poll_backoff_is_exponential_and_capped() -> None:
    assert [_poll_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]
    assert _poll_delay(20) == 30.0
    assert _poll_delay(0) == 0.5
