from __future__ import annotations

import pytest

from prereg.lifecycle.owner import Owner


@pytest.mark.anyio
async def test_dispose_runs_callbacks_in_reverse_order_once() -> None:
    owner = Owner("page")
    calls: list[str] = []

    owner.on_dispose(lambda: calls.append("first"))

    async def second() -> None:
        calls.append("second")

    owner.on_dispose(second)

    await owner.dispose()
    await owner.dispose()

    assert calls == ["second", "first"]
    assert owner.disposed is True


@pytest.mark.anyio
async def test_child_is_disposed_with_parent() -> None:
    parent = Owner("page")
    child = parent.child("widget")
    calls: list[str] = []
    child.on_dispose(lambda: calls.append("child"))

    await parent.dispose()

    assert child.disposed is True
    assert calls == ["child"]


@pytest.mark.anyio
async def test_failing_callback_does_not_stop_the_rest() -> None:
    owner = Owner()
    calls: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    owner.on_dispose(lambda: calls.append("ran"))
    owner.on_dispose(broken)

    await owner.dispose()
    assert calls == ["ran"]


@pytest.mark.anyio
async def test_detached_callback_is_not_run() -> None:
    owner = Owner()
    calls: list[str] = []
    detach = owner.on_dispose(lambda: calls.append("x"))
    detach()

    async with owner:
        pass

    assert calls == []
