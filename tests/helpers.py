"""Shared test helpers."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from prereg.api.models import User
from prereg.backend import LocalBackend
from prereg.services import RegistrationService


def memory_backend(**kwargs: Any) -> LocalBackend:
    return LocalBackend(":memory:", **kwargs)


async def register(
    service: RegistrationService,
    nickname: str,
    *,
    code: str | None = None,
    **fields: Any,
) -> User:
    """Register a user and fail the test on an error envelope."""
    data = {"email": f"{nickname.lower()}@example.com", "nickname": nickname, **fields}
    if code is not None:
        data["referredByCode"] = code
    response = await service.create_user(data)
    assert response.success, response.error
    assert response.data is not None
    return response.data


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)
