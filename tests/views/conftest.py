from __future__ import annotations

from collections.abc import Iterator

import pytest

from prereg.api.notify import Toast
from prereg.backend import LocalBackend
from prereg.core.bus import Bus, EventPayload
from prereg.services import ReferralService, RegistrationService, RewardService


@pytest.fixture
def registration(backend: LocalBackend) -> RegistrationService:
    return RegistrationService(backend, language="en")


@pytest.fixture
def referrals(registration: RegistrationService) -> ReferralService:
    return registration.referrals


@pytest.fixture
def rewards(backend: LocalBackend) -> RewardService:
    return RewardService(backend, language="en")


@pytest.fixture
def toasts(bus_context: Bus) -> Iterator[list[EventPayload]]:
    seen: list[EventPayload] = []
    unsubscribe = Bus.subscribe(Toast, seen.append)
    yield seen
    unsubscribe()
