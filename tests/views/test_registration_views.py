from __future__ import annotations

import pytest

from prereg.backend import LocalBackend
from prereg.core.bus import EventPayload
from prereg.lifecycle.registry import Registry, SubscriptionKind
from prereg.services import RegistrationService
from prereg.views import (
    EmailValidation,
    NicknameValidation,
    RealtimeCounter,
    RegistrationStatsView,
    RegistrationView,
)
from tests.helpers import register, settle, wait_for


@pytest.mark.anyio
async def test_register_success(registration: RegistrationService, registry: Registry) -> None:
    view = RegistrationView(registration, registry)
    changes: list[bool] = []
    view.on_change(lambda: changes.append(view.is_loading))

    state = await view.register({"email": "hero@example.com", "nickname": "hero"})

    assert state.is_success
    assert view.is_success
    assert view.user.nickname == "hero"
    assert view.error is None
    assert changes == [True, False]


@pytest.mark.anyio
async def test_register_failure_sets_error_and_toasts(
    registration: RegistrationService,
    registry: Registry,
    toasts: list[EventPayload],
) -> None:
    await register(registration, "hero")
    view = RegistrationView(registration, registry)

    await view.register({"email": "hero@example.com", "nickname": "other"})

    assert view.error.code == "EMAIL_DUPLICATE"
    assert view.user is None
    assert [t.properties["code"] for t in toasts] == ["EMAIL_DUPLICATE"]
    assert toasts[0].properties["level"] == "error"

    view.reset()
    assert view.error is None
    assert view.tracker.state.is_idle


@pytest.mark.anyio
async def test_email_validation_debounces_and_checks(
    registration: RegistrationService,
    registry: Registry,
    toasts: list[EventPayload],
) -> None:
    await register(registration, "taken")
    view = EmailValidation(registration, registry, delay=0.01)

    view.set("not-an-email")
    await wait_for(lambda: view.value == "not-an-email")
    assert view.is_valid is False
    assert view.is_available is False

    view.set(" taken@example.com ")
    await wait_for(lambda: view.value == "taken@example.com" and view.checks.is_success)
    assert view.exists is True
    assert view.is_available is False

    view.set("free@example.com")
    await wait_for(lambda: view.value == "free@example.com" and view.checks.is_success)
    assert view.exists is False
    assert view.is_available is True
    assert toasts == []

    await view.dispose()


@pytest.mark.anyio
async def test_rapid_input_checks_only_the_settled_value(registration: RegistrationService, registry: Registry) -> None:
    view = NicknameValidation(registration, registry, delay=0.02)
    checked: list[str] = []
    view.checks.on_change(lambda state: checked.append(view.value) if state.is_loading else None)

    for partial in ("h", "he", "her", "hero"):
        view.set(partial)
    await wait_for(lambda: view.checks.is_success)

    assert checked == ["hero"]
    assert view.is_available is True


@pytest.mark.anyio
async def test_nickname_validation_length(registration: RegistrationService, registry: Registry) -> None:
    view = NicknameValidation(registration, registry, delay=0)

    view.set("x")
    await wait_for(lambda: view.value == "x")

    assert view.is_valid is False
    assert view.checks.state.is_idle


@pytest.mark.anyio
async def test_stats_view_opens_channel_after_load(registration: RegistrationService, registry: Registry) -> None:
    view = RegistrationStatsView(registration, registry)
    assert registry.count == 0

    await view.load()

    assert view.stats.total_users == 0
    assert view.is_connected
    assert registry.count == 1

    await register(registration, "one")
    await wait_for(lambda: view.stats.total_users == 1)

    await view.dispose()
    assert registry.count == 0


@pytest.mark.anyio
async def test_stats_view_without_realtime(registration: RegistrationService, registry: Registry) -> None:
    view = RegistrationStatsView(registration, registry, realtime=False)

    await view.load()

    assert view.stats is not None
    assert registry.count == 0
    assert not view.is_connected


@pytest.mark.anyio
async def test_realtime_counter_follows_registrations(
    registration: RegistrationService,
    registry: Registry,
    backend: LocalBackend,
) -> None:
    await register(registration, "early")
    counter = RealtimeCounter(registration, registry)
    totals: list[int] = []
    counter.on_change(lambda: totals.append(counter.total))

    await counter.start()

    assert counter.total == 1
    assert counter.is_connected
    record = registry.list()[0]
    assert record.kind == SubscriptionKind.REALTIME
    assert record.metadata["type"] == "registration_stats"

    await register(registration, "late")
    await wait_for(lambda: counter.total == 2)

    async with counter:
        pass
    assert registry.count == 0
    assert backend.channel_count == 0

    await register(registration, "after")
    await settle()
    assert counter.total == 2
    assert totals[-1] == 2


@pytest.mark.anyio
async def test_counter_reports_a_failed_channel_as_network_error(
    registration: RegistrationService, registry: Registry, monkeypatch
) -> None:  # type: ignore[no-untyped-def]
    def refuse(*args, **kwargs):
        raise ConnectionError("realtime unavailable")

    monkeypatch.setattr(registration, "subscribe_to_registration_stats", refuse)
    counter = RealtimeCounter(registration, registry)

    await counter.start()

    assert counter.total == 0
    assert not counter.is_connected
    assert counter.error.code == "NETWORK_ERROR"
    assert counter.error.details == "realtime unavailable"
    assert registry.count == 0
    await counter.dispose()
