from __future__ import annotations

import pytest

from prereg.lifecycle.registry import Registry, SubscriptionKind
from prereg.services import ReferralService, RegistrationService
from prereg.views import LeaderboardView, ReferralStatsView
from tests.helpers import register, settle, wait_for


@pytest.mark.anyio
async def test_stats_view_patches_direct_referrals(
    registration: RegistrationService,
    referrals: ReferralService,
    registry: Registry,
) -> None:
    owner = await register(registration, "owner")
    view = ReferralStatsView(referrals, registry, owner.id)

    await view.load()
    assert view.stats.direct_referrals == 0
    assert view.recent_referrals == []
    assert view.is_connected
    assert registry.count == 1

    await register(registration, "friend", code=owner.referral_code)
    await wait_for(lambda: view.stats.direct_referrals == 1)

    await view.refresh()
    assert [r.nickname for r in view.recent_referrals] == ["friend"]

    await view.dispose()
    assert registry.count == 0


@pytest.mark.anyio
async def test_switching_user_reopens_channel(
    registration: RegistrationService,
    referrals: ReferralService,
    registry: Registry,
) -> None:
    first = await register(registration, "first")
    second = await register(registration, "second")
    view = ReferralStatsView(referrals, registry, first.id)
    await view.load()
    old_id = registry.list()[0].id

    await view.set_user(second.id)

    assert view.stats.user_id == second.id
    assert registry.count == 1
    assert registry.list()[0].id != old_id

    await register(registration, "for-first", code=first.referral_code)
    await settle()
    assert view.stats.direct_referrals == 0

    await register(registration, "for-second", code=second.referral_code)
    await wait_for(lambda: view.stats.direct_referrals == 1)

    await view.set_user(None)
    assert view.stats is None
    assert registry.count == 0


@pytest.mark.anyio
async def test_stats_view_without_user_does_nothing(referrals: ReferralService, registry: Registry) -> None:
    view = ReferralStatsView(referrals, registry)

    await view.load()

    assert view.stats is None
    assert view.loader.state.is_idle
    assert registry.count == 0


@pytest.mark.anyio
async def test_stats_view_without_realtime(
    registration: RegistrationService,
    referrals: ReferralService,
    registry: Registry,
) -> None:
    owner = await register(registration, "owner")
    view = ReferralStatsView(referrals, registry, owner.id, realtime=False)

    await view.load()

    assert view.stats is not None
    assert registry.count == 0


@pytest.mark.anyio
async def test_leaderboard_refreshes_on_interval(
    registration: RegistrationService,
    referrals: ReferralService,
    registry: Registry,
) -> None:
    leader = await register(registration, "leader")
    await register(registration, "fan1", code=leader.referral_code)
    view = LeaderboardView(referrals, registry, limit=10, refresh_interval=0.01)

    await view.load()
    assert [(e.nickname, e.direct_referrals) for e in view.entries] == [("leader", 1)]
    assert [r.kind for r in registry.list()] == [SubscriptionKind.INTERVAL]

    await register(registration, "fan2", code=leader.referral_code)
    await wait_for(lambda: view.entries[0].direct_referrals == 2)

    await view.set_refresh_interval(None)
    assert registry.count == 0
    assert not view.interval.running


@pytest.mark.anyio
async def test_leaderboard_without_interval(referrals: ReferralService, registry: Registry) -> None:
    view = LeaderboardView(referrals, registry)

    await view.load()

    assert view.entries == []
    assert registry.count == 0

    await view.set_refresh_interval(5.0)
    assert registry.count == 1
    await view.dispose()
    assert registry.count == 0
