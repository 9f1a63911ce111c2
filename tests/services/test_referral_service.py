from __future__ import annotations

import pytest

from prereg.api.models import ReferralUpdate
from prereg.backend import LocalBackend
from prereg.services import ReferralService, RegistrationService
from tests.helpers import register, wait_for


@pytest.fixture
def registration(backend: LocalBackend) -> RegistrationService:
    return RegistrationService(backend, language="en")


@pytest.fixture
def referrals(registration: RegistrationService) -> ReferralService:
    return registration.referrals


@pytest.mark.anyio
async def test_validate_referral_code(registration: RegistrationService, referrals: ReferralService) -> None:
    owner = await register(registration, "owner")

    valid = await referrals.validate_referral_code(owner.referral_code.lower())
    unknown = await referrals.validate_referral_code("ZZZZZZZZ")
    short = await referrals.validate_referral_code("AB1")
    empty = await referrals.validate_referral_code(None)

    assert valid.data.valid is True
    assert valid.data.referrer_id == owner.id
    assert valid.data.referrer_nickname == "owner"
    assert unknown.data.valid is False
    assert short.data.valid is False
    assert empty.data.valid is False


@pytest.mark.anyio
async def test_referral_stats_and_recent(registration: RegistrationService, referrals: ReferralService) -> None:
    root = await register(registration, "root")
    child = await register(registration, "child", code=root.referral_code)
    await register(registration, "grandchild", code=child.referral_code)

    overview = (await referrals.get_referral_stats(root.id)).data

    assert overview.stats.direct_referrals == 1
    assert overview.stats.indirect_referrals == 1
    assert overview.stats.total_population == 2
    assert [(r.nickname, r.referral_count) for r in overview.recent_referrals] == [("child", 1)]


@pytest.mark.anyio
async def test_stats_for_unknown_user_are_zeroed(referrals: ReferralService) -> None:
    overview = (await referrals.get_referral_stats("ghost")).data

    assert overview.stats.user_id == "ghost"
    assert overview.stats.direct_referrals == 0
    assert overview.recent_referrals == []


@pytest.mark.anyio
async def test_referral_network_levels(registration: RegistrationService, referrals: ReferralService) -> None:
    root = await register(registration, "root")
    a = await register(registration, "alpha", code=root.referral_code)
    b = await register(registration, "bravo", code=a.referral_code)
    await register(registration, "charlie", code=b.referral_code)

    two_levels = (await referrals.get_referral_network(root.id, depth=2)).data
    everything = (await referrals.get_referral_network(root.id, depth=5)).data

    assert [(n.nickname, n.level, n.parent_id) for n in two_levels] == [
        ("alpha", 1, root.id),
        ("bravo", 2, a.id),
    ]
    assert [n.nickname for n in everything] == ["alpha", "bravo", "charlie"]
    assert (await referrals.get_referral_network(root.id, depth=0)).data == []


@pytest.mark.anyio
async def test_leaderboard_ranks_by_population(registration: RegistrationService, referrals: ReferralService) -> None:
    big = await register(registration, "big")
    small = await register(registration, "small")
    await register(registration, "f1", code=big.referral_code)
    await register(registration, "f2", code=big.referral_code)
    await register(registration, "f3", code=big.referral_code)
    await register(registration, "f4", code=small.referral_code)

    board = (await referrals.get_referral_leaderboard(limit=2)).data

    assert [(e.rank, e.nickname, e.total_population) for e in board] == [(1, "big", 3), (2, "small", 1)]


@pytest.mark.anyio
async def test_add_referral_rules(registration: RegistrationService, referrals: ReferralService, backend: LocalBackend) -> None:
    a = await register(registration, "alpha")
    b = await register(registration, "bravo")

    self_ref = await referrals.add_referral(a.id, a.id)
    added = await referrals.add_referral(a.id, b.id)
    again = await referrals.add_referral(a.id, b.id)
    missing = await referrals.add_referral(a.id, "ghost")

    assert self_ref.error.code == "SELF_REFERRAL_NOT_ALLOWED"
    assert added.data.referrer_id == a.id
    assert again.error.code == "ALREADY_EXISTS"
    assert missing.error.code == "INVALID_REFERRAL_CODE"
    assert len(await backend.select("user_rewards", eq={"user_id": a.id})) == 1


@pytest.mark.anyio
async def test_refresh_referral_stats(referrals: ReferralService) -> None:
    assert (await referrals.refresh_referral_stats()).data is True


@pytest.mark.anyio
async def test_referral_update_subscription(registration: RegistrationService, referrals: ReferralService) -> None:
    owner = await register(registration, "owner")
    other = await register(registration, "other")
    updates: list[ReferralUpdate] = []

    close = referrals.subscribe_to_referral_updates(owner.id, updates.append)
    await register(registration, "joined", code=other.referral_code)
    await register(registration, "first", code=owner.referral_code)
    await register(registration, "second", code=owner.referral_code)
    await wait_for(lambda: len(updates) == 2)
    await close()

    assert all(u.referrer_id == owner.id for u in updates)
    assert updates[-1].new_referral_count == 2
