"""Reward tier, unlocked reward and claim views."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from ..api.models import ClaimResult, CurrentTierInfo, NextTierProgress, RewardTier, RewardUnlock, UserReward
from ..lifecycle.binding import SubscriptionBinding
from ..lifecycle.registry import Registry
from ..lifecycle.tracker import AsyncState, AsyncTracker
from ..services.base import invoke
from ..services.rewards import RewardService
from ..util.error import log_error
from .base import View


class RewardTiersView(View):
    name = "reward-tiers"

    def __init__(self, service: RewardService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self.loader: AsyncTracker[List[RewardTier]] = self._tracker(service.get_reward_tiers, name="load")

    @property
    def tiers(self) -> List[RewardTier]:
        return list(self.loader.data or [])

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    async def load(self) -> None:
        await self.loader.execute()


class UserRewardsView(View):
    """Rewards unlocked by one user.

    With realtime on, every unlock notification reloads the list and is
    passed on to ``on_new_reward``.
    """

    name = "user-rewards"

    def __init__(
        self,
        service: RewardService,
        registry: Registry,
        user_id: str,
        *,
        realtime: bool = True,
        on_new_reward: Optional[Callable[[RewardUnlock], Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, **kwargs)
        self._service = service
        self.user_id = user_id
        self.realtime = realtime
        self.on_new_reward = on_new_reward
        self.loader: AsyncTracker[List[UserReward]] = self._tracker(service.get_user_rewards, name="load")
        self.binding = SubscriptionBinding(
            registry,
            "user-rewards",
            self._subscribe,
            owner=self.owner,
            deps=(user_id,),
            enabled=False,
            on_error=self._subscription_error,
        )

    @property
    def rewards(self) -> List[UserReward]:
        return list(self.loader.data or [])

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    @property
    def is_connected(self) -> bool:
        return self.binding.is_connected

    async def load(self) -> None:
        await self.loader.execute(self.user_id)
        await self.binding.update(enabled=self.realtime)

    async def refresh(self) -> None:
        await self.loader.execute(self.user_id)

    def _subscribe(self):
        return self._service.subscribe_to_reward_unlocks(
            self.user_id,
            self._on_unlock,
            on_error=self._subscription_error,
        )

    async def _on_unlock(self, unlock: RewardUnlock) -> None:
        if self.disposed:
            return
        if self.on_new_reward is not None:
            try:
                await invoke(self.on_new_reward, unlock)
            except Exception as e:
                log_error(e, f"{self.name}:on_new_reward", {"tier_id": unlock.tier_id})
        await self.refresh()


class NextTierProgressView(View):
    name = "next-tier-progress"

    def __init__(self, service: RewardService, registry: Registry, user_id: str, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self.user_id = user_id
        self.loader: AsyncTracker[Optional[NextTierProgress]] = self._tracker(
            service.get_next_tier_progress,
            name="load",
        )

    @property
    def progress(self) -> Optional[NextTierProgress]:
        return self.loader.data

    @property
    def is_max_tier(self) -> bool:
        """True once loaded and no tier is left to reach."""
        return self.loader.is_success and self.loader.data is None

    async def load(self) -> None:
        await self.loader.execute(self.user_id)


class CurrentTierView(View):
    name = "current-tier"

    def __init__(self, service: RewardService, registry: Registry, user_id: str, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self.user_id = user_id
        self.loader: AsyncTracker[Optional[CurrentTierInfo]] = self._tracker(service.get_current_tier, name="load")

    @property
    def tier(self) -> Optional[CurrentTierInfo]:
        return self.loader.data

    async def load(self) -> None:
        await self.loader.execute(self.user_id)


class ClaimRewardView(View):
    """Claim button state."""

    name = "claim-reward"

    def __init__(self, service: RewardService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self.tracker: AsyncTracker[ClaimResult] = self._tracker(service.claim_reward, name="claim")

    @property
    def is_loading(self) -> bool:
        return self.tracker.is_loading

    @property
    def is_success(self) -> bool:
        return self.tracker.is_success

    @property
    def reward(self) -> Optional[UserReward]:
        result = self.tracker.data
        return result.reward if result is not None else None

    def claim(self, reward_id: str, user_id: str) -> asyncio.Task[AsyncState[ClaimResult]]:
        self.error = None
        return self.tracker.execute(reward_id, user_id)

    def reset(self) -> None:
        self.error = None
        self.tracker.reset()
