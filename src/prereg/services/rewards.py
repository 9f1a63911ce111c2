"""Reward tiers, unlocked rewards and claiming."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..api.errors import ErrorCode
from ..api.models import (
    ClaimResult,
    CurrentTierInfo,
    NextTierProgress,
    RewardTier,
    RewardUnlock,
    UnlockResult,
    UserReward,
    db_current_tier_to_info,
    db_reward_to_user_reward,
    db_tier_to_reward_tier,
    next_tier_progress,
)
from ..api.response import ApiResponse
from ..backend.base import ChangeEvent, Row, maybe_single
from ..util.error import log_error
from ..util.log import Log
from .base import ErrorHandler, Service, invoke

log = Log.create({"service": "services.rewards"})


class RewardService(Service):
    """Reward tier catalogue and per-user rewards."""

    async def _tiers_by_id(self) -> Dict[str, Row]:
        rows = await self._read(lambda: self.backend.select("reward_tiers", order="tier_order"))
        return {row["id"]: row for row in rows}

    async def get_reward_tiers(self) -> ApiResponse[List[RewardTier]]:
        try:
            rows = await self._read(lambda: self.backend.select("reward_tiers", order="tier_order"))
        except Exception as e:
            return self._fail(e, "get_reward_tiers")
        return ApiResponse.ok([db_tier_to_reward_tier(row) for row in rows])

    async def get_user_rewards(self, user_id: str) -> ApiResponse[List[UserReward]]:
        """Unlocked rewards of a user, newest first, with their tiers."""
        try:
            rows = await self._read(lambda: self.backend.select(
                "user_rewards",
                eq={"user_id": user_id},
                order="unlocked_at",
                descending=True,
            ))
            tiers = await self._tiers_by_id() if rows else {}
        except Exception as e:
            return self._fail(e, "get_user_rewards", {"user_id": user_id})
        return ApiResponse.ok([db_reward_to_user_reward(row, tiers.get(row["tier_id"])) for row in rows])

    async def claim_reward(self, reward_id: str, user_id: str) -> ApiResponse[ClaimResult]:
        """Mark an unlocked reward as claimed.

        Fails with ``NOT_FOUND`` when the reward does not belong to the user
        and with ``ALREADY_EXISTS`` when it was claimed before.
        """
        ids = {"id": reward_id, "user_id": user_id}
        try:
            reward = maybe_single(await self.backend.select("user_rewards", eq=ids))
            if reward is None:
                return self._error(ErrorCode.NOT_FOUND, details=ids)
            if reward.get("claimed"):
                return self._error(ErrorCode.ALREADY_EXISTS, details=ids)

            updated = maybe_single(await self.backend.update(
                "user_rewards",
                {"claimed": True, "claimed_at": datetime.now(timezone.utc).isoformat()},
                eq={**ids, "claimed": False},
            ))
            if updated is None:
                # A concurrent claim won the conditional update.
                return self._error(ErrorCode.ALREADY_EXISTS, details=ids)
            tiers = await self._tiers_by_id()
        except Exception as e:
            return self._fail(e, "claim_reward", ids)

        log.info("reward claimed", ids)
        return ApiResponse.ok(ClaimResult(reward=db_reward_to_user_reward(updated, tiers.get(updated["tier_id"]))))

    async def get_next_tier_progress(self, user_id: str) -> ApiResponse[Optional[NextTierProgress]]:
        """Progress towards the first tier above the highest one unlocked.

        ``None`` once the top tier has been reached.
        """
        try:
            stats = maybe_single(await self._read(lambda: self.backend.select(
                "user_referral_stats_mv",
                columns="direct_referrals",
                eq={"id": user_id},
            )))
        except Exception as e:
            return self._fail(e, "get_next_tier_progress:stats", {"user_id": user_id})
        current = int((stats or {}).get("direct_referrals") or 0)

        try:
            tiers = await self._tiers_by_id()
            rewards = await self._read(lambda: self.backend.select(
                "user_rewards",
                columns="tier_id",
                eq={"user_id": user_id},
            ))
        except Exception as e:
            return self._fail(e, "get_next_tier_progress:tiers", {"user_id": user_id})

        unlocked = [tiers[r["tier_id"]]["tier_order"] for r in rewards if r["tier_id"] in tiers]
        last_order = max(unlocked, default=0)
        candidates = sorted(
            (row for row in tiers.values() if row["tier_order"] > last_order),
            key=lambda row: row["tier_order"],
        )
        if not candidates:
            return ApiResponse.ok(None)
        return ApiResponse.ok(next_tier_progress(db_tier_to_reward_tier(candidates[0]), current))

    async def get_current_tier(self, user_id: str) -> ApiResponse[Optional[CurrentTierInfo]]:
        """The highest tier the user qualifies for; ``None`` without referrals."""
        try:
            row = maybe_single(await self._read(lambda: self.backend.select(
                "user_current_tier",
                eq={"user_id": user_id},
            )))
        except Exception as e:
            return self._fail(e, "get_current_tier", {"user_id": user_id})
        return ApiResponse.ok(db_current_tier_to_info(row) if row else None)

    async def check_and_unlock_rewards(self, user_id: str) -> ApiResponse[UnlockResult]:
        try:
            await self.backend.rpc("check_and_unlock_rewards", {"user_uuid": user_id})
        except Exception as e:
            return self._fail(e, "check_and_unlock_rewards", {"user_id": user_id})

        rewards = await self.get_user_rewards(user_id)
        if not rewards.success:
            return ApiResponse.fail(rewards.error)
        return ApiResponse.ok(UnlockResult(unlocked_rewards=rewards.data or []))

    def subscribe_to_reward_unlocks(
        self,
        user_id: str,
        callback: Callable[[RewardUnlock], Any],
        *,
        on_error: Optional[ErrorHandler] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> Callable[[], Awaitable[None]]:
        """Watch rewards unlocked for ``user_id``; returns the channel's close."""

        async def on_change(event: ChangeEvent) -> None:
            try:
                tier = maybe_single(await self.backend.select(
                    "reward_tiers",
                    eq={"id": event.new.get("tier_id")},
                ))
                if tier is None:
                    return
                await invoke(callback, RewardUnlock(
                    tier_id=tier["id"],
                    tier_name=tier["tier_name"],
                    reward_title=tier["reward_title"],
                ))
            except Exception as e:
                log_error(e, "subscribe_to_reward_unlocks:callback", {"user_id": user_id})
                if on_error:
                    on_error(e)

        channel = self.backend.channel(
            f"rewards:{user_id}",
            "user_rewards",
            on_change,
            eq={"user_id": user_id},
            event="INSERT",
            on_status=self._status_handler(f"rewards:{user_id}", on_error, on_connect, on_disconnect),
        )
        return channel.close
