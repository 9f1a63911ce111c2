"""Referral statistics and leaderboard views."""

from __future__ import annotations

from typing import Any, List, Optional

from ..api.models import LeaderboardEntry, RecentReferral, ReferralOverview, ReferralStats, ReferralUpdate
from ..lifecycle.binding import SubscriptionBinding
from ..lifecycle.interval import ManagedInterval
from ..lifecycle.registry import Registry
from ..lifecycle.tracker import AsyncTracker
from ..services.referral import ReferralService
from .base import View


class ReferralStatsView(View):
    """A user's referral statistics, patched live as referrals arrive.

    Switching the user re-opens the channel for the new user; the old one
    is closed first.
    """

    name = "referral-stats"

    def __init__(
        self,
        service: ReferralService,
        registry: Registry,
        user_id: Optional[str] = None,
        *,
        realtime: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, **kwargs)
        self._service = service
        self.user_id = user_id
        self.realtime = realtime
        self.overview: Optional[ReferralOverview] = None
        self.loader: AsyncTracker[ReferralOverview] = self._tracker(
            service.get_referral_stats,
            name="load",
            on_success=self._loaded,
        )
        self.binding = SubscriptionBinding(
            registry,
            "referral-stats",
            self._subscribe,
            owner=self.owner,
            deps=(user_id,),
            enabled=False,
            on_error=self._subscription_error,
        )

    @property
    def stats(self) -> Optional[ReferralStats]:
        return self.overview.stats if self.overview is not None else None

    @property
    def recent_referrals(self) -> List[RecentReferral]:
        return list(self.overview.recent_referrals) if self.overview is not None else []

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    @property
    def is_connected(self) -> bool:
        return self.binding.is_connected

    async def load(self) -> None:
        """Load statistics and open the channel when realtime is on."""
        if not self.user_id:
            return
        await self.loader.execute(self.user_id)
        await self.binding.update(enabled=self.realtime)

    async def refresh(self) -> None:
        if self.user_id:
            await self.loader.execute(self.user_id)

    async def set_user(self, user_id: Optional[str]) -> None:
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self.overview = None
        self.loader.reset()
        await self.binding.update(deps=(user_id,), enabled=self.realtime and bool(user_id))
        if user_id:
            await self.loader.execute(user_id)

    def _subscribe(self):
        if not self.user_id:
            return lambda: None
        return self._service.subscribe_to_referral_updates(
            self.user_id,
            self._on_update,
            on_error=self._subscription_error,
        )

    def _loaded(self, overview: ReferralOverview) -> None:
        self.overview = overview
        self.error = None
        self._changed()

    def _on_update(self, update: ReferralUpdate) -> None:
        overview = self.overview
        if overview is None or self.disposed or update.referrer_id != self.user_id:
            return
        stats = overview.stats.model_copy(update={"direct_referrals": update.new_referral_count})
        self.overview = overview.model_copy(update={"stats": stats})
        self._changed()


class LeaderboardView(View):
    """Top referrers, optionally re-polled on a fixed period."""

    name = "leaderboard"

    def __init__(
        self,
        service: ReferralService,
        registry: Registry,
        *,
        limit: int = 100,
        refresh_interval: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, **kwargs)
        self.limit = limit
        self.loader: AsyncTracker[List[LeaderboardEntry]] = self._tracker(
            service.get_referral_leaderboard,
            name="load",
        )
        self.interval = ManagedInterval(
            registry,
            self.refresh,
            refresh_interval,
            name="leaderboard-refresh",
            owner=self.owner,
        )

    @property
    def entries(self) -> List[LeaderboardEntry]:
        return list(self.loader.data or [])

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    async def load(self) -> None:
        """Load once and start the refresh timer if one is configured."""
        await self.refresh()
        self.interval.start()

    async def refresh(self) -> None:
        await self.loader.execute(self.limit)

    async def set_refresh_interval(self, period: Optional[float]) -> None:
        await self.interval.set_period(period)
