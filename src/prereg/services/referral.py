"""Referral operations: code lookup, statistics, network, leaderboard."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional

from ..api.errors import ErrorCode
from ..api.models import (
    LeaderboardEntry,
    Referral,
    ReferralNode,
    ReferralOverview,
    ReferralStats,
    ReferralUpdate,
    ReferralValidation,
    db_leaderboard_to_entry,
    db_recent_to_recent_referral,
    db_referral_to_referral,
    db_stats_to_referral_stats,
)
from ..api.response import ApiResponse
from ..backend.base import ChangeEvent, maybe_single, single
from ..util.error import log_error
from ..util.log import Log
from .base import ErrorHandler, Service, invoke

log = Log.create({"service": "services.referral"})

MIN_REFERRAL_CODE_LENGTH = 6
RECENT_REFERRALS_LIMIT = 10


class ReferralService(Service):
    """Referral tree queries and manual referral management."""

    async def validate_referral_code(self, code: Optional[str]) -> ApiResponse[ReferralValidation]:
        """Resolve a referral code to its owner.

        Codes shorter than six characters are reported invalid without a
        lookup.
        """
        if not code or len(code) < MIN_REFERRAL_CODE_LENGTH:
            return ApiResponse.ok(ReferralValidation(valid=False))
        try:
            rows = await self._read(lambda: self.backend.select(
                "users",
                columns="id, nickname",
                eq={"referral_code": code.upper()},
            ))
            row = maybe_single(rows)
        except Exception as e:
            return self._fail(e, "validate_referral_code", {"code": code})

        if row is None:
            return ApiResponse.ok(ReferralValidation(valid=False))
        return ApiResponse.ok(ReferralValidation(
            valid=True,
            referrer_nickname=row.get("nickname"),
            referrer_id=row.get("id"),
        ))

    async def get_referral_stats(self, user_id: str) -> ApiResponse[ReferralOverview]:
        """Statistics and the ten most recent direct referrals.

        A user without statistics gets zeroed stats. Failing to load the
        recent referrals still returns the stats.
        """
        try:
            rows = await self._read(lambda: self.backend.select("user_referral_stats_mv", eq={"id": user_id}))
            row = maybe_single(rows)
        except Exception as e:
            return self._fail(e, "get_referral_stats:stats", {"user_id": user_id})

        stats = db_stats_to_referral_stats(row) if row else ReferralStats(user_id=user_id)

        try:
            recent = await self._read(lambda: self.backend.rpc(
                "get_recent_referrals",
                {"user_uuid": user_id, "limit_count": RECENT_REFERRALS_LIMIT},
            ))
        except Exception as e:
            log_error(e, "get_referral_stats:recent", {"user_id": user_id})
            return ApiResponse.ok(ReferralOverview(stats=stats))

        return ApiResponse.ok(ReferralOverview(
            stats=stats,
            recent_referrals=[db_recent_to_recent_referral(item) for item in (recent or [])],
        ))

    async def get_referral_network(self, user_id: str, depth: int = 3) -> ApiResponse[List[ReferralNode]]:
        """Referees of ``user_id`` down to ``depth`` levels, breadth first."""
        nodes: List[ReferralNode] = []
        frontier = [user_id]
        seen = {user_id}
        try:
            for level in range(1, max(depth, 0) + 1):
                next_frontier: List[str] = []
                for parent in frontier:
                    referrals = await self._read(lambda parent=parent: self.backend.select(
                        "referrals",
                        eq={"referrer_id": parent},
                        order="created_at",
                        descending=True,
                    ))
                    for referral in referrals:
                        referee_id = referral["referee_id"]
                        if referee_id in seen:
                            continue
                        seen.add(referee_id)
                        users = await self._read(lambda referee_id=referee_id: self.backend.select(
                            "users",
                            columns="id, nickname, referral_code",
                            eq={"id": referee_id},
                        ))
                        user = maybe_single(users)
                        if user is None:
                            continue
                        nodes.append(ReferralNode(
                            user_id=user["id"],
                            nickname=user["nickname"],
                            referral_code=user["referral_code"],
                            level=level,
                            parent_id=parent,
                        ))
                        next_frontier.append(referee_id)
                frontier = next_frontier
                if not frontier:
                    break
        except Exception as e:
            return self._fail(e, "get_referral_network", {"user_id": user_id, "depth": depth})
        return ApiResponse.ok(nodes)

    async def get_referral_leaderboard(self, limit: int = 100) -> ApiResponse[List[LeaderboardEntry]]:
        try:
            rows = await self._read(lambda: self.backend.select("leaderboard", order="rank", limit=limit))
        except Exception as e:
            return self._fail(e, "get_referral_leaderboard", {"limit": limit})
        return ApiResponse.ok([db_leaderboard_to_entry(row) for row in rows])

    async def refresh_referral_stats(self) -> ApiResponse[bool]:
        """Refresh the materialized statistics view."""
        try:
            await self.backend.rpc("refresh_referral_stats")
        except Exception as e:
            return self._fail(e, "refresh_referral_stats")
        return ApiResponse.ok(True)

    async def add_referral(self, referrer_id: str, referee_id: str) -> ApiResponse[Referral]:
        """Record a referral by hand; registration normally does this."""
        if referrer_id == referee_id:
            return self._error(ErrorCode.SELF_REFERRAL_NOT_ALLOWED)

        try:
            existing = await self._read(lambda: self.backend.select(
                "referrals",
                columns="id",
                eq={"referrer_id": referrer_id, "referee_id": referee_id},
            ))
            if maybe_single(existing) is not None:
                return self._error(ErrorCode.ALREADY_EXISTS, details={"referrer_id": referrer_id, "referee_id": referee_id})

            row = single(await self.backend.insert(
                "referrals",
                [{"referrer_id": referrer_id, "referee_id": referee_id}],
            ))
        except Exception as e:
            return self._fail(e, "add_referral", {"referrer_id": referrer_id, "referee_id": referee_id})

        try:
            await self.backend.rpc("check_and_unlock_rewards", {"user_uuid": referrer_id})
        except Exception as e:
            log_error(e, "add_referral:unlock_rewards", {"referrer_id": referrer_id})

        log.info("referral added", {"referrer_id": referrer_id, "referee_id": referee_id})
        return ApiResponse.ok(db_referral_to_referral(row))

    def subscribe_to_referral_updates(
        self,
        user_id: str,
        callback: Callable[[ReferralUpdate], Any],
        *,
        on_error: Optional[ErrorHandler] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> Callable[[], Awaitable[None]]:
        """Watch new referrals of ``user_id``; returns the channel's close."""

        async def on_change(event: ChangeEvent) -> None:
            try:
                rows = await self.backend.select(
                    "user_referral_stats_mv",
                    columns="direct_referrals",
                    eq={"id": user_id},
                )
                row = maybe_single(rows) or {}
                await invoke(callback, ReferralUpdate(
                    referrer_id=user_id,
                    new_referral_count=int(row.get("direct_referrals") or 0),
                ))
            except Exception as e:
                log_error(e, "subscribe_to_referral_updates:callback", {"user_id": user_id})
                if on_error:
                    on_error(e)

        channel = self.backend.channel(
            f"referrals:{user_id}",
            "referrals",
            on_change,
            eq={"referrer_id": user_id},
            event="INSERT",
            on_status=self._status_handler(f"referrals:{user_id}", on_error, on_connect, on_disconnect),
        )
        return channel.close
