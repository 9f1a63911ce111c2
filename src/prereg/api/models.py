"""Row schemas, view models and the conversions between them.

Rows arrive from the backend as plain dicts in the database's shape. Each
entity has exactly one conversion function, so the row shape never leaks
past the service layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

Playstyle = Literal["warrior", "assassin", "mage"]
Language = Literal["ko", "en", "ja"]

PLAYSTYLES = ("warrior", "assassin", "mage")
LANGUAGES = ("ko", "en", "ja")


def is_valid_language(value: Any) -> bool:
    return isinstance(value, str) and value in LANGUAGES


def is_valid_playstyle(value: Any) -> bool:
    return isinstance(value, str) and value in PLAYSTYLES


class LocalizedText(BaseModel):
    """A string in every supported language."""
    ko: str
    en: str
    ja: str

    def get(self, language: str) -> str:
        return getattr(self, language, None) or self.ko


# ---------------------------------------------------------------------------
# Row schemas
# ---------------------------------------------------------------------------


class UserRow(BaseModel):
    id: str
    nickname: str
    email: str
    phone: Optional[str] = None
    playstyle: Optional[Playstyle] = None
    language: Language = "ko"
    referral_code: str
    referred_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReferralRow(BaseModel):
    id: str
    referrer_id: str
    referee_id: str
    created_at: datetime


class RewardTierRow(BaseModel):
    id: str
    tier_name: str
    tier_order: int
    referral_requirement: int
    reward_title: LocalizedText
    reward_description: LocalizedText
    created_at: datetime


class UserRewardRow(BaseModel):
    id: str
    user_id: str
    tier_id: str
    unlocked_at: datetime
    claimed: bool = False
    claimed_at: Optional[datetime] = None


class UserReferralStatsRow(BaseModel):
    id: str
    nickname: str
    email: str
    referral_code: str
    direct_referrals: int = 0
    indirect_referrals: int = 0
    total_population: int = 0
    last_updated: datetime


# ---------------------------------------------------------------------------
# View models
# ---------------------------------------------------------------------------


class User(BaseModel):
    id: str
    email: str
    nickname: str
    phone: Optional[str] = None
    playstyle: Optional[Playstyle] = None
    referral_code: str
    referred_by: Optional[str] = None
    language: Language = "ko"
    created_at: datetime
    updated_at: datetime


class Referral(BaseModel):
    id: str
    referrer_id: str
    referee_id: str
    created_at: datetime


class ReferralStats(BaseModel):
    user_id: str
    nickname: str = ""
    email: str = ""
    referral_code: str = ""
    direct_referrals: int = 0
    indirect_referrals: int = 0
    total_population: int = 0
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RewardTier(BaseModel):
    id: str
    tier_name: str
    tier_order: int
    referral_requirement: int
    reward_title: LocalizedText
    reward_description: LocalizedText
    created_at: datetime


class UserReward(BaseModel):
    id: str
    user_id: str
    tier_id: str
    tier: Optional[RewardTier] = None
    unlocked_at: datetime
    claimed: bool = False
    claimed_at: Optional[datetime] = None


class RecentReferral(BaseModel):
    id: str
    nickname: str
    email: str
    created_at: datetime
    referral_count: int = 0


class ReferralOverview(BaseModel):
    """Statistics plus the most recent direct referrals."""
    stats: ReferralStats
    recent_referrals: List[RecentReferral] = Field(default_factory=list)


class ReferralNode(BaseModel):
    user_id: str
    nickname: str
    referral_code: str
    level: int = 1
    parent_id: str


class ReferralValidation(BaseModel):
    valid: bool
    referrer_nickname: Optional[str] = None
    referrer_id: Optional[str] = None


class RegistrationStats(BaseModel):
    total_users: int = 0
    total_referrals: int = 0
    today_registrations: int = 0
    target_milestone: int = 0
    completion_percentage: float = 0.0


class RegistrationStatsUpdate(BaseModel):
    """Realtime counter update."""
    total_users: int
    cumulative_registrations: int


class ReferralUpdate(BaseModel):
    referrer_id: str
    new_referral_count: int


class RewardUnlock(BaseModel):
    tier_id: str
    tier_name: str
    reward_title: LocalizedText


class LeaderboardEntry(BaseModel):
    rank: int
    nickname: str
    referral_code: str
    direct_referrals: int
    total_population: int


class CurrentTierInfo(BaseModel):
    user_id: str
    nickname: str
    direct_referrals: int
    tier_name: str
    tier_order: int
    reward_title: LocalizedText
    reward_description: LocalizedText
    referral_requirement: int
    referrals_to_next_tier: int


class NextTierProgress(BaseModel):
    tier: RewardTier
    current: int
    required: int
    remaining: int
    percentage: int


class ExistsResult(BaseModel):
    exists: bool


class ClaimResult(BaseModel):
    success: bool = True
    reward: UserReward


class UnlockResult(BaseModel):
    success: bool = True
    unlocked_rewards: List[UserReward] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

RowLike = Union[BaseModel, Dict[str, Any]]


def _row(schema: type[BaseModel], row: RowLike) -> Any:
    if isinstance(row, schema):
        return row
    if isinstance(row, BaseModel):
        row = row.model_dump()
    return schema.model_validate(row)


def db_user_to_user(row: RowLike) -> User:
    db: UserRow = _row(UserRow, row)
    return User(
        id=db.id,
        email=db.email,
        nickname=db.nickname,
        phone=db.phone or None,
        playstyle=db.playstyle or None,
        referral_code=db.referral_code,
        referred_by=db.referred_by or None,
        language=db.language,
        created_at=db.created_at,
        updated_at=db.updated_at,
    )


def db_referral_to_referral(row: RowLike) -> Referral:
    db: ReferralRow = _row(ReferralRow, row)
    return Referral(id=db.id, referrer_id=db.referrer_id, referee_id=db.referee_id, created_at=db.created_at)


def db_stats_to_referral_stats(row: RowLike) -> ReferralStats:
    db: UserReferralStatsRow = _row(UserReferralStatsRow, row)
    return ReferralStats(
        user_id=db.id,
        nickname=db.nickname,
        email=db.email,
        referral_code=db.referral_code,
        direct_referrals=db.direct_referrals,
        indirect_referrals=db.indirect_referrals,
        total_population=db.total_population,
        last_updated=db.last_updated,
    )


def db_tier_to_reward_tier(row: RowLike) -> RewardTier:
    db: RewardTierRow = _row(RewardTierRow, row)
    return RewardTier(
        id=db.id,
        tier_name=db.tier_name,
        tier_order=db.tier_order,
        referral_requirement=db.referral_requirement,
        reward_title=db.reward_title,
        reward_description=db.reward_description,
        created_at=db.created_at,
    )


def db_reward_to_user_reward(row: RowLike, tier: Optional[RowLike] = None) -> UserReward:
    db: UserRewardRow = _row(UserRewardRow, row)
    return UserReward(
        id=db.id,
        user_id=db.user_id,
        tier_id=db.tier_id,
        tier=db_tier_to_reward_tier(tier) if tier else None,
        unlocked_at=db.unlocked_at,
        claimed=db.claimed,
        claimed_at=db.claimed_at,
    )


def db_recent_to_recent_referral(row: Dict[str, Any]) -> RecentReferral:
    return RecentReferral(
        id=row["referee_id"],
        nickname=row["nickname"],
        email=row["email"],
        created_at=row["created_at"],
        referral_count=int(row.get("referral_count") or 0),
    )


def db_leaderboard_to_entry(row: Dict[str, Any]) -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=int(row["rank"]),
        nickname=row["nickname"],
        referral_code=row["referral_code"],
        direct_referrals=int(row["direct_referrals"]),
        total_population=int(row["total_population"]),
    )


def db_current_tier_to_info(row: Dict[str, Any]) -> CurrentTierInfo:
    return CurrentTierInfo.model_validate(row)


def db_global_stats_to_stats(row: Dict[str, Any]) -> RegistrationStats:
    return RegistrationStats(
        total_users=int(row.get("total_users") or 0),
        total_referrals=int(row.get("total_referrals") or 0),
        today_registrations=int(row.get("today_registrations") or 0),
        target_milestone=int(row.get("target_milestone") or 0),
        completion_percentage=float(row.get("completion_percentage") or 0),
    )


def next_tier_progress(tier: RewardTier, current: int) -> NextTierProgress:
    """Progress towards ``tier`` given the current direct referral count."""
    required = tier.referral_requirement
    percentage = min(100, round(current / required * 100)) if required > 0 else 100
    return NextTierProgress(
        tier=tier,
        current=current,
        required=required,
        remaining=max(0, required - current),
        percentage=percentage,
    )
