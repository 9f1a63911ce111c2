"""Views: long-lived page state built from trackers, bindings and timers."""

from .base import View
from .referral import LeaderboardView, ReferralStatsView
from .registration import (
    EmailValidation,
    FieldAvailability,
    NicknameValidation,
    RealtimeCounter,
    RegistrationStatsView,
    RegistrationView,
)
from .rewards import (
    ClaimRewardView,
    CurrentTierView,
    NextTierProgressView,
    RewardTiersView,
    UserRewardsView,
)

__all__ = [
    "ClaimRewardView",
    "CurrentTierView",
    "EmailValidation",
    "FieldAvailability",
    "LeaderboardView",
    "NextTierProgressView",
    "NicknameValidation",
    "RealtimeCounter",
    "ReferralStatsView",
    "RegistrationStatsView",
    "RegistrationView",
    "RewardTiersView",
    "UserRewardsView",
    "View",
]
