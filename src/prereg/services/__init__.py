"""Service layer: remote operations returning ``ApiResponse`` envelopes."""

from .base import RealtimeStatus, RealtimeStatusProps, Service, SubscriptionError
from .referral import ReferralService
from .registration import RegistrationService
from .rewards import RewardService

__all__ = [
    "RealtimeStatus",
    "RealtimeStatusProps",
    "ReferralService",
    "RegistrationService",
    "RewardService",
    "Service",
    "SubscriptionError",
]
