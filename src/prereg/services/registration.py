"""Pre-registration: availability checks, sign-up and global counters."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

from ..api.errors import DEFAULT_LANGUAGE, ErrorCode
from ..api.forms import RegistrationForm, validate_registration
from ..api.models import (
    ExistsResult,
    RegistrationStats,
    RegistrationStatsUpdate,
    User,
    db_global_stats_to_stats,
    db_user_to_user,
)
from ..api.response import ApiResponse
from ..backend.base import Backend, ChangeEvent, maybe_single, single
from ..core.config_schema import RetryConfig
from ..util.error import log_error
from ..util.log import Log
from .base import ErrorHandler, Service, invoke
from .referral import ReferralService

log = Log.create({"service": "services.registration"})


class RegistrationService(Service):
    """User sign-up and registration statistics."""

    def __init__(
        self,
        backend: Backend,
        language: str = DEFAULT_LANGUAGE,
        retry: Optional[RetryConfig] = None,
        referrals: Optional[ReferralService] = None,
    ) -> None:
        super().__init__(backend, language, retry)
        self.referrals = referrals or ReferralService(backend, language, retry)

    async def _exists(self, column: str, value: str, context: str) -> ApiResponse[ExistsResult]:
        try:
            rows = await self._read(lambda: self.backend.select("users", columns="id", eq={column: value}))
            row = maybe_single(rows)
        except Exception as e:
            return self._fail(e, context, {column: value})
        return ApiResponse.ok(ExistsResult(exists=row is not None))

    async def check_email_exists(self, email: str) -> ApiResponse[ExistsResult]:
        return await self._exists("email", email.strip().lower(), "check_email_exists")

    async def check_nickname_exists(self, nickname: str) -> ApiResponse[ExistsResult]:
        return await self._exists("nickname", nickname.strip(), "check_nickname_exists")

    async def create_user(self, data: Mapping[str, Any] | RegistrationForm) -> ApiResponse[User]:
        """Register a user.

        Steps: validate the form, reject a taken e-mail or nickname, resolve
        the referral code, insert the user, then record the referral and
        unlock the referrer's rewards. Failures after the user row exists
        are logged and do not fail the registration.
        """
        form, error = validate_registration(data, self.language)
        if form is None:
            return ApiResponse.fail(error)

        email = await self.check_email_exists(form.email)
        if email.data is not None and email.data.exists:
            return self._error(ErrorCode.EMAIL_DUPLICATE, field="email")

        nickname = await self.check_nickname_exists(form.nickname)
        if nickname.data is not None and nickname.data.exists:
            return self._error(ErrorCode.NICKNAME_DUPLICATE, field="nickname")

        referrer_id: Optional[str] = None
        if form.referred_by_code:
            referral = await self.referrals.validate_referral_code(form.referred_by_code)
            if not referral.success or referral.data is None or not referral.data.valid:
                return self._error(ErrorCode.INVALID_REFERRAL_CODE, field="referred_by_code")
            referrer_id = referral.data.referrer_id

        try:
            row = single(await self.backend.insert("users", [{
                "email": form.email,
                "nickname": form.nickname,
                "phone": form.phone,
                "playstyle": form.playstyle,
                "referred_by": referrer_id,
                "language": form.language,
            }]))
        except Exception as e:
            return self._fail(e, "create_user", {"email": form.email, "nickname": form.nickname})

        if referrer_id:
            await self._link_referrer(referrer_id, row["id"])

        try:
            await self.backend.rpc("refresh_referral_stats")
        except Exception as e:
            log_error(e, "create_user:refresh_stats")

        user = db_user_to_user(row)
        log.info("user registered", {"user_id": user.id, "referred": referrer_id is not None})
        return ApiResponse.ok(user)

    async def _link_referrer(self, referrer_id: str, referee_id: str) -> None:
        try:
            await self.backend.insert("referrals", [{"referrer_id": referrer_id, "referee_id": referee_id}])
        except Exception as e:
            log_error(e, "create_user:referral", {"referrer_id": referrer_id, "referee_id": referee_id})
            return
        try:
            await self.backend.rpc("check_and_unlock_rewards", {"user_uuid": referrer_id})
        except Exception as e:
            log_error(e, "create_user:unlock_rewards", {"referrer_id": referrer_id})

    async def get_user_by_id(self, user_id: str) -> ApiResponse[User]:
        try:
            row = single(await self._read(lambda: self.backend.select("users", eq={"id": user_id})))
        except Exception as e:
            return self._fail(e, "get_user_by_id", {"user_id": user_id})
        return ApiResponse.ok(db_user_to_user(row))

    async def get_user_by_referral_code(self, code: str) -> ApiResponse[User]:
        try:
            row = single(await self._read(lambda: self.backend.select(
                "users",
                eq={"referral_code": code.upper()},
            )))
        except Exception as e:
            return self._fail(e, "get_user_by_referral_code", {"code": code})
        return ApiResponse.ok(db_user_to_user(row))

    async def get_registration_stats(self) -> ApiResponse[RegistrationStats]:
        try:
            result = await self._read(lambda: self.backend.rpc("get_global_stats"))
            row = single(result if isinstance(result, list) else [result])
        except Exception as e:
            return self._fail(e, "get_registration_stats")
        return ApiResponse.ok(db_global_stats_to_stats(row))

    async def get_total_registrations(self) -> ApiResponse[int]:
        """Cumulative registrations from the latest daily stats row."""
        try:
            row = maybe_single(await self._read(lambda: self.backend.select(
                "registration_stats",
                columns="cumulative_registrations",
                order="stat_date",
                descending=True,
                limit=1,
            )))
        except Exception as e:
            return self._fail(e, "get_total_registrations")
        return ApiResponse.ok(int((row or {}).get("cumulative_registrations") or 0))

    def subscribe_to_registration_stats(
        self,
        callback: Callable[[RegistrationStatsUpdate], Any],
        on_error: Optional[ErrorHandler] = None,
        *,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
    ) -> Callable[[], Awaitable[None]]:
        """Watch the cumulative registration counter; returns the channel's close."""

        async def on_change(event: ChangeEvent) -> None:
            try:
                total = int(event.new.get("cumulative_registrations") or 0)
                await invoke(callback, RegistrationStatsUpdate(total_users=total, cumulative_registrations=total))
            except Exception as e:
                log_error(e, "subscribe_to_registration_stats:callback")
                if on_error:
                    on_error(e)

        channel = self.backend.channel(
            "registration-stats",
            "registration_stats",
            on_change,
            on_status=self._status_handler("registration-stats", on_error, on_connect, on_disconnect),
        )
        return channel.close
