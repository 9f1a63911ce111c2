"""Registration form state, field availability and registration counters."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

from ..api.forms import EMAIL_PATTERN, RegistrationForm
from ..api.models import ExistsResult, RegistrationStats, RegistrationStatsUpdate, User
from ..lifecycle.binding import SubscriptionBinding
from ..lifecycle.debounce import Debounced
from ..lifecycle.registry import Registry
from ..lifecycle.tracker import AsyncState, AsyncTracker
from ..services.registration import RegistrationService
from .base import View


class RegistrationView(View):
    """Submission state of the registration form."""

    name = "registration"

    def __init__(self, service: RegistrationService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self.tracker: AsyncTracker[User] = self._tracker(service.create_user, name="create_user")

    @property
    def user(self) -> Optional[User]:
        return self.tracker.data

    @property
    def is_loading(self) -> bool:
        return self.tracker.is_loading

    @property
    def is_success(self) -> bool:
        return self.tracker.is_success

    def register(self, data: Mapping[str, Any] | RegistrationForm) -> asyncio.Task[AsyncState[User]]:
        self.error = None
        return self.tracker.execute(data)

    def reset(self) -> None:
        self.error = None
        self.tracker.reset()


class FieldAvailability(View):
    """Debounced "is this value still free" check for one form field."""

    name = "field"

    def __init__(
        self,
        registry: Registry,
        check: Any,
        *,
        delay: float = 0.5,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("toast", False)
        super().__init__(registry, **kwargs)
        self.is_valid = False
        self.checks: AsyncTracker[ExistsResult] = self._tracker(check, name="check")
        self.input: Debounced[str] = Debounced("", delay, owner=self.owner)
        self.input.on_change(self._validate)

    def well_formed(self, value: str) -> bool:
        return True

    def set(self, value: str) -> None:
        """Feed the current field content."""
        self.input.set(value.strip())

    @property
    def value(self) -> str:
        return self.input.value

    @property
    def is_checking(self) -> bool:
        return self.checks.is_loading

    @property
    def exists(self) -> bool:
        data = self.checks.data
        return bool(data is not None and data.exists)

    @property
    def is_available(self) -> bool:
        return self.is_valid and not self.is_checking and not self.exists

    def _validate(self, value: str) -> None:
        if not value or not self.well_formed(value):
            self.is_valid = False
            self.checks.reset()
            self._changed()
            return
        self.is_valid = True
        self.checks.execute(value)


class EmailValidation(FieldAvailability):
    name = "email-validation"

    def __init__(self, service: RegistrationService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, service.check_email_exists, **kwargs)

    def well_formed(self, value: str) -> bool:
        return bool(EMAIL_PATTERN.match(value))


class NicknameValidation(FieldAvailability):
    name = "nickname-validation"

    def __init__(self, service: RegistrationService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, service.check_nickname_exists, **kwargs)

    def well_formed(self, value: str) -> bool:
        return 2 <= len(value) <= 50


class RegistrationStatsView(View):
    """Global registration statistics kept current by a realtime channel.

    The channel is opened only after the first successful load, since
    realtime updates patch the loaded statistics.
    """

    name = "registration-stats"

    def __init__(
        self,
        service: RegistrationService,
        registry: Registry,
        *,
        realtime: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry, **kwargs)
        self._service = service
        self.realtime = realtime
        self.stats: Optional[RegistrationStats] = None
        self.loader: AsyncTracker[RegistrationStats] = self._tracker(
            service.get_registration_stats,
            name="load",
            on_success=self._loaded,
        )
        self.binding = SubscriptionBinding(
            registry,
            "registration-stats",
            self._subscribe,
            owner=self.owner,
            enabled=False,
            on_error=self._subscription_error,
        )

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    @property
    def is_connected(self) -> bool:
        return self.binding.is_connected

    async def load(self) -> None:
        await self.loader.execute()

    refresh = load

    async def _loaded(self, stats: RegistrationStats) -> None:
        self.stats = stats
        self.error = None
        self._changed()
        await self.binding.update(enabled=self.realtime and self.stats is not None)

    def _subscribe(self):
        return self._service.subscribe_to_registration_stats(self._on_update, self._subscription_error)

    def _on_update(self, update: RegistrationStatsUpdate) -> None:
        if self.stats is None or self.disposed:
            return
        self.stats = self.stats.model_copy(update={"total_users": update.total_users})
        self._changed()


class RealtimeCounter(View):
    """Live cumulative registration count."""

    name = "realtime-counter"

    def __init__(self, service: RegistrationService, registry: Registry, **kwargs: Any) -> None:
        super().__init__(registry, **kwargs)
        self._service = service
        self.total = 0
        self.is_connected = False
        self.loader: AsyncTracker[int] = self._tracker(
            service.get_total_registrations,
            name="load",
            on_success=self._loaded,
        )
        self.binding = SubscriptionBinding(
            registry,
            "registration-counter",
            self._subscribe,
            owner=self.owner,
            enabled=False,
            on_error=self._subscription_error,
            metadata={"type": "registration_stats"},
        )

    @property
    def is_loading(self) -> bool:
        return self.loader.is_loading

    async def start(self) -> None:
        """Load the current total and open the live channel."""
        task = self.loader.execute()
        await self.binding.update(enabled=True)
        await task

    def _loaded(self, total: int) -> None:
        self.total = total
        self._changed()

    def _subscribe(self):
        return self._service.subscribe_to_registration_stats(
            self._on_update,
            self._subscription_error,
            on_connect=lambda: self._set_connected(True),
            on_disconnect=lambda: self._set_connected(False),
        )

    def _subscription_error(self, error: Exception) -> None:
        self.is_connected = False
        super()._subscription_error(error)

    def _set_connected(self, value: bool) -> None:
        if self.disposed:
            return
        self.is_connected = value
        self._changed()

    def _on_update(self, update: RegistrationStatsUpdate) -> None:
        if self.disposed:
            return
        self.total = update.cumulative_registrations
        self._changed()
