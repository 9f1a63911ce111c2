"""User-facing notifications published on the event bus."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel

from ..core.bus import Bus, BusEvent
from ..util.log import Log
from .errors import ApiError

log = Log.create({"service": "api.notify"})


class ToastProps(BaseModel):
    level: Literal["info", "success", "warning", "error"] = "info"
    message: str
    code: Optional[str] = None


Toast = BusEvent.define("ui.toast", ToastProps)


async def notify(message: str, level: str = "info", code: Optional[str] = None) -> None:
    await Bus.publish(Toast, ToastProps(level=level, message=message, code=code))


async def notify_error(error: ApiError) -> None:
    """Publish an error toast for a failed operation."""
    log.debug("error toast", {"code": error.code})
    await notify(error.message, level="error", code=error.code)
