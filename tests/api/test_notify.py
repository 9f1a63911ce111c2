from __future__ import annotations

import pytest

from prereg.api.errors import ApiError
from prereg.api.notify import Toast, notify, notify_error
from prereg.core.bus import Bus, EventPayload


@pytest.mark.anyio
async def test_notify_error_publishes_toast() -> None:
    seen: list[EventPayload] = []
    Bus.subscribe(Toast, seen.append)

    await notify_error(ApiError(code="EMAIL_DUPLICATE", message="taken"))
    await notify("saved", level="success")

    assert [payload.type for payload in seen] == ["ui.toast", "ui.toast"]
    assert seen[0].properties == {"level": "error", "message": "taken", "code": "EMAIL_DUPLICATE"}
    assert seen[1].properties["level"] == "success"
