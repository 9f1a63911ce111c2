from __future__ import annotations

import re

import pytest

from prereg.core.id import Identifier


def test_unique_ids_never_collide_within_a_millisecond() -> None:
    first = Identifier.unique("stats", timestamp=1_760_000_000_000)
    second = Identifier.unique("stats", timestamp=1_760_000_000_000)
    later = Identifier.unique("stats", timestamp=1_760_000_000_001)

    assert first == "stats-1760000000000-1"
    assert second == "stats-1760000000000-2"
    assert later == "stats-1760000000001-1"


def test_timestamp_round_trip() -> None:
    id = Identifier.unique("registration-stats")

    assert Identifier.timestamp(id) > 0
    with pytest.raises(ValueError):
        Identifier.timestamp("no-timestamp-here")


def test_referral_codes_and_row_ids() -> None:
    codes = {Identifier.referral_code() for _ in range(50)}

    assert all(re.fullmatch(r"[A-Z0-9]{8}", code) for code in codes)
    assert len(codes) > 1
    assert len(Identifier.referral_code(12)) == 12
    assert Identifier.row_id() != Identifier.row_id()
