from __future__ import annotations

import json
from pathlib import Path

from prereg.lifecycle.persisted import JsonFileStorage, MemoryStorage, PersistedValue


class BrokenStorage:
    def get(self, key: str):
        raise OSError("storage unavailable")

    def set(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")

    def remove(self, key: str) -> None:
        raise OSError("storage unavailable")


def test_reads_initial_value_from_storage() -> None:
    storage = MemoryStorage({"lang": json.dumps("en")})

    value = PersistedValue(storage, "lang", "ko")

    assert value.value == "en"


def test_missing_or_unreadable_value_falls_back_to_default() -> None:
    assert PersistedValue(MemoryStorage(), "lang", "ko").value == "ko"
    assert PersistedValue(MemoryStorage({"lang": "{not json"}), "lang", "ko").value == "ko"
    assert PersistedValue(BrokenStorage(), "lang", "ko").value == "ko"


def test_set_writes_through_and_accepts_updater() -> None:
    storage = MemoryStorage()
    value = PersistedValue(storage, "count", 0)
    seen: list[int] = []
    value.on_change(seen.append)

    value.set(2)
    value.set(lambda current: current + 1)

    assert value.value == 3
    assert json.loads(storage.get("count")) == 3
    assert seen == [2, 3]


def test_write_failure_still_updates_memory() -> None:
    value = PersistedValue(BrokenStorage(), "lang", "ko")

    value.set("ja")
    assert value.value == "ja"

    value.remove()
    assert value.value == "ko"


def test_remove_clears_storage_and_resets() -> None:
    storage = MemoryStorage()
    value = PersistedValue(storage, "user", None)
    value.set("u-1")

    value.remove()

    assert value.value is None
    assert storage.get("user") is None


def test_json_file_storage_round_trips_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "prefs" / "preferences.json"
    storage = JsonFileStorage(path)

    PersistedValue(storage, "last_user_id", None).set("abc")

    assert json.loads(path.read_text(encoding="utf-8")) == {"last_user_id": json.dumps("abc")}
    assert PersistedValue(JsonFileStorage(path), "last_user_id", None).value == "abc"


def test_json_file_storage_defaults_to_state_dir(isolated_home: Path) -> None:
    storage = JsonFileStorage()

    assert storage.path.name == "preferences.json"
    assert str(storage.path).startswith(str(isolated_home))
