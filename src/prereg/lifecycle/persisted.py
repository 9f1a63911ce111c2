"""Persisted values backed by a synchronous key-value store.

Values are JSON-encoded. Read and write failures are logged and never
raised: a failed read yields the default, a failed write still updates the
in-memory value.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, TypeVar, Union

from ..core.global_paths import GlobalPath
from ..util.error import log_error
from ..util.log import Log

log = Log.create({"service": "lifecycle.persisted"})

T = TypeVar("T")


class KeyValueStorage(Protocol):
    """Synchronous, fallible string storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage."""

    def __init__(self, data: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """All keys in one JSON object on disk, under the state directory by default."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._path = Path(path) if path else Path(GlobalPath.state()) / "preferences.json"

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class PersistedValue(Generic[T]):
    """A value mirrored into storage under ``key``."""

    def __init__(self, storage: KeyValueStorage, key: str, default: T) -> None:
        self._storage = storage
        self.key = key
        self.default = default
        self._listeners: List[Callable[[T], None]] = []
        self._value: T = self._load()

    def _load(self) -> T:
        try:
            raw = self._storage.get(self.key)
            if raw is None:
                return self.default
            return json.loads(raw)
        except Exception as e:
            log_error(e, f"persisted:read:{self.key}")
            return self.default

    @property
    def value(self) -> T:
        return self._value

    def on_change(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def set(self, value: Union[T, Callable[[T], T]]) -> T:
        """Store a value, or apply an updater to the current one."""
        new_value = value(self._value) if callable(value) else value
        self._commit(new_value)
        try:
            self._storage.set(self.key, json.dumps(new_value, ensure_ascii=False))
        except Exception as e:
            log_error(e, f"persisted:write:{self.key}")
        return new_value

    def remove(self) -> None:
        """Clear storage and fall back to the default."""
        self._commit(self.default)
        try:
            self._storage.remove(self.key)
        except Exception as e:
            log_error(e, f"persisted:remove:{self.key}")

    def _commit(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                log.warn("listener failed", {"key": self.key, "error": e})
