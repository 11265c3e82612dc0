"""
SharedPreferences for hosted extensions

Extensions read and write their settings through named key-value stores
obtained with ``get_shared_preferences(name)``. Stores live inside the
isolated context and are not persisted; committed changes are recorded so
the caller can drain them with ``flush_changes()`` and persist them itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_REMOVED = object()


@dataclass
class PreferenceChange:
    name: str
    key: str
    value: Any  # None means the key was removed

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "key": self.key, "value": self.value}


class PreferenceStore:
    """All preference stores of one isolated context"""

    def __init__(self):
        self._stores: dict[str, dict[str, Any]] = {}
        self._pending: list[PreferenceChange] = []

    def init(self, name: str, values: dict[str, Any]) -> None:
        """Replace the contents of store ``name``"""
        self._stores[name] = dict(values)
        logger.debug(f"Initialized preferences '{name}' with {len(values)} values")

    def data(self, name: str) -> dict[str, Any]:
        return self._stores.setdefault(name, {})

    def get_shared_preferences(self, name: str) -> "SharedPreferences":
        return SharedPreferences(self, name)

    def record(self, change: PreferenceChange) -> None:
        self._pending.append(change)

    def flush_changes(self) -> list[dict[str, Any]]:
        """Return and clear committed changes since the last flush"""
        changes, self._pending = self._pending, []
        return [c.to_dict() for c in changes]


class SharedPreferences:
    def __init__(self, store: PreferenceStore, name: str):
        self._store = store
        self.name = name

    @property
    def _data(self) -> dict[str, Any]:
        return self._store.data(self.name)

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self._data.get(key)
        return value if isinstance(value, str) else default

    def get_boolean(self, key: str, default: bool = False) -> bool:
        value = self._data.get(key)
        return value if isinstance(value, bool) else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        return default

    get_long = get_int

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return default

    def get_string_set(self, key: str, default: list[str] | None = None) -> list[str] | None:
        value = self._data.get(key)
        return list(value) if isinstance(value, (list, set, tuple)) else default

    def get_all(self) -> dict[str, Any]:
        return dict(self._data)

    def contains(self, key: str) -> bool:
        return key in self._data

    def edit(self) -> "PreferencesEditor":
        return PreferencesEditor(self._store, self.name)


class PreferencesEditor:
    """Batches changes until apply() or commit()"""

    def __init__(self, store: PreferenceStore, name: str):
        self._store = store
        self._name = name
        self._changes: dict[str, Any] = {}

    def put_string(self, key: str, value: str | None) -> "PreferencesEditor":
        self._changes[key] = _REMOVED if value is None else value
        return self

    def put_boolean(self, key: str, value: bool) -> "PreferencesEditor":
        self._changes[key] = bool(value)
        return self

    def put_int(self, key: str, value: int) -> "PreferencesEditor":
        self._changes[key] = int(value)
        return self

    put_long = put_int

    def put_float(self, key: str, value: float) -> "PreferencesEditor":
        self._changes[key] = float(value)
        return self

    def put_string_set(self, key: str, value: list[str] | None) -> "PreferencesEditor":
        self._changes[key] = _REMOVED if value is None else list(value)
        return self

    def remove(self, key: str) -> "PreferencesEditor":
        self._changes[key] = _REMOVED
        return self

    def clear(self) -> "PreferencesEditor":
        for key in self._store.data(self._name):
            self._changes[key] = _REMOVED
        return self

    def apply(self) -> None:
        self.commit()

    def commit(self) -> bool:
        data = self._store.data(self._name)
        for key, value in self._changes.items():
            if value is _REMOVED:
                data.pop(key, None)
                self._store.record(PreferenceChange(self._name, key, None))
            else:
                data[key] = value
                self._store.record(PreferenceChange(self._name, key, value))
        self._changes.clear()
        return True
