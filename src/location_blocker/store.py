# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Persisted state — protocol-based key/value store.

Defines ``StateStore`` for best-effort local persistence of settings, the
block list, the blocked counter and the resolution cache, plus
``InMemoryStore`` for tests and throwaway runs. ``SqliteStore`` lives in
``store_sqlite.py``.

Values are JSON-compatible. The running process treats the store as an
eventually-consistent mirror of its in-memory state.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Persisted keys (names kept stable for existing databases)
KEY_ENABLED = "enabled"
KEY_FETCHING_ENABLED = "fetchingEnabled"
KEY_BLOCKED_LOCATIONS = "blockedLocations"
KEY_BLOCKED_COUNT = "blockedCount"
KEY_USER_COUNTRY_CACHE = "userCountryCache"

ALL_KEYS = (
    KEY_ENABLED,
    KEY_FETCHING_ENABLED,
    KEY_BLOCKED_LOCATIONS,
    KEY_BLOCKED_COUNT,
    KEY_USER_COUNTRY_CACHE,
)

# First-run values; fetchingEnabled is absent on purpose and defaults to True on read.
INSTALL_DEFAULTS: dict[str, Any] = {
    KEY_ENABLED: False,
    KEY_BLOCKED_LOCATIONS: [],
    KEY_BLOCKED_COUNT: 0,
}


@runtime_checkable
class StateStore(Protocol):
    """Interface for persisted state — in-memory and SQLite implementations."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def set_many(self, values: dict[str, Any]) -> None: ...

    async def increment(self, key: str, amount: int = 1) -> int: ...

    async def close(self) -> None: ...


class InMemoryStore:
    """Dict-backed store. Values are deep-copied in and out like a real store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def set_many(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self._data[key] = copy.deepcopy(value)

    async def increment(self, key: str, amount: int = 1) -> int:
        new_value = int(self._data.get(key) or 0) + amount
        self._data[key] = new_value
        return new_value

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Typed view
# ---------------------------------------------------------------------------


@dataclass
class StoredState:
    """Typed snapshot of every persisted key, with first-run defaults applied."""

    enabled: bool = False
    fetching_enabled: bool = True
    blocked_locations: list[str] = field(default_factory=list)
    blocked_count: int = 0
    user_country_cache: dict[str, str] = field(default_factory=dict)


async def load_state(store: StateStore) -> StoredState:
    """Read all keys at once; missing or malformed values fall back to defaults."""
    raw = await store.get_many(ALL_KEYS)
    locations = raw.get(KEY_BLOCKED_LOCATIONS) or []
    cache = raw.get(KEY_USER_COUNTRY_CACHE) or {}
    return StoredState(
        enabled=bool(raw.get(KEY_ENABLED, False)),
        # Anything but an explicit False means fetching is on.
        fetching_enabled=raw.get(KEY_FETCHING_ENABLED) is not False,
        blocked_locations=[str(loc) for loc in locations if isinstance(loc, str)],
        blocked_count=int(raw.get(KEY_BLOCKED_COUNT) or 0),
        user_country_cache={str(k): str(v) for k, v in cache.items() if v} if isinstance(cache, dict) else {},
    )


async def initialize_defaults(store: StateStore) -> list[str]:
    """Write install defaults for keys that were never set. Returns keys written."""
    present = await store.get_many(INSTALL_DEFAULTS)
    missing = {k: v for k, v in INSTALL_DEFAULTS.items() if k not in present}
    if missing:
        await store.set_many(missing)
    return sorted(missing)
