# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the state stores — InMemoryStore and SqliteStore."""

from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from location_blocker.errors import StoreError
from location_blocker.store import (
    INSTALL_DEFAULTS,
    KEY_BLOCKED_COUNT,
    KEY_BLOCKED_LOCATIONS,
    KEY_ENABLED,
    KEY_FETCHING_ENABLED,
    KEY_USER_COUNTRY_CACHE,
    InMemoryStore,
    StateStore,
    StoredState,
    initialize_defaults,
    load_state,
)
from location_blocker.store_sqlite import SqliteStore

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def sqlite_store(tmp_path):
    s = await SqliteStore.create(tmp_path / "state.db")
    yield s
    await s.close()


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStore()
        return
    s = await SqliteStore.create(tmp_path / "state.db")
    yield s
    await s.close()


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class TestStateStore:
    async def test_satisfies_protocol(self, any_store):
        assert isinstance(any_store, StateStore)

    async def test_get_default(self, any_store):
        assert await any_store.get("missing") is None
        assert await any_store.get("missing", 5) == 5

    async def test_round_trip_json_values(self, any_store):
        await any_store.set(KEY_BLOCKED_LOCATIONS, ["Germany", "Côte d'Ivoire"])
        await any_store.set(KEY_USER_COUNTRY_CACHE, {"alice": "Germany"})
        await any_store.set(KEY_ENABLED, False)
        assert await any_store.get(KEY_BLOCKED_LOCATIONS) == ["Germany", "Côte d'Ivoire"]
        assert await any_store.get(KEY_USER_COUNTRY_CACHE) == {"alice": "Germany"}
        assert await any_store.get(KEY_ENABLED) is False

    async def test_get_many_omits_missing(self, any_store):
        await any_store.set_many({"a": 1, "b": 2})
        assert await any_store.get_many(["a", "b", "c"]) == {"a": 1, "b": 2}

    async def test_increment(self, any_store):
        assert await any_store.increment(KEY_BLOCKED_COUNT) == 1
        assert await any_store.increment(KEY_BLOCKED_COUNT, 4) == 5
        assert await any_store.get(KEY_BLOCKED_COUNT) == 5

    async def test_concurrent_increments_not_lost(self, any_store):
        await asyncio.gather(*(any_store.increment(KEY_BLOCKED_COUNT) for _ in range(20)))
        assert await any_store.get(KEY_BLOCKED_COUNT) == 20

    async def test_values_are_copies(self, any_store):
        value = ["Germany"]
        await any_store.set(KEY_BLOCKED_LOCATIONS, value)
        value.append("France")
        stored = await any_store.get(KEY_BLOCKED_LOCATIONS)
        stored.append("Spain")
        assert await any_store.get(KEY_BLOCKED_LOCATIONS) == ["Germany"]


# ---------------------------------------------------------------------------
# SqliteStore specifics
# ---------------------------------------------------------------------------


class TestSqliteStore:
    async def test_db_file_created_with_parents(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "state.db"
        s = await SqliteStore.create(db_path)
        try:
            assert db_path.exists()
        finally:
            await s.close()

    async def test_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "state.db"
        s = await SqliteStore.create(db_path)
        await s.set(KEY_ENABLED, True)
        await s.close()

        s2 = await SqliteStore.create(db_path)
        try:
            assert await s2.get(KEY_ENABLED) is True
        finally:
            await s2.close()

    async def test_two_connections_share_state(self, tmp_path):
        db_path = tmp_path / "state.db"
        writer = await SqliteStore.create(db_path)
        reader = await SqliteStore.create(db_path)
        try:
            await writer.set(KEY_FETCHING_ENABLED, False)
            assert await reader.get(KEY_FETCHING_ENABLED) is False
        finally:
            await writer.close()
            await reader.close()

    async def test_newer_schema_rejected(self, tmp_path):
        db_path = tmp_path / "state.db"
        async with aiosqlite.connect(str(db_path)) as db:
            await db.execute("PRAGMA user_version = 99")
            await db.commit()

        with pytest.raises(StoreError, match="newer"):
            await SqliteStore.create(db_path)

    async def test_close_idempotent(self, sqlite_store):
        await sqlite_store.close()
        await sqlite_store.close()


# ---------------------------------------------------------------------------
# Typed view and install defaults
# ---------------------------------------------------------------------------


class TestLoadState:
    async def test_empty_store_defaults(self, store):
        assert await load_state(store) == StoredState()

    async def test_fetching_only_off_when_explicitly_false(self):
        assert (await load_state(InMemoryStore({KEY_FETCHING_ENABLED: None}))).fetching_enabled is True
        assert (await load_state(InMemoryStore({KEY_FETCHING_ENABLED: False}))).fetching_enabled is False

    async def test_malformed_values_fall_back(self):
        store = InMemoryStore(
            {
                KEY_BLOCKED_LOCATIONS: ["Germany", 3, None],
                KEY_USER_COUNTRY_CACHE: "garbage",
                KEY_BLOCKED_COUNT: None,
            }
        )
        state = await load_state(store)
        assert state.blocked_locations == ["Germany"]
        assert state.user_country_cache == {}
        assert state.blocked_count == 0

    async def test_null_cache_values_dropped(self):
        store = InMemoryStore({KEY_USER_COUNTRY_CACHE: {"alice": "Germany", "ghost": None}})
        assert (await load_state(store)).user_country_cache == {"alice": "Germany"}


class TestInitializeDefaults:
    async def test_first_run_writes_defaults(self, store):
        written = await initialize_defaults(store)
        assert written == sorted(INSTALL_DEFAULTS)
        assert await store.get(KEY_ENABLED) is False
        assert await store.get(KEY_BLOCKED_LOCATIONS) == []
        assert await store.get(KEY_BLOCKED_COUNT) == 0
        assert await store.get(KEY_FETCHING_ENABLED) is None

    async def test_existing_values_untouched(self):
        store = InMemoryStore({KEY_ENABLED: True, KEY_BLOCKED_LOCATIONS: ["Peru"]})
        written = await initialize_defaults(store)
        assert written == [KEY_BLOCKED_COUNT]
        assert await store.get(KEY_ENABLED) is True
        assert await store.get(KEY_BLOCKED_LOCATIONS) == ["Peru"]
