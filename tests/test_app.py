# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for LocationBlocker wiring — start, settings sync, loops, shutdown.

Components are started on mock pages via ``start()``; ``__aenter__`` is
blocked from launching Playwright by the conftest safety net.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from location_blocker import LookupResult
from location_blocker.app import LocationBlocker
from location_blocker.config import BlockerConfig, ExtractionPolicy
from location_blocker.store import (
    KEY_BLOCKED_COUNT,
    KEY_BLOCKED_LOCATIONS,
    KEY_ENABLED,
    KEY_FETCHING_ENABLED,
    KEY_USER_COUNTRY_CACHE,
    InMemoryStore,
)
from tests._fakes import mock_context, mock_page, settle

_CONFIG = BlockerConfig(
    status_interval=3600,
    settings_poll_interval=3600,
    extraction=ExtractionPolicy(initial_delay=0, retry_interval=0, max_attempts=2),
)


@pytest.fixture
async def started():
    """Yield a factory that starts a blocker and shuts it down afterwards."""
    blockers: list[LocationBlocker] = []

    async def _start(store=None, *inspection_pages):
        context = mock_context(*inspection_pages)
        feed_page = mock_page()
        blocker = LocationBlocker(_CONFIG, store or InMemoryStore())
        await blocker.start(context, feed_page)
        blockers.append(blocker)
        return blocker, context, feed_page

    yield _start
    for blocker in blockers:
        await blocker.shutdown()


class TestStart:
    async def test_first_run_writes_defaults_and_stays_disabled(self, started):
        store = InMemoryStore()
        blocker, _, feed_page = await started(store)
        assert await store.get(KEY_ENABLED) is False
        assert await store.get(KEY_BLOCKED_COUNT) == 0
        assert not blocker.observer.enabled
        feed_page.expose_function.assert_not_awaited()

    async def test_stored_settings_applied(self, started):
        store = InMemoryStore(
            {
                KEY_ENABLED: True,
                KEY_FETCHING_ENABLED: False,
                KEY_BLOCKED_LOCATIONS: ["Germany"],
                KEY_USER_COUNTRY_CACHE: {"alice": "Germany"},
            }
        )
        blocker, _, feed_page = await started(store)
        assert blocker.observer.enabled
        assert not blocker.observer.fetching_enabled
        assert blocker.observer.block_list.to_list() == ["Germany"]
        assert blocker.cache.get("alice") == "Germany"
        feed_page.expose_function.assert_awaited_once()

    async def test_scheduler_uses_configured_bound(self, started):
        blocker, _, _ = await started()
        assert blocker.scheduler.max_concurrent == 2

    def test_aenter_never_launches_real_browser(self):
        async def scenario():
            async with LocationBlocker(_CONFIG, InMemoryStore()):
                pass

        with pytest.raises(RuntimeError, match="Playwright"):
            asyncio.run(scenario())


class TestLookupPath:
    async def test_request_location_end_to_end(self, started):
        page = mock_page("Date joined\nJune 2010\nAccount based in\nGermany")
        blocker, _, feed_page = await started(None, page)

        result = await blocker._request_location("alice")

        assert result == LookupResult(country="Germany")
        page.goto.assert_awaited_once_with("https://x.com/alice/about", wait_until="domcontentloaded")
        page.close.assert_awaited_once()
        feed_page.bring_to_front.assert_awaited()

    async def test_notify_blocked_increments_counter(self, started):
        store = InMemoryStore()
        blocker, _, _ = await started(store)
        blocker._notify_blocked()
        blocker._notify_blocked()
        await settle()
        await blocker.shutdown()
        assert await store.get(KEY_BLOCKED_COUNT) == 2


class TestSettingsSync:
    async def test_changes_forwarded_to_observer(self, started):
        store = InMemoryStore()
        blocker, _, _ = await started(store)

        await store.set_many({KEY_ENABLED: True, KEY_FETCHING_ENABLED: False, KEY_BLOCKED_LOCATIONS: ["Peru"]})
        await blocker.sync_settings()

        assert blocker.observer.enabled
        assert not blocker.observer.fetching_enabled
        assert blocker.observer.block_list.to_list() == ["Peru"]

    async def test_unchanged_settings_are_not_resent(self, started):
        store = InMemoryStore({KEY_ENABLED: True})
        blocker, _, feed_page = await started(store)
        feed_page.evaluate.reset_mock()

        await blocker.sync_settings()

        feed_page.evaluate.assert_not_awaited()

    async def test_disable_reveals(self, started):
        store = InMemoryStore({KEY_ENABLED: True})
        blocker, _, _ = await started(store)
        await store.set(KEY_ENABLED, False)
        await blocker.sync_settings()
        assert not blocker.observer.enabled


class TestLoops:
    async def test_crashed_loop_restarts(self, started):
        blocker, _, _ = await started()
        calls = []

        async def flaky():
            calls.append(None)
            if len(calls) == 1:
                raise RuntimeError("transient")
            await blocker.wait_closed()

        blocker._start_loop("flaky", flaky)
        await settle()
        assert len(calls) == 2

    async def test_status_logged_when_enabled(self, started, caplog):
        blocker, _, _ = await started(InMemoryStore({KEY_ENABLED: True, KEY_BLOCKED_LOCATIONS: ["Chile"]}))
        with caplog.at_level(logging.INFO, logger="location_blocker.app"):
            blocker.log_status()
        assert "blocking [Chile]" in caplog.text
        assert "hit_rate=0%" in caplog.text

    async def test_status_includes_hit_rate(self, started, caplog):
        store = InMemoryStore({KEY_ENABLED: True, KEY_USER_COUNTRY_CACHE: {"alice": "Chile"}})
        blocker, _, _ = await started(store)
        blocker.cache.get("alice")
        blocker.cache.get("alice")
        blocker.cache.get("bob")
        with caplog.at_level(logging.INFO, logger="location_blocker.app"):
            blocker.log_status()
        assert "cached=1 hit_rate=67%" in caplog.text

    async def test_status_silent_when_disabled(self, started, caplog):
        blocker, _, _ = await started()
        with caplog.at_level(logging.INFO, logger="location_blocker.app"):
            blocker.log_status()
        assert "Status" not in caplog.text


class TestShutdown:
    async def test_shutdown_closes_context_and_sets_event(self, started):
        blocker, context, _ = await started()
        await blocker.shutdown()
        context.close.assert_awaited_once()
        await asyncio.wait_for(blocker.wait_closed(), timeout=1)

    async def test_shutdown_resolves_inflight_lookups(self, started):
        page = mock_page("")
        blocker, _, _ = await started(None, page)
        slow = asyncio.create_task(blocker._request_location("bob"))
        await settle()
        await blocker.shutdown()
        result = await slow
        assert result.country is None
