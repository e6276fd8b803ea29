# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""LocationBlocker — wires browser, scheduler, host and observer together.

Lifecycle follows the ``AsyncContextManager`` pattern::

    store = await SqliteStore.create(config.resolved_db_path)
    async with LocationBlocker(config, store) as blocker:
        await blocker.wait_closed()

Two background loops run while the blocker is up:

- settings watcher: polls the state store and forwards changed toggles and
  block lists to the observer as control messages (settings → feed channel)
- status: logs filter/queue/cache state every ``status_interval`` seconds
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from types import TracebackType

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

from . import LookupResult
from .block_list import BlockList
from .browser import launch_persistent_context
from .cache import ResolutionCache
from .config import BlockerConfig
from .feed import PlaywrightFeed
from .host import BackgroundHost
from .messages import IncrementBlockedCount, ToggleFetching, ToggleFilter, UpdateLocations
from .observer import FeedObserver
from .scheduler import LookupScheduler
from .store import StateStore, StoredState, initialize_defaults, load_state
from .worker import TabLookupWorker

logger = logging.getLogger(__name__)


class LocationBlocker:
    """Running filter over one feed page."""

    def __init__(self, config: BlockerConfig, store: StateStore) -> None:
        self._config = config
        self._store = store

        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._feed_page: Page | None = None
        self._worker: TabLookupWorker | None = None
        self._scheduler: LookupScheduler | None = None
        self._host: BackgroundHost | None = None
        self._cache: ResolutionCache | None = None
        self._observer: FeedObserver | None = None

        self._applied: StoredState | None = None
        self._loop_tasks: dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()
        self._background: set[asyncio.Task] = set()

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> LocationBlocker:
        self._playwright = await async_playwright().start()
        try:
            self._context = await launch_persistent_context(self._playwright, self._config.browser)
        except BaseException:
            await self._playwright.stop()
            self._playwright = None
            raise

        pages = self._context.pages
        self._feed_page = pages[0] if pages else await self._context.new_page()
        self._feed_page.on("close", lambda _page: self._shutdown_event.set())
        await self._feed_page.goto(self._config.feed_url, wait_until="domcontentloaded")

        await self.start(self._context, self._feed_page)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def start(self, context: BrowserContext, feed_page: Page) -> None:
        """Build components on an already-open context and apply stored settings."""
        self._context = context
        self._feed_page = feed_page
        await initialize_defaults(self._store)
        state = await load_state(self._store)

        self._cache = ResolutionCache(self._store, state.user_country_cache)
        self._worker = TabLookupWorker(context, self._config, focus_page=feed_page)
        self._scheduler = LookupScheduler(
            self._worker,
            max_concurrent=self._config.max_concurrent,
            timeout=self._config.lookup_timeout,
        )
        self._host = BackgroundHost(self._scheduler, self._worker, self._store)
        self._worker.set_signal_handler(self._host.on_signal)
        self._observer = FeedObserver(
            PlaywrightFeed(feed_page),
            self._cache,
            BlockList(state.blocked_locations),
            self._request_location,
            on_blocked=self._notify_blocked,
            fetching_enabled=state.fetching_enabled,
        )
        self._applied = state
        logger.info(
            "Initialized with settings: enabled=%s fetching=%s blocked=%s cached_users=%d",
            state.enabled,
            state.fetching_enabled,
            state.blocked_locations,
            len(self._cache),
        )
        if state.enabled:
            await self._observer.enable()

        self._shutdown_event.clear()
        self._start_loop("settings", self._settings_loop)
        self._start_loop("status", self._status_loop)

    # ── Feed ↔ host glue ─────────────────────────────────────────────

    async def _request_location(self, username: str) -> LookupResult:
        reply = await self._host.handle({"action": "getCountryForUser", "username": username})
        return BackgroundHost.parse_reply(reply)

    def _notify_blocked(self) -> None:
        task = asyncio.get_running_loop().create_task(self._host.handle(IncrementBlockedCount()))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def observer(self) -> FeedObserver | None:
        return self._observer

    @property
    def scheduler(self) -> LookupScheduler | None:
        return self._scheduler

    @property
    def cache(self) -> ResolutionCache | None:
        return self._cache

    async def wait_closed(self) -> None:
        """Block until the feed page is closed or shutdown is requested."""
        await self._shutdown_event.wait()

    # ── Background loops ─────────────────────────────────────────────

    def _start_loop(self, name: str, factory: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.get_running_loop().create_task(factory(), name=f"location-blocker-{name}")
        task.add_done_callback(lambda t: self._handle_loop_crash(name, factory, t))
        self._loop_tasks[name] = task

    def _handle_loop_crash(self, name: str, factory: Callable[[], Awaitable[None]], task: asyncio.Task) -> None:
        """Restart a loop if it crashed unexpectedly (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutdown_event.is_set():
            logger.error("%s loop crashed, restarting: %s", name, exc, exc_info=exc)
            self._start_loop(name, factory)

    async def _sleep_or_shutdown(self, interval: float) -> bool:
        """Sleep *interval* seconds. Returns True if shutdown was requested."""
        try:
            async with asyncio.timeout(interval):
                await self._shutdown_event.wait()
                return True
        except TimeoutError:
            return False

    async def _settings_loop(self) -> None:
        while not await self._sleep_or_shutdown(self._config.settings_poll_interval):
            await self.sync_settings()

    async def sync_settings(self) -> None:
        """Forward stored settings that changed since the last sync to the observer."""
        state = await load_state(self._store)
        applied = self._applied or StoredState()
        if state.fetching_enabled != applied.fetching_enabled:
            await self._observer.handle_message(ToggleFetching(enabled=state.fetching_enabled))
        if state.blocked_locations != applied.blocked_locations:
            await self._observer.handle_message(UpdateLocations(locations=state.blocked_locations))
        if state.enabled != applied.enabled:
            await self._observer.handle_message(ToggleFilter(enabled=state.enabled))
        self._applied = state

    async def _status_loop(self) -> None:
        while not await self._sleep_or_shutdown(self._config.status_interval):
            self.log_status()

    def log_status(self) -> None:
        if self._observer is None or not self._observer.enabled:
            return
        stats = self._scheduler.stats()
        logger.info(
            "Status: filter enabled, blocking [%s] "
            "(active=%d queued=%d completed=%d timeouts=%d cached=%d hit_rate=%.0f%%)",
            ", ".join(self._observer.block_list),
            stats.active,
            stats.queued,
            stats.completed,
            stats.timeouts,
            len(self._cache),
            self._cache.stats.hit_rate * 100,
        )

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop loops, lookups, pending writes, browser and playwright."""
        self._shutdown_event.set()

        for task in self._loop_tasks.values():
            if not task.done():
                task.cancel()
        for task in self._loop_tasks.values():
            with suppress(asyncio.CancelledError):
                await task
        self._loop_tasks.clear()

        if self._observer is not None:
            await self._observer.cancel_pending()
        if self._scheduler is not None:
            await self._scheduler.shutdown()
        if self._worker is not None:
            await self._worker.shutdown()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self._host is not None:
            await self._host.drain()
        if self._cache is not None:
            await self._cache.flush()

        if self._context is not None:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("Location blocker shut down")
