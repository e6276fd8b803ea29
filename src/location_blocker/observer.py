# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""FeedObserver — decides, once per post per session, whether to hide it.

States: disabled ↔ watching. Enabling attaches the feed watch and sweeps the
posts already on the page; disabling detaches, forgets which posts were
processed and reveals everything. Changing the block list while watching
forces the same reset plus a full re-sweep.

Per post: author handle → location (cache first, then a scheduled lookup if
fetching is on) → hide when the location matches the block list. Lookup
failures leave the post visible.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from . import ItemDecision, LookupResult
from .block_list import BlockList
from .cache import ResolutionCache
from .errors import MessageError
from .feed import FeedItem, FeedSurface, extract_subject_id
from .messages import ToggleFetching, ToggleFilter, UpdateLocations, parse_message

logger = logging.getLogger(__name__)

LocationSource = Callable[[str], Awaitable[LookupResult]]


class FeedObserver:
    """Watches the feed and applies hide decisions."""

    def __init__(
        self,
        feed: FeedSurface,
        cache: ResolutionCache,
        block_list: BlockList,
        request_location: LocationSource,
        *,
        on_blocked: Callable[[], None] | None = None,
        fetching_enabled: bool = True,
    ) -> None:
        self._feed = feed
        self._cache = cache
        self._block_list = block_list
        self._request_location = request_location
        self._on_blocked = on_blocked
        self._fetching_enabled = fetching_enabled
        self._enabled = False
        self._processed: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    # ── State ────────────────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def fetching_enabled(self) -> bool:
        return self._fetching_enabled

    @property
    def block_list(self) -> BlockList:
        return self._block_list

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def enable(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        logger.info("Filter ENABLED (blocking %s)", self._block_list.to_list())
        await self._feed.watch(self._on_items)
        await self.sweep()

    async def disable(self) -> None:
        if not self._enabled:
            return
        self._enabled = False
        logger.info("Filter DISABLED")
        await self._feed.unwatch()
        self._processed.clear()
        await self._feed.reveal_all()

    def set_fetching(self, enabled: bool) -> None:
        self._fetching_enabled = enabled
        logger.info("Auto-fetch %s", "ENABLED" if enabled else "PAUSED")

    async def update_locations(self, locations: Iterable[str]) -> None:
        """Replace the block list; re-evaluate every post if watching."""
        self._block_list.replace(locations)
        logger.info("Blocked locations updated: %s", self._block_list.to_list())
        if self._enabled:
            await self._feed.reveal_all()
            self._processed.clear()
            await self.sweep()

    async def handle_message(self, message: dict | object) -> None:
        """Apply a control message from the settings side.

        Raises:
            MessageError: malformed message or a non-control action.
        """
        msg = parse_message(message)
        logger.debug("Received message: %s", msg)
        if isinstance(msg, ToggleFilter):
            if msg.enabled:
                await self.enable()
            else:
                await self.disable()
        elif isinstance(msg, ToggleFetching):
            self.set_fetching(msg.enabled)
        elif isinstance(msg, UpdateLocations):
            await self.update_locations(msg.locations)
        else:
            raise MessageError(f"action {msg.action!r} is not a feed control message")

    # ── Detection ────────────────────────────────────────────────────

    async def sweep(self) -> int:
        """Schedule every post currently on the page. Returns how many were new."""
        items = await self._feed.snapshot()
        logger.info("Processing %d existing feed item(s)", len(items))
        return self._schedule(items)

    def _on_items(self, items: list[FeedItem]) -> None:
        if self._enabled:
            self._schedule(items)

    def _schedule(self, items: Iterable[FeedItem]) -> int:
        loop = asyncio.get_running_loop()
        scheduled = 0
        for item in items:
            if item.item_id in self._processed:
                continue
            task = loop.create_task(self.process_item(item), name=f"location-blocker-item-{item.item_id}")
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
            scheduled += 1
        return scheduled

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Feed item pipeline failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait until every scheduled item pipeline has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_pending(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Pipeline ─────────────────────────────────────────────────────

    async def process_item(self, item: FeedItem) -> ItemDecision:
        """Evaluate one post exactly once per watching session."""
        if item.item_id in self._processed or not self._enabled:
            return ItemDecision.SKIPPED
        self._processed.add(item.item_id)

        username = extract_subject_id(item.links)
        if not username:
            logger.warning("Could not extract username from feed item %s", item.item_id)
            return ItemDecision.SKIPPED

        country = await self.resolve_location(username)
        if not country:
            logger.info("@%s: No country found", username)
            return ItemDecision.UNRESOLVED

        entry = self._block_list.match(country)
        if entry is None:
            logger.info('@%s: ALLOWED - country "%s" not in blocked list', username, country)
            return ItemDecision.ALLOWED
        if not self._enabled:
            # Filter switched off while the lookup was in flight.
            return ItemDecision.SKIPPED

        logger.info('@%s: BLOCKED - country "%s" matches blocked entry "%s"', username, country, entry)
        if await self._feed.hide(item.item_id, country) and self._on_blocked is not None:
            self._on_blocked()
        return ItemDecision.BLOCKED

    async def resolve_location(self, username: str) -> str | None:
        """Cache first; schedule a lookup only on a miss with fetching enabled."""
        cached = self._cache.get(username)
        if cached:
            logger.debug("@%s: Found in cache: %s", username, cached)
            return cached

        if not self._fetching_enabled:
            logger.debug("@%s: Auto-fetch disabled, skipping", username)
            return None

        logger.debug("@%s: Requesting country via background host", username)
        result = await self._request_location(username)
        if result.ok:
            self._cache.put(username, result.country)
            return result.country
        logger.info(
            "@%s: No country returned (error=%s)",
            username,
            result.error.value if result.error else None,
        )
        return None
