# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Hand-driven stand-ins for the worker, the feed page and the location source."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from location_blocker import LookupResult
from location_blocker.errors import LookupUnavailableError
from location_blocker.feed import FeedItem


async def settle(rounds: int = 10) -> None:
    """Let ready callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeWorker:
    """LookupWorker whose lookups finish only when the test says so."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.unavailable: set[str] = set()
        self.crash: set[str] = set()
        self.answers: dict[str, str | None] = {}
        self.running = 0
        self.peak = 0
        self._pending: dict[str, list[asyncio.Future]] = {}

    async def execute(self, subject_id: str) -> str | None:
        self.calls.append(subject_id)
        if subject_id in self.unavailable:
            raise LookupUnavailableError("cannot open page", subject_id=subject_id)
        if subject_id in self.crash:
            raise RuntimeError("boom")
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            if subject_id in self.answers:
                await asyncio.sleep(0)
                return self.answers[subject_id]
            fut = asyncio.get_running_loop().create_future()
            self._pending.setdefault(subject_id, []).append(fut)
            try:
                return await fut
            except asyncio.CancelledError:
                self.cancelled.append(subject_id)
                raise
        finally:
            self.running -= 1

    def waiting(self, subject_id: str) -> int:
        return len([f for f in self._pending.get(subject_id, []) if not f.done()])

    def finish(self, subject_id: str, country: str | None) -> None:
        futures = [f for f in self._pending.get(subject_id, []) if not f.done()]
        futures[0].set_result(country)


class FakeFeed:
    """FeedSurface over a list of items; records hides."""

    def __init__(self, items=()) -> None:
        self.items: list[FeedItem] = list(items)
        self.hidden: dict[str, str] = {}
        self.watching = False
        self.watch_calls = 0
        self.reveal_calls = 0
        self._on_items = None

    async def watch(self, on_items) -> None:
        self._on_items = on_items
        self.watching = True
        self.watch_calls += 1

    async def unwatch(self) -> None:
        self.watching = False

    async def snapshot(self) -> list[FeedItem]:
        return list(self.items)

    async def hide(self, item_id: str, location: str) -> bool:
        if item_id in self.hidden:
            return False
        self.hidden[item_id] = location
        return True

    async def reveal_all(self) -> int:
        count = len(self.hidden)
        self.hidden.clear()
        self.reveal_calls += 1
        return count

    def insert(self, *items: FeedItem) -> None:
        """Simulate a DOM mutation batch adding *items*."""
        self.items.extend(items)
        if self.watching and self._on_items is not None:
            self._on_items(list(items))


class FakeLocations:
    """LocationSource answering from a dict; records every request."""

    def __init__(self, answers: dict[str, LookupResult] | None = None) -> None:
        self.answers = answers or {}
        self.requests: list[str] = []

    async def __call__(self, username: str) -> LookupResult:
        self.requests.append(username)
        await asyncio.sleep(0)
        return self.answers.get(username, LookupResult())


def post(item_id: str, author: str | None) -> FeedItem:
    links = (f"/{author}/status/{item_id}", f"/{author}") if author else ("/i/web/status/1",)
    return FeedItem(item_id=item_id, links=links)


def mock_page(body_text: str = "") -> MagicMock:
    """Playwright Page stand-in for inspection pages."""
    page = MagicMock()
    page.goto = AsyncMock()
    page.route = AsyncMock()
    page.close = AsyncMock()
    page.bring_to_front = AsyncMock()
    page.inner_text = AsyncMock(return_value=body_text)
    page.evaluate = AsyncMock(return_value=[])
    page.expose_function = AsyncMock()
    return page


def mock_context(*pages: MagicMock) -> MagicMock:
    context = MagicMock()
    context.new_page = AsyncMock(side_effect=list(pages))
    context.close = AsyncMock()
    return context
