# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Lookup worker — one background inspection page per admitted lookup.

``execute(subject)`` opens a page, registers a completion future under a
fresh integer handle and waits for exactly one ``countryDataExtracted``
signal for that handle. The inspection itself (navigate, poll page text)
runs in its own task and reports through the installed signal handler,
the same out-of-band path a separate page context would use.

The correlation table (handle → future) is the single source of truth for
which lookup a signal belongs to. Unmatched signals are logged and their
page is closed with no other effect.

Dependencies: browser.py, config.py, extractor.py — no scheduler imports.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Protocol, runtime_checkable

from playwright.async_api import BrowserContext, Page

from .browser import block_heavy_resources
from .config import BlockerConfig
from .errors import LookupUnavailableError
from .extractor import poll_location

logger = logging.getLogger(__name__)

SignalHandler = Callable[[int, "str | None"], Awaitable[None]]


@runtime_checkable
class LookupWorker(Protocol):
    """Anything that can resolve one subject to a location (or None)."""

    async def execute(self, subject_id: str) -> str | None: ...


class TabLookupWorker:
    """Resolves subjects through background pages in a shared BrowserContext."""

    def __init__(
        self,
        context: BrowserContext,
        config: BlockerConfig | None = None,
        *,
        focus_page: Page | None = None,
    ) -> None:
        self._context = context
        self._config = config or BlockerConfig()
        self._focus_page = focus_page
        self._handles = itertools.count(1)
        self._signals: dict[int, asyncio.Future[str | None]] = {}
        self._pages: dict[int, Page] = {}
        self._inspections: dict[int, asyncio.Task] = {}
        self._signal_handler: SignalHandler = self.deliver

    def set_signal_handler(self, handler: SignalHandler) -> None:
        """Route completion signals through *handler* (normally the host's message bus)."""
        self._signal_handler = handler

    @property
    def open_pages(self) -> int:
        return len(self._pages)

    @property
    def pending_handles(self) -> list[int]:
        return list(self._signals)

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, subject_id: str) -> str | None:
        """Open an inspection page for *subject_id* and await its signal.

        The page is closed on every exit path, including cancellation by the
        scheduler's timeout.

        Raises:
            LookupUnavailableError: the inspection page could not be created.
        """
        try:
            page = await self._context.new_page()
        except Exception as exc:
            logger.warning("Error creating inspection page for @%s: %s", subject_id, exc)
            raise LookupUnavailableError(str(exc), subject_id=subject_id) from exc

        handle = next(self._handles)
        self._pages[handle] = page
        signal: asyncio.Future[str | None] = asyncio.get_running_loop().create_future()
        self._signals[handle] = signal
        inspection = asyncio.get_running_loop().create_task(
            self._inspect(handle, page, subject_id), name=f"location-blocker-inspect-{handle}"
        )
        inspection.add_done_callback(self._inspection_done)
        self._inspections[handle] = inspection
        logger.info("Opened inspection page %d for @%s", handle, subject_id)

        # Registered above: every await from here on is covered by the close.
        try:
            await self._restore_focus()
            return await signal
        finally:
            self._signals.pop(handle, None)
            await self.close(handle)

    async def _inspect(self, handle: int, page: Page, subject_id: str) -> None:
        """Inspection-page side: navigate, extract, emit exactly one signal."""
        url = self._config.profile_url(subject_id)
        if self._config.block_resources:
            with suppress(Exception):
                await page.route("**/*", block_heavy_resources)
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Extraction still runs: a partially loaded page may render the field.
            logger.warning("Navigation to %s failed: %s", url, exc)

        country = await poll_location(
            lambda: page.inner_text("body"),
            self._config.extraction,
            label=f"@{subject_id}",
        )
        await self._signal_handler(handle, country)

    @staticmethod
    def _inspection_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Inspection task %s failed: %s", task.get_name(), exc, exc_info=exc)

    async def _restore_focus(self) -> None:
        if self._focus_page is None:
            return
        with suppress(Exception):
            await self._focus_page.bring_to_front()

    # ── Signals ──────────────────────────────────────────────────────

    async def deliver(self, handle: int, country: str | None) -> bool:
        """Complete the lookup waiting on *handle*. Returns False if unmatched."""
        signal = self._signals.pop(handle, None)
        if signal is None:
            logger.warning("No pending lookup for inspection page %d (unmatched signal)", handle)
            await self.close(handle)
            return False
        if not signal.done():
            signal.set_result(country)
        return True

    # ── Cleanup ──────────────────────────────────────────────────────

    async def close(self, handle: int) -> None:
        """Close the page for *handle* and stop its inspection. Best-effort."""
        task = self._inspections.pop(handle, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        page = self._pages.pop(handle, None)
        if page is not None:
            with suppress(Exception):
                await page.close()
            logger.debug("Closed inspection page %d", handle)

    async def shutdown(self) -> None:
        """Abandon every open inspection page."""
        for handle in list(self._pages):
            signal = self._signals.pop(handle, None)
            if signal is not None and not signal.done():
                signal.cancel()
            await self.close(handle)
