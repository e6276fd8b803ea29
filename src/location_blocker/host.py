# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BackgroundHost — message endpoint that owns the lookup scheduler.

Handles the three host-bound actions:

- ``getCountryForUser``   → queue a lookup, reply ``{country, error?}`` when done
- ``countryDataExtracted`` → completion signal from an inspection page (by sender handle)
- ``incrementBlockedCount`` → fire-and-forget counter bump in the state store
"""

from __future__ import annotations

import asyncio
import logging

from . import LookupResult
from .errors import MessageError
from .messages import (
    CountryDataExtracted,
    CountryReply,
    GetCountryForUser,
    IncrementBlockedCount,
    parse_message,
)
from .scheduler import LookupScheduler
from .store import KEY_BLOCKED_COUNT, StateStore
from .worker import TabLookupWorker

logger = logging.getLogger(__name__)


class BackgroundHost:
    """Routes runtime messages to the scheduler, the worker and the store."""

    def __init__(self, scheduler: LookupScheduler, worker: TabLookupWorker, store: StateStore) -> None:
        self._scheduler = scheduler
        self._worker = worker
        self._store = store
        self._background: set[asyncio.Task] = set()

    @property
    def scheduler(self) -> LookupScheduler:
        return self._scheduler

    async def handle(self, message: dict | object, sender: int | None = None) -> dict | None:
        """Dispatch one message. Returns the reply dict, or None for one-way messages.

        Raises:
            MessageError: malformed message, or an action this host does not serve.
        """
        msg = parse_message(message)

        if isinstance(msg, GetCountryForUser):
            return await self.get_country(msg.username)

        if isinstance(msg, CountryDataExtracted):
            if sender is None:
                raise MessageError("countryDataExtracted requires a sender handle")
            logger.debug("Received countryDataExtracted from page %d: %r", sender, msg.country)
            await self._worker.deliver(sender, msg.country)
            return None

        if isinstance(msg, IncrementBlockedCount):
            self._spawn(self._increment_blocked_count())
            return None

        raise MessageError(f"action {msg.action!r} is not handled by the background host")

    async def get_country(self, username: str) -> dict:
        result = await self.lookup(username)
        return result.to_reply()

    async def lookup(self, username: str) -> LookupResult:
        """Typed variant of ``getCountryForUser`` for in-process callers."""
        logger.info(
            "Request to get country for @%s (queued: %d, active: %d)",
            username,
            self._scheduler.queued_count,
            self._scheduler.active_count,
        )
        return await self._scheduler.resolve(username)

    async def on_signal(self, handle: int, country: str | None) -> None:
        """Signal handler installed on the worker: wraps the payload as a message."""
        await self.handle(CountryDataExtracted(country=country), sender=handle)

    @staticmethod
    def parse_reply(reply: dict | None) -> LookupResult:
        if not reply:
            return LookupResult()
        return CountryReply.model_validate(reply).to_result()

    # ── Fire-and-forget ──────────────────────────────────────────────

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _increment_blocked_count(self) -> None:
        try:
            count = await self._store.increment(KEY_BLOCKED_COUNT)
            logger.debug("Blocked count now %d", count)
        except Exception:
            logger.warning("Blocked count increment failed", exc_info=True)

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
