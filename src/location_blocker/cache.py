# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Resolution cache: subject (author handle) → account location.

In-memory mirror is authoritative for the running session. Every ``put``
schedules a best-effort write of the whole mirror to the state store;
writes are fire-and-forget and order-independent per key.

Entries are never evicted automatically. ``clear()`` is the only removal path.

NOTE: Not thread-safe. All access happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .store import KEY_USER_COUNTRY_CACHE, StateStore

logger = logging.getLogger(__name__)


def normalize_subject(subject_id: str) -> str:
    """Cache key for a subject: handles are case-insensitive."""
    return subject_id.strip().lstrip("@").lower()


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Counters for cache behaviour, reported in the periodic status log."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    persist_failures: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# ResolutionCache
# ---------------------------------------------------------------------------


class ResolutionCache:
    """Subject → location map with a persisted mirror."""

    def __init__(self, store: StateStore | None = None, entries: dict[str, str] | None = None) -> None:
        self._store = store
        self._entries: dict[str, str] = {}
        for subject, location in (entries or {}).items():
            if location and location.strip():
                self._entries[normalize_subject(subject)] = location.strip()
        self._stats = CacheStats()
        self._pending_writes: set[asyncio.Task] = set()

    @classmethod
    async def load(cls, store: StateStore) -> ResolutionCache:
        """Build the in-memory mirror from the persisted cache."""
        raw = await store.get(KEY_USER_COUNTRY_CACHE, {})
        cache = cls(store, raw if isinstance(raw, dict) else {})
        logger.info("Resolution cache loaded: %d subject(s)", len(cache))
        return cache

    # -- Lookup --

    def get(self, subject_id: str) -> str | None:
        """Pure lookup against the mirror. Never triggers a resolution."""
        location = self._entries.get(normalize_subject(subject_id))
        if location is None:
            self._stats.misses += 1
        else:
            self._stats.hits += 1
        return location

    def __contains__(self, subject_id: object) -> bool:
        return isinstance(subject_id, str) and normalize_subject(subject_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> dict[str, str]:
        """Copy of all entries (normalized subject → location)."""
        return dict(self._entries)

    # -- Store --

    def put(self, subject_id: str, location: str) -> None:
        """Record a successful resolution and schedule persistence.

        Raises:
            ValueError: if *location* is empty; absent results are not cached.
        """
        value = (location or "").strip()
        if not value:
            raise ValueError(f"refusing to cache empty location for {subject_id!r}")
        key = normalize_subject(subject_id)
        self._entries[key] = value
        self._stats.writes += 1
        logger.debug("Cache put: %s=%s (size=%d)", key, value, len(self._entries))
        self._schedule_persist()

    async def clear(self) -> None:
        """Drop every entry, in memory and in the store."""
        self._entries.clear()
        await self.flush()
        if self._store is not None:
            await self._store.set(KEY_USER_COUNTRY_CACHE, {})
        logger.info("Resolution cache cleared")

    # -- Persistence --

    def _schedule_persist(self) -> None:
        if self._store is None:
            return
        snapshot = dict(self._entries)
        task = asyncio.get_running_loop().create_task(self._persist(snapshot), name="location-blocker-cache-write")
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist(self, snapshot: dict[str, str]) -> None:
        try:
            await self._store.set(KEY_USER_COUNTRY_CACHE, snapshot)
        except Exception:
            self._stats.persist_failures += 1
            logger.warning("Resolution cache write failed (%d entries)", len(snapshot), exc_info=True)

    async def flush(self) -> None:
        """Wait for outstanding persisted writes."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes))

    # -- Stats --

    @property
    def stats(self) -> CacheStats:
        return self._stats
