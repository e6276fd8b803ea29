# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""User-maintained block list of free-form location substrings.

Matching is deliberately loose: an entry blocks a location when either
string contains the other, case-insensitively. "states" blocks
"United States", and "united states" blocks "US United States Office".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


def location_matches(location: str, entry: str) -> bool:
    """Symmetric case-insensitive substring test. Empty strings never match."""
    if not location or not entry:
        return False
    loc = location.lower()
    blocked = entry.lower()
    return blocked in loc or loc in blocked


class BlockList:
    """Ordered set of location entries (case-insensitive uniqueness)."""

    def __init__(self, locations: Iterable[str] = ()) -> None:
        self._entries: list[str] = []
        self.replace(locations)

    # -- Matching --

    def match(self, location: str | None) -> str | None:
        """Return the first entry that blocks *location*, or None."""
        if not location:
            return None
        for entry in self._entries:
            if location_matches(location, entry):
                logger.debug('Location match: "%s" matched blocked entry "%s"', location, entry)
                return entry
        return None

    def is_blocked(self, location: str | None) -> bool:
        return self.match(location) is not None

    # -- Mutation --

    def add(self, location: str) -> bool:
        """Append *location*. Returns False for blanks and case-insensitive duplicates."""
        value = location.strip()
        if not value:
            return False
        if any(entry.lower() == value.lower() for entry in self._entries):
            return False
        self._entries.append(value)
        return True

    def remove(self, location: str) -> bool:
        """Remove the exact entry. Returns False if it was not present."""
        if location not in self._entries:
            return False
        self._entries.remove(location)
        return True

    def toggle(self, country: str) -> bool:
        """Block or unblock a cataloged country. Returns the new blocked state.

        Unblocking removes entries equal to *country* ignoring case; a country
        covered only by a broader substring entry stays blocked.
        """
        if self.is_blocked(country):
            self._entries = [e for e in self._entries if e.lower() != country.lower()]
        else:
            self.add(country)
        return self.is_blocked(country)

    def replace(self, locations: Iterable[str]) -> None:
        self._entries = []
        for location in locations:
            self.add(location)

    # -- Introspection --

    def to_list(self) -> list[str]:
        return list(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __repr__(self) -> str:
        return f"BlockList({self._entries!r})"
