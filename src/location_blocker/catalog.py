# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cataloged users: cached resolutions grouped by location for review."""

from __future__ import annotations

from dataclasses import dataclass, field

from .block_list import BlockList, location_matches


@dataclass
class LocationGroup:
    location: str
    usernames: list[str] = field(default_factory=list)
    blocked: bool = False

    @property
    def count(self) -> int:
        return len(self.usernames)


def search_users(users: dict[str, str], term: str) -> dict[str, str]:
    """Users whose handle or location contains *term* (case-insensitive)."""
    needle = term.strip().lower()
    if not needle:
        return dict(users)
    return {u: loc for u, loc in users.items() if needle in u.lower() or needle in loc.lower()}


def group_by_location(users: dict[str, str], block_list: BlockList | None = None) -> list[LocationGroup]:
    """Group users by location, largest groups first, handles sorted within a group."""
    groups: dict[str, LocationGroup] = {}
    for username in sorted(users):
        location = users[username]
        group = groups.get(location)
        if group is None:
            group = groups[location] = LocationGroup(location=location)
        group.usernames.append(username)

    entries = block_list.to_list() if block_list is not None else []
    for group in groups.values():
        group.blocked = any(location_matches(group.location, entry) for entry in entries)

    # sorted() is stable: equal counts keep first-seen order
    return sorted(groups.values(), key=lambda g: g.count, reverse=True)
