# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the cataloged-users view."""

from __future__ import annotations

from location_blocker.block_list import BlockList
from location_blocker.catalog import group_by_location, search_users

_USERS = {
    "zed": "Germany",
    "alice": "Germany",
    "bob": "France",
    "carol": "United States",
    "dave": "Germany",
}


class TestSearchUsers:
    def test_blank_term_returns_everyone(self):
        assert search_users(_USERS, "  ") == _USERS

    def test_matches_handle_or_location(self):
        assert set(search_users(_USERS, "AL")) == {"alice"}
        assert set(search_users(_USERS, "states")) == {"carol"}

    def test_returns_copy(self):
        result = search_users(_USERS, "")
        result["eve"] = "Peru"
        assert "eve" not in _USERS


class TestGroupByLocation:
    def test_largest_group_first_with_sorted_handles(self):
        groups = group_by_location(_USERS)
        assert groups[0].location == "Germany"
        assert groups[0].usernames == ["alice", "dave", "zed"]
        assert groups[0].count == 3
        assert {g.location for g in groups[1:]} == {"France", "United States"}

    def test_ties_keep_first_seen_order(self):
        groups = group_by_location({"b": "Spain", "a": "Chile"})
        # Handles are visited in sorted order, so "a" (Chile) is seen first.
        assert [g.location for g in groups] == ["Chile", "Spain"]

    def test_blocked_flag_follows_block_list(self):
        groups = group_by_location(_USERS, BlockList(["states"]))
        by_location = {g.location: g for g in groups}
        assert by_location["United States"].blocked
        assert not by_location["Germany"].blocked

    def test_empty(self):
        assert group_by_location({}) == []
