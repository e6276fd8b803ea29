# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Location Blocker CLI: run the filter and manage its persisted settings.

Usage:
    location-blocker run [--headless] [--feed-url URL] [--profile-dir DIR] [--json-logs]
    location-blocker enable | disable
    location-blocker fetching on|off
    location-blocker locations list|add|remove|toggle [LOCATION]
    location-blocker users [--search TERM]
    location-blocker cache clear
    location-blocker stats

Settings commands write to the same database a running ``run`` process
polls, so changes apply to the open feed within a few seconds.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys

from tabulate import tabulate

from . import logging_config
from .block_list import BlockList
from .cache import ResolutionCache
from .catalog import group_by_location, search_users
from .config import BlockerConfig, config_from_env
from .errors import LocationBlockerError
from .store import (
    KEY_BLOCKED_LOCATIONS,
    KEY_ENABLED,
    KEY_FETCHING_ENABLED,
    StateStore,
    initialize_defaults,
    load_state,
)
from .store_sqlite import SqliteStore

logger = logging.getLogger(__name__)


def _build_config(args: argparse.Namespace) -> BlockerConfig:
    """Defaults ← LOCATION_BLOCKER_* env ← CLI flags."""
    config = config_from_env()
    top: dict = {}
    browser: dict = {}
    if getattr(args, "db_path", None):
        top["db_path"] = args.db_path
    if getattr(args, "feed_url", None):
        top["feed_url"] = args.feed_url
    if getattr(args, "max_concurrent", None):
        top["max_concurrent"] = max(1, args.max_concurrent)
    if getattr(args, "headless", False):
        browser["headless"] = True
    if getattr(args, "profile_dir", None):
        browser["user_data_dir"] = args.profile_dir
    if browser:
        top["browser"] = dataclasses.replace(config.browser, **browser)
    return dataclasses.replace(config, **top) if top else config


async def _open_store(config: BlockerConfig) -> StateStore:
    store = await SqliteStore.create(config.resolved_db_path)
    await initialize_defaults(store)
    return store


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_run(args: argparse.Namespace, config: BlockerConfig) -> None:
    """Open the feed and filter it until the feed page is closed."""
    from .app import LocationBlocker

    store = await _open_store(config)
    try:
        async with LocationBlocker(config, store) as blocker:
            print(f"Filtering {config.feed_url} — close the feed tab or press Ctrl+C to stop.", file=sys.stderr)
            await blocker.wait_closed()
    finally:
        await store.close()


async def cmd_toggle(args: argparse.Namespace, config: BlockerConfig) -> None:
    store = await _open_store(config)
    try:
        if args.command in ("enable", "disable"):
            enabled = args.command == "enable"
            await store.set(KEY_ENABLED, enabled)
            print(f"Filter {'enabled' if enabled else 'disabled'}")
        else:
            enabled = args.state == "on"
            await store.set(KEY_FETCHING_ENABLED, enabled)
            print(f"Auto-fetch {'active' if enabled else 'paused'}")
    finally:
        await store.close()


async def cmd_locations(args: argparse.Namespace, config: BlockerConfig) -> None:
    store = await _open_store(config)
    try:
        state = await load_state(store)
        block_list = BlockList(state.blocked_locations)

        if args.action == "list":
            if not block_list:
                print("No blocked locations")
            for location in block_list:
                print(f"📍 {location}")
            return

        location = " ".join(args.location or []).strip()
        if not location:
            raise LocationBlockerError(f"'locations {args.action}' needs a LOCATION")

        if args.action == "add":
            if not block_list.add(location):
                raise LocationBlockerError("Location already blocked")
            message = "Location added"
        elif args.action == "remove":
            if not block_list.remove(location):
                raise LocationBlockerError(f"Location not in block list: {location}")
            message = "Location removed"
        else:
            message = f"{'Blocked' if block_list.toggle(location) else 'Unblocked'} {location}"

        await store.set(KEY_BLOCKED_LOCATIONS, block_list.to_list())
        print(message)
    finally:
        await store.close()


async def cmd_users(args: argparse.Namespace, config: BlockerConfig) -> None:
    store = await _open_store(config)
    try:
        state = await load_state(store)
        users = state.user_country_cache
        filtered = search_users(users, args.search or "")
        if not filtered:
            print("No matching users" if args.search else "No users cataloged yet")
            return
        groups = group_by_location(filtered, BlockList(state.blocked_locations))
        rows = [
            [group.location, group.count, "blocked" if group.blocked else "", ", ".join(f"@{u}" for u in group.usernames)]
            for group in groups
        ]
        print(tabulate(rows, headers=["Location", "Users", "Status", "Handles"], tablefmt="simple"))
        if args.search:
            print(f"\nShowing {len(filtered)} of {len(users)} users")
        else:
            print(f"\n{len(users)} users cataloged")
    finally:
        await store.close()


async def cmd_cache(args: argparse.Namespace, config: BlockerConfig) -> None:
    store = await _open_store(config)
    try:
        cache = await ResolutionCache.load(store)
        count = len(cache)
        await cache.clear()
        print(f"Cache cleared ({count} users)")
    finally:
        await store.close()


async def cmd_stats(args: argparse.Namespace, config: BlockerConfig) -> None:
    store = await _open_store(config)
    try:
        state = await load_state(store)
        rows = [
            ["Filter", "enabled" if state.enabled else "disabled"],
            ["Auto-fetch", "active" if state.fetching_enabled else "paused"],
            ["Blocked locations", len(state.blocked_locations)],
            ["Posts hidden", state.blocked_count],
            ["Users cataloged", len(state.user_country_cache)],
        ]
        print(tabulate(rows, tablefmt="plain"))
    finally:
        await store.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Hide feed posts by the author's account location",
        prog="location-blocker",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines on stderr")
    parser.add_argument("--db-path", default="", help="State database (default: ~/.location-blocker/state.db)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_run = subparsers.add_parser("run", help="Open the feed and filter it")
    p_run.add_argument("--headless", action="store_true", help="Run Chromium headless")
    p_run.add_argument("--feed-url", type=str, metavar="URL", help="Feed page (default: https://x.com/home)")
    p_run.add_argument("--profile-dir", type=str, metavar="DIR", help="Persistent browser profile directory")
    p_run.add_argument("--max-concurrent", type=int, metavar="N", help="Concurrent profile lookups (default: 2)")

    subparsers.add_parser("enable", help="Turn the filter on")
    subparsers.add_parser("disable", help="Turn the filter off and reveal hidden posts")

    p_fetch = subparsers.add_parser("fetching", help="Pause or resume automatic location lookups")
    p_fetch.add_argument("state", choices=["on", "off"])

    p_loc = subparsers.add_parser("locations", help="Manage the block list")
    p_loc.add_argument("action", choices=["list", "add", "remove", "toggle"])
    p_loc.add_argument("location", nargs="*", help="Location text (case-insensitive substring)")

    p_users = subparsers.add_parser("users", help="Cataloged users grouped by location")
    p_users.add_argument("--search", type=str, default="", help="Filter by handle or location")

    p_cache = subparsers.add_parser("cache", help="Manage the resolution cache")
    p_cache.add_argument("action", choices=["clear"])

    subparsers.add_parser("stats", help="Show filter state and counters")
    return parser


_COMMANDS = {
    "run": cmd_run,
    "enable": cmd_toggle,
    "disable": cmd_toggle,
    "fetching": cmd_toggle,
    "locations": cmd_locations,
    "users": cmd_users,
    "cache": cmd_cache,
    "stats": cmd_stats,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging_config.configure(json_output=args.json_logs, level="DEBUG" if args.verbose else "INFO")
    config = _build_config(args)

    try:
        asyncio.run(_COMMANDS[args.command](args, config))
    except LocationBlockerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
