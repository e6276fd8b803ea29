# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime configuration: browser launch, extraction budget, scheduler limits.

Defaults mirror the behaviour users already rely on (2 concurrent lookups,
15 s per lookup, 15 extraction attempts at 0.5 s). ``LOCATION_BLOCKER_*``
environment variables override defaults; CLI flags override both.
"""

from __future__ import annotations

import dataclasses
import os
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_LOCALE = "en-US"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_DB_PATH = "~/.location-blocker/state.db"
DEFAULT_PROFILE_DIR = "~/.location-blocker/profile"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BrowserConfig:
    """Chromium launch configuration for the persistent (logged-in) profile."""

    headless: bool = False  # X requires a signed-in session; headed by default
    user_data_dir: str = DEFAULT_PROFILE_DIR
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 900
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30000


@dataclass(frozen=True)
class ExtractionPolicy:
    """Page-local retry budget for reading a location off a profile page.

    Independent of the scheduler's per-job timeout.
    """

    initial_delay: float = 1.5
    retry_interval: float = 0.5
    max_attempts: int = 15

    @property
    def budget(self) -> float:
        return self.initial_delay + self.retry_interval * self.max_attempts


@dataclass(frozen=True)
class BlockerConfig:
    """Top-level configuration."""

    max_concurrent: int = 2
    lookup_timeout: float = 15.0
    profile_url_template: str = "https://x.com/{username}/about"
    feed_url: str = "https://x.com/home"
    status_interval: float = 30.0
    settings_poll_interval: float = 2.0
    db_path: str = DEFAULT_DB_PATH
    block_resources: bool = True
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    extraction: ExtractionPolicy = field(default_factory=ExtractionPolicy)

    def profile_url(self, username: str) -> str:
        """Derived lookup address for *username*."""
        return self.profile_url_template.format(username=username)

    @property
    def resolved_db_path(self) -> Path:
        return Path(self.db_path).expanduser()


def _env(name: str) -> str:
    return os.environ.get(f"LOCATION_BLOCKER_{name}", "").strip()


def config_from_env(base: BlockerConfig | None = None) -> BlockerConfig:
    """Apply ``LOCATION_BLOCKER_*`` overrides on top of *base* (or defaults).

    Unparseable numbers are ignored rather than fatal.
    """
    cfg = base or BlockerConfig()
    top: dict = {}
    browser: dict = {}

    env_concurrent = _env("MAX_CONCURRENT")
    if env_concurrent:
        with suppress(ValueError):
            top["max_concurrent"] = max(1, int(env_concurrent))

    env_timeout = _env("LOOKUP_TIMEOUT")
    if env_timeout:
        with suppress(ValueError):
            top["lookup_timeout"] = float(env_timeout)

    env_template = _env("PROFILE_URL")
    if env_template and "{username}" in env_template:
        top["profile_url_template"] = env_template

    env_feed = _env("FEED_URL")
    if env_feed:
        top["feed_url"] = env_feed

    env_db = _env("DB_PATH")
    if env_db:
        top["db_path"] = env_db

    env_block = _env("BLOCK_RESOURCES").lower()
    if env_block:
        top["block_resources"] = env_block in _TRUE_VALUES

    env_headless = _env("HEADLESS").lower()
    if env_headless:
        browser["headless"] = env_headless in _TRUE_VALUES

    env_profile = _env("PROFILE_DIR")
    if env_profile:
        browser["user_data_dir"] = env_profile

    if browser:
        top["browser"] = dataclasses.replace(cfg.browser, **browser)
    return dataclasses.replace(cfg, **top) if top else cfg
