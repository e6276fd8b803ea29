# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright Chromium lifecycle for the persistent, signed-in profile.

The feed page and every inspection page share one persistent
BrowserContext so profile lookups reuse the user's X session cookies.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from playwright.async_api import BrowserContext, Dialog, Playwright, Route

from .config import BrowserConfig
from .errors import LocationBlockerError

logger = logging.getLogger(__name__)

# Inspection pages only need text: skip heavy and tracking requests.
BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})
BLOCKED_URL_PATTERNS = (
    "analytics",
    "doubleclick",
    "googlesyndication",
    "video.twimg.com",
    "pbs.twimg.com",
    "ton.twitter.com",
)


# ── Chromium auto-install ─────────────────────────────────────────

_INSTALL_COMMAND = (sys.executable, "-m", "playwright", "install", "chromium")
_INSTALL_TIMEOUT = 300  # seconds; Chromium is a ~140MB download
_install_state = {"attempted": False}


async def _auto_install_chromium() -> bool:
    """Install the Chromium build Playwright expects. Tried at most once per process."""
    if _install_state["attempted"]:
        return False
    _install_state["attempted"] = True

    logger.info("No Chromium for the profile; installing it (one-time, may take a few minutes)")
    proc = None
    try:
        async with asyncio.timeout(_INSTALL_TIMEOUT):
            proc = await asyncio.create_subprocess_exec(
                *_INSTALL_COMMAND,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, err = await proc.communicate()
    except TimeoutError:
        if proc is not None and proc.returncode is None:
            proc.kill()
        logger.warning("Chromium install gave up after %ds", _INSTALL_TIMEOUT)
        return False
    except OSError:
        logger.warning("Could not start the Chromium installer", exc_info=True)
        return False

    if proc.returncode != 0:
        logger.warning("Chromium install exited with %d: %s", proc.returncode, err.decode(errors="replace")[-500:])
        return False
    logger.info("Chromium ready")
    return True


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium flags for a quiet, automation-friendly headed profile."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-dev-shm-usage",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
        # Background inspection pages must keep running their timers.
        "--disable-background-timer-throttling",
        "--disable-backgrounding-occluded-windows",
        "--disable-renderer-backgrounding",
    ]


async def launch_persistent_context(playwright: Playwright, config: BrowserConfig) -> BrowserContext:
    """Launch Chromium on the persistent profile, auto-installing on first miss."""
    user_data_dir = Path(config.user_data_dir).expanduser()
    user_data_dir.mkdir(parents=True, exist_ok=True)
    kwargs = {
        "headless": config.headless,
        "args": chromium_launch_args(config),
        "viewport": {"width": config.viewport_width, "height": config.viewport_height},
        "locale": config.locale,
        "user_agent": config.user_agent,
        "accept_downloads": False,
    }
    try:
        context = await playwright.chromium.launch_persistent_context(str(user_data_dir), **kwargs)
    except Exception as exc:
        if "executable doesn't exist" not in str(exc).lower():
            raise
        if not await _auto_install_chromium():
            raise LocationBlockerError(
                "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
            ) from exc
        context = await playwright.chromium.launch_persistent_context(str(user_data_dir), **kwargs)

    context.set_default_navigation_timeout(config.timeout_ms)
    context.on("dialog", _dismiss_dialog)
    logger.info("Browser context started (headless=%s, profile=%s)", config.headless, user_data_dir)
    return context


async def _dismiss_dialog(dialog: Dialog) -> None:
    """Dialogs would stall background inspection pages; dismiss them."""
    logger.debug("Dismissing %s dialog: %s", dialog.type, dialog.message[:100])
    try:
        await dialog.dismiss()
    except Exception:
        logger.debug("Dialog dismiss failed", exc_info=True)


async def block_heavy_resources(route: Route) -> None:
    """Route handler: abort images, media, fonts and tracking requests."""
    request = route.request
    if request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
        return
    url = request.url.lower()
    if any(pattern in url for pattern in BLOCKED_URL_PATTERNS):
        await route.abort()
        return
    await route.continue_()
