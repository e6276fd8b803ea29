# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Feed surface — the timeline page as seen by the feed observer.

``PlaywrightFeed`` injects a MutationObserver into the feed page. Every post
(``article[data-testid="tweet"]``) gets a stable ``data-lb-item`` id the
first time it is seen; inserted posts are reported to Python through an
exposed binding as ``FeedItem`` records (id + relative link hrefs).

Hiding dims the post and overlays it with the matched location and a
"Show post" button that reveals it again.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from playwright.async_api import Page

logger = logging.getLogger(__name__)

FEED_ITEM_SELECTOR = 'article[data-testid="tweet"]'
_BINDING_NAME = "__locationBlockerItems"

# Author links are bare "/handle" paths; "/handle/status/…" and "/i/…" are not.
_HANDLE_HREF = re.compile(r"^/([A-Za-z0-9_]+)$")


@dataclass(frozen=True, slots=True)
class FeedItem:
    """One post in the feed, identified by its page-side id."""

    item_id: str
    links: tuple[str, ...] = ()


def extract_subject_id(links: Iterable[str]) -> str | None:
    """Author handle from the first link shaped exactly like ``/handle``."""
    for href in links:
        if not href:
            continue
        match = _HANDLE_HREF.match(href)
        if match:
            return match.group(1)
    return None


def _to_items(raw: object) -> list[FeedItem]:
    if not isinstance(raw, list):
        return []
    items: list[FeedItem] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        links = tuple(str(h) for h in entry.get("links") or () if h)
        items.append(FeedItem(item_id=str(entry["id"]), links=links))
    return items


ItemsCallback = Callable[[list[FeedItem]], None]


@runtime_checkable
class FeedSurface(Protocol):
    """What the observer needs from the feed page."""

    async def watch(self, on_items: ItemsCallback) -> None: ...

    async def unwatch(self) -> None: ...

    async def snapshot(self) -> list[FeedItem]: ...

    async def hide(self, item_id: str, location: str) -> bool: ...

    async def reveal_all(self) -> int: ...


# ---------------------------------------------------------------------------
# Page-side scripts
# ---------------------------------------------------------------------------

_PAGE_HELPERS_JS = """(() => {
  if (window.__lbDescribe) return;
  const SELECTOR = 'article[data-testid="tweet"]';
  window.__lbSeq = window.__lbSeq || 0;
  window.__lbSelector = SELECTOR;
  window.__lbDescribe = (el) => {
    if (!el.dataset.lbItem) el.dataset.lbItem = String(++window.__lbSeq);
    const links = Array.from(el.querySelectorAll('a[href^="/"]')).map((a) => a.getAttribute('href'));
    return { id: el.dataset.lbItem, links };
  };
  if (!document.getElementById('location-blocker-style')) {
    const style = document.createElement('style');
    style.id = 'location-blocker-style';
    style.textContent = `
      .location-blocker-badge { position: absolute; top: 6px; right: 8px; font-size: 12px;
        padding: 2px 6px; border-radius: 8px; background: #f4212e; color: #fff; z-index: 10; }
      .location-blocker-overlay { position: absolute; inset: 0; display: flex; align-items: center;
        justify-content: center; background: rgba(0, 0, 0, 0.6); z-index: 9; }
      .location-blocker-content { text-align: center; color: #fff; font-weight: 600; }
      .location-blocker-show-btn { margin-top: 6px; padding: 4px 12px; border-radius: 12px;
        border: none; cursor: pointer; }
    `;
    (document.head || document.documentElement).appendChild(style);
  }
})()"""

_WATCH_JS = """(binding) => {
  if (window.__lbObserver) window.__lbObserver.disconnect();
  const SELECTOR = window.__lbSelector;
  const observer = new MutationObserver((mutations) => {
    const items = [];
    for (const mutation of mutations) {
      for (const node of mutation.addedNodes) {
        if (node.nodeType !== 1) continue;
        if (node.matches && node.matches(SELECTOR)) items.push(window.__lbDescribe(node));
        node.querySelectorAll(SELECTOR).forEach((el) => items.push(window.__lbDescribe(el)));
      }
    }
    if (items.length && window[binding]) window[binding](items);
  });
  observer.observe(document.body, { childList: true, subtree: true });
  window.__lbObserver = observer;
}"""

_UNWATCH_JS = """() => {
  if (window.__lbObserver) { window.__lbObserver.disconnect(); window.__lbObserver = null; }
}"""

_SNAPSHOT_JS = """() => Array.from(document.querySelectorAll(window.__lbSelector)).map(window.__lbDescribe)"""

_HIDE_JS = """([id, location]) => {
  const el = document.querySelector(`${window.__lbSelector}[data-lb-item="${id}"]`);
  if (!el || el.querySelector('.location-blocker-overlay')) return false;
  el.style.position = 'relative';
  el.style.opacity = '0.3';

  const badge = document.createElement('div');
  badge.className = 'location-blocker-badge';
  badge.textContent = `📍 ${location}`;
  el.appendChild(badge);

  const overlay = document.createElement('div');
  overlay.className = 'location-blocker-overlay';
  const content = document.createElement('div');
  content.className = 'location-blocker-content';
  const title = document.createElement('p');
  title.textContent = '🚫 Blocked Location';
  const detail = document.createElement('small');
  detail.textContent = location;
  const button = document.createElement('button');
  button.className = 'location-blocker-show-btn';
  button.textContent = 'Show post';
  button.addEventListener('click', (event) => {
    event.stopPropagation();
    overlay.remove();
    badge.remove();
    el.style.opacity = '1';
  });
  content.append(title, detail, button);
  overlay.appendChild(content);
  el.appendChild(overlay);
  return true;
}"""

_REVEAL_ALL_JS = """() => {
  const marks = document.querySelectorAll('.location-blocker-overlay, .location-blocker-badge');
  marks.forEach((el) => el.remove());
  document.querySelectorAll(window.__lbSelector || 'article').forEach((el) => {
    el.style.opacity = '';
    el.style.position = '';
  });
  return marks.length;
}"""


# ---------------------------------------------------------------------------
# PlaywrightFeed
# ---------------------------------------------------------------------------


class PlaywrightFeed:
    """FeedSurface backed by a live Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self._on_items: ItemsCallback | None = None
        self._binding_installed = False
        self._watching = False
        page.on("domcontentloaded", self._on_document)

    @property
    def page(self) -> Page:
        return self._page

    @property
    def watching(self) -> bool:
        return self._watching

    async def watch(self, on_items: ItemsCallback) -> None:
        """Start reporting inserted feed items to *on_items*."""
        self._on_items = on_items
        if not self._binding_installed:
            await self._page.expose_function(_BINDING_NAME, self._receive)
            self._binding_installed = True
        self._watching = True
        await self._install()
        logger.info("Feed watch attached")

    async def unwatch(self) -> None:
        self._watching = False
        try:
            await self._page.evaluate(_UNWATCH_JS)
        except Exception:
            logger.debug("Feed unwatch failed (page gone?)", exc_info=True)
        logger.info("Feed watch detached")

    async def snapshot(self) -> list[FeedItem]:
        await self._page.evaluate(_PAGE_HELPERS_JS)
        return _to_items(await self._page.evaluate(_SNAPSHOT_JS))

    async def hide(self, item_id: str, location: str) -> bool:
        await self._page.evaluate(_PAGE_HELPERS_JS)
        return bool(await self._page.evaluate(_HIDE_JS, [item_id, location]))

    async def reveal_all(self) -> int:
        removed = await self._page.evaluate(_REVEAL_ALL_JS)
        logger.info("Removed %d overlay(s) and badge(s)", removed or 0)
        return int(removed or 0)

    # ── Internal ─────────────────────────────────────────────────────

    async def _install(self) -> None:
        await self._page.evaluate(_PAGE_HELPERS_JS)
        await self._page.evaluate(_WATCH_JS, _BINDING_NAME)

    def _receive(self, raw: object) -> None:
        """Binding target called from the page's MutationObserver."""
        if not self._watching or self._on_items is None:
            return
        items = _to_items(raw)
        if items:
            logger.debug("Found %d new feed item(s) in DOM mutation", len(items))
            self._on_items(items)

    async def _on_document(self, _page: Page) -> None:
        """Full navigations drop the injected observer; re-arm it."""
        if not self._watching:
            return
        try:
            await self._install()
        except Exception:
            logger.debug("Re-arming feed watch after navigation failed", exc_info=True)
