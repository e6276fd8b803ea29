# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Location extraction from a rendered profile "about" page.

Runs inside an inspection page. Profile pages render asynchronously, so the
page text is polled on a fixed interval until a location phrase appears or
the attempt budget runs out. Exhausting the budget yields ``None`` — an
absent location, not an error.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable

from .config import ExtractionPolicy

logger = logging.getLogger(__name__)

_LOCATION_PATTERNS = (
    re.compile(r"Account based in\s+([^\n]+)", re.IGNORECASE),
    re.compile(r"Date joined.*?Account based in\s+([^\n]+)", re.IGNORECASE | re.DOTALL),
)

_TEXT_SAMPLE_CHARS = 500


def extract_location(text: str) -> str | None:
    """Return the trimmed location phrase from page text, or None."""
    if not text:
        return None
    for pattern in _LOCATION_PATTERNS:
        match = pattern.search(text)
        if match:
            location = match.group(1).strip()
            if location:
                return location
    return None


async def poll_location(
    read_text: Callable[[], Awaitable[str]],
    policy: ExtractionPolicy | None = None,
    *,
    label: str = "",
) -> str | None:
    """Poll *read_text* until a location is found or the budget is exhausted.

    A failing ``read_text`` (page still navigating, detached frame) counts as
    a miss for that attempt.
    """
    policy = policy or ExtractionPolicy()
    await asyncio.sleep(policy.initial_delay)

    text = ""
    for attempt in range(1, policy.max_attempts + 1):
        try:
            text = await read_text()
        except Exception as exc:
            logger.debug("%s: page text unavailable (attempt %d): %s", label, attempt, exc)
            text = ""

        if attempt == 1:
            logger.debug("%s: page text sample: %r", label, text[:_TEXT_SAMPLE_CHARS])

        location = extract_location(text)
        if location:
            logger.info("%s: extracted location %r (attempt %d)", label, location, attempt)
            return location

        if attempt < policy.max_attempts:
            logger.debug("%s: location not found yet, retry %d/%d", label, attempt, policy.max_attempts)
            await asyncio.sleep(policy.retry_interval)

    logger.info("%s: max attempts reached, no location found", label)
    logger.debug("%s: final page text sample: %r", label, text[: _TEXT_SAMPLE_CHARS * 2])
    return None
