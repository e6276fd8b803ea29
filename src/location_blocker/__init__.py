# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Location Blocker: hide feed posts by the author's account location.

Author locations are resolved lazily through background profile pages:
- a bounded scheduler admits lookups FIFO under a concurrency cap
- a feed observer watches the timeline and hides posts whose author
  location matches the user's block list
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class FailureKind(StrEnum):
    """Why a lookup produced no location (wire value of the ``error`` tag)."""

    LOOKUP_UNAVAILABLE = "tab_error"
    TIMEOUT = "timeout"


class ItemDecision(StrEnum):
    """Outcome of evaluating one feed item."""

    BLOCKED = "blocked"
    ALLOWED = "allowed"
    UNRESOLVED = "unresolved"  # no location (cache miss with fetching off, or lookup failed)
    SKIPPED = "skipped"  # already processed, filter off, or no author link


@dataclass(frozen=True, slots=True)
class LookupResult:
    """Resolution of one lookup job. Failures are absent results, never exceptions."""

    country: str | None = None
    error: FailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.country and self.country.strip())

    def to_reply(self) -> dict:
        reply: dict = {"country": self.country}
        if self.error is not None:
            reply["error"] = self.error.value
        return reply
