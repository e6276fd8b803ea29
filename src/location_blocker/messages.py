# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime message schemas exchanged between feed, inspection pages and host.

Each message is a dict with an ``action`` discriminator. Control messages
(``toggleFilter``, ``toggleFetching``, ``updateLocations``) target the feed
observer; the rest target the background host.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from . import FailureKind, LookupResult
from .errors import MessageError

# Handle shape accepted by X; same pattern the feed uses to find author links.
USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class GetCountryForUser(_Message):
    """Feed → host: resolve an uncached author's location."""

    action: Literal["getCountryForUser"] = "getCountryForUser"
    username: str = Field(pattern=USERNAME_PATTERN, max_length=50, description="Author handle without '@'")


class CountryDataExtracted(_Message):
    """Inspection page → host: completion signal, correlated by sender handle."""

    action: Literal["countryDataExtracted"] = "countryDataExtracted"
    country: str | None = Field(None, description="Extracted location, or null when none was found")


class IncrementBlockedCount(_Message):
    """Feed → host: one more item hidden (fire-and-forget)."""

    action: Literal["incrementBlockedCount"] = "incrementBlockedCount"


class ToggleFilter(_Message):
    action: Literal["toggleFilter"] = "toggleFilter"
    enabled: bool


class ToggleFetching(_Message):
    action: Literal["toggleFetching"] = "toggleFetching"
    enabled: bool


class UpdateLocations(_Message):
    action: Literal["updateLocations"] = "updateLocations"
    locations: list[str] = Field(default_factory=list)


class CountryReply(BaseModel):
    """Host → feed: reply to ``getCountryForUser``."""

    country: str | None = None
    error: FailureKind | None = None

    def to_result(self) -> LookupResult:
        return LookupResult(country=(self.country or "").strip() or None, error=self.error)


Message = Annotated[
    GetCountryForUser | CountryDataExtracted | IncrementBlockedCount | ToggleFilter | ToggleFetching | UpdateLocations,
    Field(discriminator="action"),
]

_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(Message)


def parse_message(raw: dict | _Message) -> _Message:
    """Validate a raw message dict.

    Raises:
        MessageError: unknown action or invalid payload.
    """
    if isinstance(raw, _Message):
        return raw
    if not isinstance(raw, dict):
        raise MessageError(f"message must be a dict, got {type(raw).__name__}")
    try:
        return _MESSAGE_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        action = raw.get("action", "<missing>")
        raise MessageError(f"invalid {action!r} message: {exc.error_count()} error(s)") from exc
