# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Location Blocker exception hierarchy.

All package-specific errors inherit from LocationBlockerError. Lookup
failures are converted to absent results by the scheduler and never reach
the feed observer as exceptions.
"""

from __future__ import annotations


class LocationBlockerError(Exception):
    """Base exception for all Location Blocker errors."""


class LookupUnavailableError(LocationBlockerError):
    """Inspection page could not be opened for a lookup."""

    def __init__(self, message: str, *, subject_id: str = "") -> None:
        super().__init__(message)
        self.subject_id = subject_id


class MessageError(LocationBlockerError):
    """Malformed or unsupported runtime message."""


class StoreError(LocationBlockerError):
    """Persisted state could not be opened or read."""
