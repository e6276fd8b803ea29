# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import location_blocker  # noqa: F401
except ImportError:
    raise ImportError("location_blocker is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from location_blocker.store import InMemoryStore


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Playwright launches in unit tests.

    Tests drive components with mock pages/contexts. A test that really
    wants Chromium can opt out with::

        @pytest.mark.allow_real_browser
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError("Test tried to start Playwright. Pass mock pages/contexts instead.")

    monkeypatch.setattr("location_blocker.app.async_playwright", _no_real_playwright)


@pytest.fixture
def store():
    return InMemoryStore()
