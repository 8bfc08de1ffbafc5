# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import anchoreval  # noqa: F401
except ImportError:
    raise ImportError("anchoreval is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests that exercise BrowserSessionManager patch
    ``anchoreval.browser_session.async_playwright`` themselves; that patch
    takes priority over this fixture. Opt out entirely with::

        @pytest.mark.allow_real_browser
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start a real Playwright driver. Patch 'anchoreval.browser_session.async_playwright'."
        )

    monkeypatch.setattr("anchoreval.browser_session.async_playwright", _no_real_playwright)


class VirtualClock:
    """Millisecond clock advanced only by ``sleep``; reads take no time."""

    def __init__(self, start_ms: float = 0) -> None:
        self.now_ms = start_ms
        self.sleeps = 0

    def __call__(self) -> float:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps += 1
        self.now_ms += round(seconds * 1000)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()
