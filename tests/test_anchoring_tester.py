# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for AnchoringTester — one isolated context per test, always closed.

The browser manager, context and page are mocks; the detector runs on a
virtual clock so timeouts take no real time.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from anchoreval import Result
from anchoreval.anchoring_tester import AnchoringTester
from anchoreval.browser_session import BrowserConfig
from anchoreval.convergence import ConvergenceDetector, DetectorOptions
from anchoreval.errors import BrowserError, NavigationError
from anchoreval.probes import SIDEBAR_FRAME_NAME

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _mock_page(*, tab_counts=None, highlights=0, sidebar=True):
    page = MagicMock()
    page.goto = AsyncMock()
    page.on = MagicMock()
    page.evaluate = AsyncMock(return_value=highlights)
    if sidebar:
        frame = MagicMock()
        frame.evaluate = AsyncMock(return_value=tab_counts)
        page.frame = MagicMock(return_value=frame)
    else:
        page.frame = MagicMock(return_value=None)
    return page


def _mock_sessions(page):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    sessions = MagicMock()
    sessions.config = BrowserConfig(navigation_timeout_ms=12345)
    sessions.new_context = AsyncMock(return_value=context)
    sessions.close = AsyncMock()
    return sessions, context


@pytest.fixture
def detector(clock):
    opts = DetectorOptions(overall_timeout_ms=1000, poll_interval_ms=50, stability_timeout_ms=300)
    return ConvergenceDetector(opts, clock=clock, sleep=clock.sleep)


# ---------------------------------------------------------------------------
# run_test
# ---------------------------------------------------------------------------


class TestRunTest:
    async def test_converged_result(self, detector):
        page = _mock_page(tab_counts={"annotationCount": 3, "orphanCount": 1}, highlights=3)
        sessions, context = _mock_sessions(page)
        tester = AnchoringTester(sessions=sessions, detector=detector)

        result = await tester.run_test("https://example.com/a.pdf", "via")

        assert result == Result(annotation_count=3, orphan_count=1, highlight_count=3, anchor_time_ms=0)
        context.close.assert_awaited_once()
        sessions.close.assert_not_awaited()

    async def test_navigates_to_proxy_url(self, detector):
        page = _mock_page(tab_counts={"annotationCount": 0, "orphanCount": 0})
        sessions, _ = _mock_sessions(page)
        tester = AnchoringTester(sessions=sessions, detector=detector, via_base_url="http://localhost:9083")

        await tester.run_test("https://example.com/a.pdf", "via-pdfjs2")

        page.goto.assert_awaited_once_with(
            "http://localhost:9083/https://example.com/a.pdf?via.features=pdfjs2",
            timeout=12345,
        )

    async def test_sidebar_read_in_frame_highlights_in_page(self, detector):
        page = _mock_page(tab_counts={"annotationCount": 2, "orphanCount": 0}, highlights=2)
        sessions, _ = _mock_sessions(page)
        await AnchoringTester(sessions=sessions, detector=detector).run_test("https://example.com/", "via")

        page.frame.assert_called_with(name=SIDEBAR_FRAME_NAME)
        sidebar = page.frame.return_value
        assert "selection-tabs" in sidebar.evaluate.call_args.args[0]
        assert "hypothesis-highlight" in page.evaluate.call_args.args[0]

    async def test_missing_sidebar_times_out_without_raising(self, detector):
        page = _mock_page(sidebar=False, highlights=0)
        sessions, context = _mock_sessions(page)

        result = await AnchoringTester(sessions=sessions, detector=detector).run_test("https://example.com/", "via")

        assert result.annotation_count is None
        assert result.orphan_count is None
        assert result.anchor_time_ms == 1000
        context.close.assert_awaited_once()

    async def test_unknown_mode_rejected_before_opening_context(self, detector):
        page = _mock_page()
        sessions, _ = _mock_sessions(page)
        with pytest.raises(ValueError):
            await AnchoringTester(sessions=sessions, detector=detector).run_test("https://example.com/", "html")
        sessions.new_context.assert_not_awaited()

    async def test_hung_sidebar_evaluation_stops_at_overall_timeout(self):
        # Real clock: a sidebar frame that never answers (mid-navigation).
        async def never(*_args):
            await asyncio.Event().wait()

        page = _mock_page(highlights=0)
        page.frame.return_value.evaluate = never
        sessions, context = _mock_sessions(page)
        opts = DetectorOptions(overall_timeout_ms=300, poll_interval_ms=50, stability_timeout_ms=100)

        result = await AnchoringTester(sessions=sessions, options=opts).run_test("https://example.com/", "via")

        assert result.annotation_count is None
        assert result.highlight_count == 0
        assert abs(result.anchor_time_ms - opts.overall_timeout_ms) <= opts.poll_interval_ms
        context.close.assert_awaited_once()


class TestNavigationFailure:
    async def test_raises_navigation_error_and_closes_context(self, detector):
        page = _mock_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        sessions, context = _mock_sessions(page)
        tester = AnchoringTester(sessions=sessions, detector=detector)

        with pytest.raises(NavigationError) as exc_info:
            await tester.run_test("https://no-such-host.invalid/a.pdf", "via")

        assert isinstance(exc_info.value, BrowserError)
        assert exc_info.value.url == "https://via.hypothes.is/https://no-such-host.invalid/a.pdf"
        assert isinstance(exc_info.value.__cause__, PlaywrightError)
        context.close.assert_awaited_once()
        page.evaluate.assert_not_awaited()

    async def test_context_closed_even_if_close_fails(self, detector):
        page = _mock_page()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_REFUSED"))
        sessions, context = _mock_sessions(page)
        context.close = AsyncMock(side_effect=Exception("Target closed"))

        with pytest.raises(NavigationError):
            await AnchoringTester(sessions=sessions, detector=detector).run_test("https://example.com/", "via")
        context.close.assert_awaited_once()

    async def test_session_reusable_after_failure(self, detector):
        bad = _mock_page()
        bad.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        good = _mock_page(tab_counts={"annotationCount": 1, "orphanCount": 0}, highlights=1)
        sessions, context = _mock_sessions(bad)
        context.new_page = AsyncMock(side_effect=[bad, good])
        tester = AnchoringTester(sessions=sessions, detector=detector)

        with pytest.raises(NavigationError):
            await tester.run_test("https://bad.example/", "via")
        result = await tester.run_test("https://good.example/", "via")

        assert result.annotation_count == 1
        assert context.close.await_count == 2


class TestConsoleForwarding:
    async def test_only_unexpected_messages_reach_sink(self, detector):
        page = _mock_page(tab_counts={"annotationCount": 0, "orphanCount": 0})
        sessions, _ = _mock_sessions(page)
        forwarded = []
        tester = AnchoringTester(
            sessions=sessions,
            detector=detector,
            console_sink=lambda t, text: forwarded.append((t, text)),
        )
        await tester.run_test("https://example.com/", "via")

        event, handler = page.on.call_args.args
        assert event == "console"
        handler(SimpleNamespace(type="info", text="PDF.js: 2.1.266"))
        handler(SimpleNamespace(type="error", text="Uncaught ReferenceError: x is not defined"))
        assert forwarded == [("error", "Uncaught ReferenceError: x is not defined")]


class TestLifecycle:
    async def test_close_closes_sessions(self, detector):
        sessions, _ = _mock_sessions(_mock_page())
        await AnchoringTester(sessions=sessions, detector=detector).close()
        sessions.close.assert_awaited_once()

    async def test_async_context_manager(self, detector):
        sessions, _ = _mock_sessions(_mock_page())
        async with AnchoringTester(sessions=sessions, detector=detector) as tester:
            assert tester.options.overall_timeout_ms == 1000
        sessions.close.assert_awaited_once()
