# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AnchoringTester — run one anchoring test per document URL.

For each test: build the via address, open an isolated browser context on
the shared browser, forward unexpected console output to the log, navigate,
then hand the sidebar frame and the top-level page to the convergence
detector as its two signal readers. The context is closed on every exit
path; the browser stays up for the next test.

Only navigation failures are raised (``NavigationError``). Every convergence
outcome, including no signal at all, is returned as a ``Result``::

    async with AnchoringTester() as tester:
        result = await tester.run_test("https://example.com/a.pdf", "via")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import suppress
from types import TracebackType

import structlog
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from . import Mode, Result, TabCounts
from .browser_session import BrowserConfig, BrowserSessionManager
from .console_filter import ConsoleFilter
from .convergence import ConvergenceDetector, DetectorOptions
from .errors import NavigationError
from .evaluator import DEFAULT_EVALUATE_TIMEOUT_MS, PlaywrightEvaluator
from .probes import SIDEBAR_FRAME_NAME, read_highlight_count, read_tab_counts
from .proxy_url import DEFAULT_VIA_URL, build_proxy_url

logger = logging.getLogger(__name__)


class AnchoringTester:
    """Open documents through via and measure anchoring results.

    Args:
        sessions: Shared browser manager; created from *config* if omitted.
        config: Browser configuration (ignored when *sessions* is given).
        options: Convergence thresholds.
        via_base_url: Root of the proxy.
        console_sink: Receives ``(type, text)`` of non-benign console messages.
        detector: Pre-built detector (tests inject one with a virtual clock).
    """

    def __init__(
        self,
        *,
        sessions: BrowserSessionManager | None = None,
        config: BrowserConfig | None = None,
        options: DetectorOptions | None = None,
        via_base_url: str = DEFAULT_VIA_URL,
        console_sink: Callable[[str, str], None] | None = None,
        detector: ConvergenceDetector | None = None,
    ) -> None:
        self._sessions = sessions or BrowserSessionManager(config)
        self._detector = detector or ConvergenceDetector(options)
        self._via_base_url = via_base_url
        self._console_sink = console_sink

    @property
    def options(self) -> DetectorOptions:
        return self._detector.options

    async def run_test(self, url: str, mode: Mode | str) -> Result:
        """Load *url* through via in *mode* and measure anchoring.

        Raises:
            NavigationError: the proxied document could not be loaded.
            ValueError: unknown *mode*.
        """
        mode = Mode.parse(mode)
        proxy_url = build_proxy_url(url, mode, self._via_base_url)

        with structlog.contextvars.bound_contextvars(url=url, mode=mode.value):
            context = await self._sessions.new_context()
            try:
                page = await context.new_page()
                page.on("console", ConsoleFilter(self._console_sink))

                logger.info("Loading proxy URL %s", proxy_url)
                await self._navigate(page, proxy_url)

                # No single evaluation may outlast the whole measurement.
                timeout_ms = min(DEFAULT_EVALUATE_TIMEOUT_MS, self.options.overall_timeout_ms)

                async def _tab_counts() -> TabCounts | None:
                    return await _read_sidebar_counts(page, timeout_ms)

                async def _highlights() -> int:
                    return await read_highlight_count(PlaywrightEvaluator(page), timeout_ms=timeout_ms)

                return await self._detector.detect(_tab_counts, _highlights)
            finally:
                await _close_context(context)

    async def close(self) -> None:
        """Shut down the shared browser."""
        await self._sessions.close()

    async def __aenter__(self) -> AnchoringTester:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _navigate(self, page: Page, proxy_url: str) -> None:
        try:
            await page.goto(proxy_url, timeout=self._sessions.config.navigation_timeout_ms)
        except PlaywrightError as exc:
            raise NavigationError(f"Failed to load {proxy_url}: {exc}", url=proxy_url) from exc


async def _read_sidebar_counts(page: Page, timeout_ms: int) -> TabCounts | None:
    # Looked up on every tick: the sidebar frame appears some time after load
    # and may be re-created when the client reloads it.
    frame = page.frame(name=SIDEBAR_FRAME_NAME)
    if frame is None:
        return None
    return await read_tab_counts(PlaywrightEvaluator(frame), timeout_ms=timeout_ms)


async def _close_context(context: BrowserContext) -> None:
    with suppress(Exception):
        await context.close()
