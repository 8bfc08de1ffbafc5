# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared Playwright browser for a batch of anchoring tests.

One Chromium process is started lazily on the first ``get()`` and reused by
every test; each test opens its own isolated ``BrowserContext`` through
``new_context()`` and closes it when done. The caller closes the manager
explicitly::

    sessions = BrowserSessionManager(BrowserConfig())
    try:
        context = await sessions.new_context()
        ...
    finally:
        await sessions.close()
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import suppress
from dataclasses import dataclass
from types import TracebackType

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from .errors import BrowserError

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en-US"


@dataclass
class BrowserConfig:
    """Browser launch and per-test context configuration."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str | None = None  # None: Chromium's own UA
    navigation_timeout_ms: int = 60000  # proxied PDFs can be large


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return Chromium launch arguments for unattended test runs."""
    return [
        f"--lang={config.locale}",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds, Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found — running 'playwright install chromium' …")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


class BrowserSessionManager:
    """Lazily started, explicitly closed, shared browser.

    ``get()`` is single-flight: concurrent first calls start one browser.
    A browser that has disconnected (crash) is replaced on the next ``get()``.
    """

    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def get(self) -> Browser:
        """Return the shared browser, starting it on first use."""
        async with self._lock:
            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Browser disconnected, restarting")
                await self._shutdown()
            if self._browser is None:
                await self._start()
            return self._browser

    async def new_context(self) -> BrowserContext:
        """Open an isolated context on the shared browser. Caller closes it."""
        browser = await self.get()
        return await browser.new_context(
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            accept_downloads=False,
        )

    async def close(self) -> None:
        """Close browser and playwright. Safe to call when never started."""
        async with self._lock:
            await self._shutdown()

    async def __aenter__(self) -> BrowserSessionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Internal ─────────────────────────────────────────────────────

    async def _start(self) -> None:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._launch()
        except BaseException:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
            raise
        logger.info("Browser started (headless=%s)", self.config.headless)

    async def _launch(self) -> Browser:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Failed to launch Chromium: {exc}") from exc
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def _shutdown(self) -> None:
        if self._browser is not None:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
            logger.info("Browser closed")
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
