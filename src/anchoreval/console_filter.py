# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Console output policy for pages under test.

Messages from the sidebar or the proxied document that are known to be
harmless are dropped; everything else is forwarded verbatim to a log sink.
Forwarded output never affects a test's Result.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from typing import Protocol

logger = logging.getLogger(__name__)

# Plain strings match as substrings, compiled patterns with ``search``.
IGNORED_CONSOLE_MESSAGES: tuple[str | re.Pattern[str], ...] = (
    # Unimportant warnings from PDF.js.
    "#page_of is undefined",
    "#thumb_page_title is undefined",
    # Unknown feature flags looked up by the annotation client.
    "looked up unknown feature",
    # PDF.js version banner.
    re.compile(r"PDF\.js: [0-9.]+"),
)


class ConsoleMessageLike(Protocol):
    """The parts of ``playwright.async_api.ConsoleMessage`` that are used."""

    @property
    def type(self) -> str: ...

    @property
    def text(self) -> str: ...


def is_ignored(text: str, patterns: Iterable[str | re.Pattern[str]] = IGNORED_CONSOLE_MESSAGES) -> bool:
    """Return True if *text* matches any benign pattern."""
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(text):
                return True
        elif pattern in text:
            return True
    return False


def _log_sink(msg_type: str, text: str) -> None:
    logger.info("console %s: %s", msg_type, text)


class ConsoleFilter:
    """``page.on("console", ...)`` handler applying the ignore list.

    Args:
        sink: Receives ``(type, text)`` for every message that is not ignored.
            Defaults to logging at INFO on this module's logger.
        patterns: Benign patterns; defaults to IGNORED_CONSOLE_MESSAGES.
    """

    def __init__(
        self,
        sink: Callable[[str, str], None] | None = None,
        patterns: Iterable[str | re.Pattern[str]] = IGNORED_CONSOLE_MESSAGES,
    ) -> None:
        self._sink = sink or _log_sink
        self._patterns = tuple(patterns)
        self.suppressed = 0

    def __call__(self, message: ConsoleMessageLike) -> None:
        text = message.text
        if is_ignored(text, self._patterns):
            self.suppressed += 1
            return
        self._sink(message.type, text)
