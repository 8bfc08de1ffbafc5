# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RemoteEvaluator — run a pure JS function inside a page or frame.

Convergence detection only depends on the ``RemoteEvaluator`` protocol, so it
can be driven by fake signal sources in tests. ``PlaywrightEvaluator`` adapts
a Playwright ``Page`` or ``Frame`` (both expose ``evaluate``).
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

from playwright.async_api import Frame, Page

# Upper bound for a single evaluation. A frame that is mid-navigation can
# leave evaluate() pending; the poll loop must keep ticking regardless.
DEFAULT_EVALUATE_TIMEOUT_MS = 5000


@runtime_checkable
class RemoteEvaluator(Protocol):
    async def evaluate(self, expression: str, arg: Any = None, *, timeout_ms: int | None = None) -> Any: ...


class PlaywrightEvaluator:
    """Evaluate JS in a Playwright page or frame with a per-call timeout.

    *timeout_ms* is the default bound; ``evaluate(..., timeout_ms=...)``
    overrides it for a single call.
    """

    __slots__ = ("_target", "_timeout_ms")

    def __init__(self, target: Page | Frame, *, timeout_ms: int = DEFAULT_EVALUATE_TIMEOUT_MS) -> None:
        self._target = target
        self._timeout_ms = timeout_ms

    async def evaluate(self, expression: str, arg: Any = None, *, timeout_ms: int | None = None) -> Any:
        if timeout_ms is None:
            timeout_ms = self._timeout_ms
        async with asyncio.timeout(max(timeout_ms, 0) / 1000):
            return await self._target.evaluate(expression, arg)
