# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Convergence detection for an anchoring run.

The system under test never announces that anchoring is finished, so the
detector polls two signals and stops on the first of:

- CONVERGED: the sidebar shows its counts and the number of highlighted
  annotations has reached the annotation count
- STALLED: a positive highlight count has not changed for
  ``stability_timeout_ms`` (some annotations never anchor)
- TIMED_OUT: ``overall_timeout_ms`` elapsed since the first poll

A highlight count of 0 never arms the STALLED exit: it cannot be told apart
from "anchoring has not started yet". Worst-case latency is therefore
``max(overall_timeout_ms, first_positive_highlight + stability_timeout_ms)``
plus one poll tick.

``next_state`` is the pure termination predicate; ``ConvergenceDetector``
runs the I/O loop around it with an injectable clock and sleep, so the loop
can be driven on virtual time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from . import Result, Sample, TabCounts

logger = logging.getLogger(__name__)

TabCountsReader = Callable[[], Awaitable[TabCounts | None]]
HighlightCountReader = Callable[[], Awaitable[int]]

# Defaults
DEFAULT_OVERALL_TIMEOUT_MS = 30000
DEFAULT_POLL_INTERVAL_MS = 50
DEFAULT_STABILITY_TIMEOUT_MS = 5000


@dataclass(frozen=True, slots=True)
class DetectorOptions:
    """Polling cadence and exit thresholds, all in milliseconds."""

    overall_timeout_ms: int = DEFAULT_OVERALL_TIMEOUT_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    stability_timeout_ms: int = DEFAULT_STABILITY_TIMEOUT_MS

    def __post_init__(self) -> None:
        for name in ("overall_timeout_ms", "poll_interval_ms", "stability_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")


class DetectorState(StrEnum):
    SAMPLING = "sampling"
    CONVERGED = "converged"
    STALLED = "stalled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not DetectorState.SAMPLING


def next_state(
    tab_counts: TabCounts | None,
    highlight_count: int,
    elapsed_ms: float,
    since_change_ms: float,
    options: DetectorOptions,
) -> DetectorState:
    """Termination predicate, evaluated after every sample.

    Exits are checked in priority order. Convergence uses ``>=``: a transient
    overcount (e.g. a stale duplicate highlight) also ends the run.
    """
    if tab_counts is not None and highlight_count >= tab_counts.annotation_count:
        return DetectorState.CONVERGED
    if highlight_count > 0 and since_change_ms >= options.stability_timeout_ms:
        return DetectorState.STALLED
    if elapsed_ms >= options.overall_timeout_ms:
        return DetectorState.TIMED_OUT
    return DetectorState.SAMPLING


@dataclass(frozen=True, slots=True)
class Detection:
    """Result plus the terminal state and every sample taken."""

    result: Result
    state: DetectorState
    samples: tuple[Sample, ...]


def _monotonic_ms() -> float:
    return time.monotonic_ns() / 1e6


class ConvergenceDetector:
    """Poll two signal readers until the run converges, stalls or times out.

    Args:
        options: Thresholds; defaults to ``DetectorOptions()``.
        clock: Returns the current time in milliseconds (monotonic).
        sleep: Coroutine function taking seconds, like ``asyncio.sleep``.
    """

    def __init__(
        self,
        options: DetectorOptions | None = None,
        *,
        clock: Callable[[], float] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.options = options or DetectorOptions()
        self._clock = clock
        self._sleep = sleep

    async def detect(self, read_tab_counts: TabCountsReader, read_highlight_count: HighlightCountReader) -> Result:
        """Return a best-effort Result. Never raises for a missing signal."""
        detection = await self.detect_with_trace(read_tab_counts, read_highlight_count)
        return detection.result

    async def detect_with_trace(
        self,
        read_tab_counts: TabCountsReader,
        read_highlight_count: HighlightCountReader,
    ) -> Detection:
        opts = self.options
        t0 = self._clock()
        last_tab_counts: TabCounts | None = None
        last_highlight = 0
        last_change = t0
        samples: list[Sample] = []

        while True:
            # Both reads in flight together; no ordering between them. A read
            # may use what is left of the overall budget, and never less than
            # one poll interval.
            remaining_ms = opts.overall_timeout_ms - (self._clock() - t0)
            read_timeout_s = max(remaining_ms, opts.poll_interval_ms) / 1000
            tab_counts, highlight = await asyncio.gather(
                _read_or_default(read_tab_counts, None, "tab counts", read_timeout_s),
                _read_or_default(read_highlight_count, last_highlight, "highlight count", read_timeout_s),
            )
            now = self._clock()

            if tab_counts is not None:
                if tab_counts != last_tab_counts and tab_counts.orphan_count > tab_counts.annotation_count:
                    logger.warning(
                        "Sidebar reports more orphans than annotations (orphans=%d annotations=%d)",
                        tab_counts.orphan_count,
                        tab_counts.annotation_count,
                    )
                last_tab_counts = tab_counts
            if highlight != last_highlight:
                last_highlight = highlight
                last_change = now

            samples.append(Sample(at_ms=now - t0, tab_counts=tab_counts, highlight_count=highlight))

            state = next_state(last_tab_counts, last_highlight, now - t0, now - last_change, opts)
            if state.is_terminal:
                break
            await self._sleep(opts.poll_interval_ms / 1000)

        anchor_time_ms = round(self._clock() - t0)

        if state is DetectorState.CONVERGED and last_highlight > last_tab_counts.annotation_count:
            logger.debug(
                "Converged on overcount: highlights=%d annotations=%d",
                last_highlight,
                last_tab_counts.annotation_count,
            )
        logger.info(
            "Anchoring %s after %dms (annotations=%s orphans=%s highlights=%d samples=%d)",
            state,
            anchor_time_ms,
            last_tab_counts.annotation_count if last_tab_counts else None,
            last_tab_counts.orphan_count if last_tab_counts else None,
            last_highlight,
            len(samples),
        )

        result = Result(
            annotation_count=last_tab_counts.annotation_count if last_tab_counts else None,
            orphan_count=last_tab_counts.orphan_count if last_tab_counts else None,
            highlight_count=last_highlight,
            anchor_time_ms=anchor_time_ms,
        )
        return Detection(result=result, state=state, samples=tuple(samples))


async def _read_or_default(reader: Callable[[], Awaitable], default, what: str, timeout_s: float):
    """Run one read; a failing or overdue read counts as "no new information" for this tick."""
    try:
        async with asyncio.timeout(timeout_s):
            return await reader()
    except TimeoutError:
        logger.debug("Reading %s timed out after %.0fms, keeping previous value", what, timeout_s * 1000)
        return default
    except Exception:
        logger.debug("Reading %s failed, keeping previous value", what, exc_info=True)
        return default
