# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Signal probes: JS read inside the page and their Python wrappers.

Two independent signals describe the progress of anchoring:

- the sidebar's tab counts ("Annotations" / "Orphans"), read in the sidebar
  frame; absent until the sidebar has rendered them
- the number of distinct annotations that have at least one highlight in
  the document, read in the top-level page

The JS functions take no arguments and return plain JSON values.
"""

from __future__ import annotations

from . import TabCounts
from .evaluator import RemoteEvaluator

SIDEBAR_FRAME_NAME = "hyp_sidebar_frame"

# ---------------------------------------------------------------------------
# JS (static, no interpolation)
# ---------------------------------------------------------------------------

# Returns {annotationCount, orphanCount} or null while counts are not shown.
_TAB_COUNTS_JS = """() => {
  if (!document.querySelector('selection-tabs, .selection-tabs')) {
    return null;
  }
  const tabs = Array.from(document.querySelectorAll('.selection-tabs > a'));
  if (tabs.length === 0) {
    return null;
  }
  const tabCount = (tabEl) => {
    if (!tabEl) return null;
    const countEl = tabEl.querySelector('.selection-tabs__count');
    if (!countEl) return null;
    const n = parseInt(countEl.textContent, 10);
    return Number.isNaN(n) ? null : n;
  };
  const annTab = tabs.find((tab) => tab.textContent.includes('Annotations'));
  const annotationCount = tabCount(annTab);
  if (annotationCount == null) {
    return null;
  }
  const orphansTab = tabs.find((tab) => tab.textContent.includes('Orphans'));
  const orphanCount = orphansTab ? (tabCount(orphansTab) || 0) : 0;
  return { annotationCount, orphanCount };
}"""

# Highlights of one annotation may be split over many DOM fragments; count
# each annotation once using its client-local tag.
_HIGHLIGHT_COUNT_JS = """() => {
  const tags = new Set();
  for (const el of document.querySelectorAll('hypothesis-highlight')) {
    const ann = el._annotation;
    if (ann && ann.$tag) {
      tags.add(ann.$tag);
    }
  }
  return tags.size;
}"""


async def read_tab_counts(evaluator: RemoteEvaluator, *, timeout_ms: int | None = None) -> TabCounts | None:
    """Read the sidebar tab counts, or None if they are not rendered yet."""
    raw = await evaluator.evaluate(_TAB_COUNTS_JS, timeout_ms=timeout_ms)
    return TabCounts.from_json(raw)


async def read_highlight_count(evaluator: RemoteEvaluator, *, timeout_ms: int | None = None) -> int:
    """Count distinct annotations with at least one highlight.

    Raises:
        ValueError: the page returned something that is not a count.
    """
    raw = await evaluator.evaluate(_HIGHLIGHT_COUNT_JS, timeout_ms=timeout_ms)
    try:
        return max(0, int(raw))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Unexpected highlight count value: {raw!r}") from exc
