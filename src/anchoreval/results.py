# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Result files: URL lists in, per-URL results out, and run-to-run diffs.

A result file maps document URL -> ``Result.to_dict()``, keys sorted so two
runs over the same list produce comparable files.
"""

from __future__ import annotations

import json
import re
from difflib import unified_diff
from pathlib import Path

from . import Result
from .errors import ResultsFileError

# Keys whose values change between otherwise identical runs (anchorTimeMs, ...).
_TIMING_KEY_RE = re.compile(r"[a-z]+Time")


def read_url_list(path: str | Path) -> list[str]:
    """Read one URL per line, skipping blank lines and ``#`` comments."""
    urls = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        urls.append(line)
    return urls


def results_to_json(results: dict[str, Result]) -> str:
    data = {url: results[url].to_dict() for url in sorted(results)}
    return json.dumps(data, indent=2)


def write_results(path: str | Path, results: dict[str, Result]) -> None:
    """Write *results* to *path*, replacing it atomically."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(results_to_json(results) + "\n", encoding="utf-8")
    tmp.replace(path)


def load_results(path: str | Path) -> dict[str, dict]:
    """Load a result file as plain dicts.

    Raises:
        ResultsFileError: missing file, invalid JSON, or not a JSON object.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ResultsFileError(f"Cannot read results from {path}: {exc}", path=str(path)) from exc
    if not isinstance(data, dict):
        raise ResultsFileError(f"{path}: expected a JSON object of URL -> result", path=str(path))
    return data


def strip_timing(results: dict[str, dict]) -> dict[str, dict]:
    """Drop timing keys, which are not expected to match across runs."""
    return {
        url: {key: value for key, value in entry.items() if not _TIMING_KEY_RE.search(key)}
        for url, entry in results.items()
    }


def diff_results(
    before: dict[str, dict],
    after: dict[str, dict],
    *,
    before_name: str = "before",
    after_name: str = "after",
) -> list[str]:
    """Unified diff of two result sets, ignoring timing. Empty when equal."""
    a = json.dumps(strip_timing(before), indent=2, sort_keys=True).splitlines()
    b = json.dumps(strip_timing(after), indent=2, sort_keys=True).splitlines()
    return list(unified_diff(a, b, fromfile=before_name, tofile=after_name, lineterm=""))


def summarize(results: dict[str, Result]) -> dict[str, int]:
    """Totals over a result set. Timed-out URLs contribute no counts."""
    summary = {"urls": len(results), "annotations": 0, "orphans": 0, "highlights": 0, "timed_out": 0}
    for result in results.values():
        if result.timed_out:
            summary["timed_out"] += 1
            continue
        summary["annotations"] += result.annotation_count
        summary["orphans"] += result.orphan_count or 0
        summary["highlights"] += result.highlight_count or 0
    return summary
