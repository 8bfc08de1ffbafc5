# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""anchoreval: measure annotation anchoring on documents loaded through via.

Loads each document through the via proxy with the annotation client active,
then polls two signals until anchoring has settled:
- tab counts: annotation/orphan totals rendered in the sidebar
- highlight count: distinct annotations with at least one highlight
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Mode(StrEnum):
    """How the document is rendered by the proxy."""

    VIA = "via"
    VIA_PDFJS2 = "via-pdfjs2"

    @classmethod
    def parse(cls, value: str | Mode) -> Mode:
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown mode: {value!r} (expected one of: {choices})") from None


@dataclass(frozen=True, slots=True)
class TabCounts:
    """Counts displayed on the sidebar's "Annotations" and "Orphans" tabs."""

    annotation_count: int
    orphan_count: int = 0

    @classmethod
    def from_json(cls, data: dict | None) -> TabCounts | None:
        """Build from the sidebar probe's JSON value, or None if counts are not shown."""
        if not data:
            return None
        annotation_count = data.get("annotationCount")
        if annotation_count is None:
            return None
        return cls(
            annotation_count=int(annotation_count),
            orphan_count=int(data.get("orphanCount") or 0),
        )


@dataclass(frozen=True, slots=True)
class Sample:
    """One poll tick. The two reads are not atomic."""

    at_ms: float
    tab_counts: TabCounts | None
    highlight_count: int


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of one anchoring test.

    ``annotation_count is None`` means the sidebar never showed its counts
    before the overall timeout: a measurement failure, not "0 annotations".
    """

    annotation_count: int | None
    orphan_count: int | None
    highlight_count: int | None
    anchor_time_ms: int | None = None

    @property
    def timed_out(self) -> bool:
        return self.annotation_count is None

    def to_dict(self) -> dict:
        """Wire shape used in result files (camelCase keys)."""
        data: dict = {
            "annotationCount": self.annotation_count,
            "orphanCount": self.orphan_count,
            "highlightCount": self.highlight_count,
        }
        if self.anchor_time_ms is not None:
            data["anchorTimeMs"] = self.anchor_time_ms
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Result:
        return cls(
            annotation_count=data.get("annotationCount"),
            orphan_count=data.get("orphanCount"),
            highlight_count=data.get("highlightCount"),
            anchor_time_ms=data.get("anchorTimeMs"),
        )
