# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""anchoreval exception hierarchy.

All anchoreval-specific errors inherit from AnchorEvalError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling (e.g. skipping a URL whose navigation failed).

A measurement that never converges is NOT an error: it is reported as a
Result with null counts.
"""

from __future__ import annotations


class AnchorEvalError(Exception):
    """Base exception for all anchoreval errors."""


class BrowserError(AnchorEvalError):
    """Browser launch or interaction failure."""


class NavigationError(BrowserError):
    """Loading the proxied document failed (network, DNS, malformed URL, timeout)."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class ResultsFileError(AnchorEvalError):
    """A result file could not be read or parsed."""

    def __init__(self, message: str, *, path: str = "") -> None:
        super().__init__(message)
        self.path = path
