# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Build the via proxy address for a document URL.

Pure functions, no I/O.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import Mode

DEFAULT_VIA_URL = "https://via.hypothes.is"

# Query parameter that asks via to render PDFs with the alternate engine.
_FEATURES_PARAM = "via.features"
_PDFJS2_FEATURE = "pdfjs2"


def build_proxy_url(document_url: str, mode: Mode | str, via_base_url: str = DEFAULT_VIA_URL) -> str:
    """Return the address that loads *document_url* through via.

    ``via-pdfjs2`` appends exactly one ``via.features=pdfjs2`` query
    parameter; if the address already carries it, it is not repeated.
    """
    mode = Mode.parse(mode)
    proxy_url = f"{via_base_url.rstrip('/')}/{document_url}"
    if mode is Mode.VIA_PDFJS2:
        proxy_url = _with_feature(proxy_url, _PDFJS2_FEATURE)
    return proxy_url


def _with_feature(url: str, feature: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if (_FEATURES_PARAM, feature) in query:
        return url
    query.append((_FEATURES_PARAM, feature))
    return urlunsplit(parts._replace(query=urlencode(query)))
