# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""anchoreval CLI: evaluate and compare commands.

Usage:
    python -m anchoreval.cli evaluate URL_LIST MODE [-o FILE] [--via-url URL] [--timeout MS]
    python -m anchoreval.cli compare FILE_1 FILE_2
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from . import Mode, Result
from .errors import AnchorEvalError

if TYPE_CHECKING:
    from .browser_session import BrowserConfig
    from .convergence import DetectorOptions

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "evaluate-results.json"


def _require_cli_deps() -> None:
    """Check that CLI optional dependencies are installed."""
    try:
        from tabulate import tabulate  # noqa: F401
    except ImportError as e:
        print(
            f"Missing CLI dependency: {e.name}\nInstall with: pip install anchoreval[cli]",
            file=sys.stderr,
        )
        sys.exit(1)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


async def _evaluate_urls(
    urls: list[str],
    mode: Mode,
    output: Path,
    *,
    via_base_url: str,
    options: DetectorOptions,
    config: BrowserConfig,
) -> dict[str, Result]:
    """Test *urls* one at a time, writing results after each URL.

    A URL that fails to load is logged and left out of the results; the
    batch carries on.
    """
    from ._progress import BatchProgress
    from .anchoring_tester import AnchoringTester
    from .results import write_results

    results: dict[str, Result] = {}
    async with AnchoringTester(config=config, options=options, via_base_url=via_base_url) as tester:
        with BatchProgress(len(urls)) as progress:
            for url in urls:
                progress.start(url)
                logger.debug("Testing %s with %s", url, mode)
                try:
                    results[url] = await tester.run_test(url, mode)
                except Exception as exc:
                    logger.error("Failed to test %s: %s", url, exc, exc_info=not isinstance(exc, AnchorEvalError))
                progress.advance()
                write_results(output, results)
    return results


def cmd_evaluate(args: argparse.Namespace) -> None:
    """Load URLs with the annotation client active and count anchored/orphaned annotations."""
    _require_cli_deps()
    from tabulate import tabulate

    from .browser_session import BrowserConfig
    from .convergence import DetectorOptions
    from .results import read_url_list, summarize

    try:
        mode = Mode.parse(args.mode)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    urls = read_url_list(args.url_list)
    if not urls:
        print(f"Error: no URLs in {args.url_list}", file=sys.stderr)
        sys.exit(1)

    options = DetectorOptions(
        overall_timeout_ms=args.timeout,
        poll_interval_ms=args.poll_interval,
        stability_timeout_ms=args.stability_timeout,
    )
    config = BrowserConfig(headless=not args.headful)
    output = Path(args.output)

    results = asyncio.run(
        _evaluate_urls(urls, mode, output, via_base_url=args.via_url, options=options, config=config)
    )

    summary = summarize(results)
    summary["failed"] = len(urls) - len(results)
    print(tabulate(list(summary.items()), headers=["metric", "value"]))
    timed_out = sorted(url for url, r in results.items() if r.timed_out)
    if timed_out:
        print("\nNo counts shown before timeout:")
        for url in timed_out:
            print(f"  {url}")
    print(f"\nResults saved to {output}")


def cmd_compare(args: argparse.Namespace) -> None:
    """Compare the output of two evaluate runs, ignoring timing."""
    from .results import diff_results, load_results

    before = load_results(args.file_1)
    after = load_results(args.file_2)
    lines = diff_results(before, after, before_name=args.file_1, after_name=args.file_2)
    if not lines:
        print("No differences")
        return
    print("\n".join(lines))


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="anchoreval",
        description="Measure annotation anchoring on documents loaded through via",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_eval = subparsers.add_parser(
        "evaluate",
        help="Load URLs with the annotation client active and count anchored/orphaned annotations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s urls.txt via
  %(prog)s urls.txt via-pdfjs2 -o pdfjs2-results.json --timeout 60000""",
    )
    p_eval.add_argument("url_list", metavar="url-list", help="File with one document URL per line")
    p_eval.add_argument("mode", help=f"Rendering mode: {', '.join(m.value for m in Mode)}")
    p_eval.add_argument(
        "-o",
        "--output",
        type=str,
        default=DEFAULT_OUTPUT,
        metavar="FILE",
        help=f"Result file (default: {DEFAULT_OUTPUT})",
    )
    p_eval.add_argument(
        "--via-url",
        type=str,
        default=None,
        metavar="URL",
        help="Proxy root (default: $ANCHOREVAL_VIA_URL or https://via.hypothes.is)",
    )
    p_eval.add_argument("--timeout", type=int, default=30000, metavar="MS", help="Overall wait per URL (ms)")
    p_eval.add_argument(
        "--stability-timeout",
        type=int,
        default=5000,
        metavar="MS",
        help="Stop when a positive highlight count is unchanged this long (ms)",
    )
    p_eval.add_argument("--poll-interval", type=int, default=50, metavar="MS", help="Sampling interval (ms)")
    p_eval.add_argument("--headful", action="store_true", help="Show the browser window")

    p_compare = subparsers.add_parser("compare", help="Compare the output from two evaluate runs")
    p_compare.add_argument("file_1", metavar="file-1")
    p_compare.add_argument("file_2", metavar="file-2")

    commands = {"evaluate": cmd_evaluate, "compare": cmd_compare}

    args = parser.parse_args()

    if args.command == "evaluate":
        from .proxy_url import DEFAULT_VIA_URL

        args.via_url = args.via_url or os.environ.get("ANCHOREVAL_VIA_URL") or DEFAULT_VIA_URL
        args.headful = args.headful or _env_flag("ANCHOREVAL_HEADFUL")

    from .logging_config import configure

    configure(json_output=args.json_logs, level="DEBUG" if args.verbose else "INFO")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except (AnchorEvalError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
