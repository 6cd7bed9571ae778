# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Command-line interface.

Commands:
    prunegraph scan PATH [options]   analyze once, write the report
    prunegraph watch PATH [options]  re-run dry-run analysis on changes

Exit codes:
    0  no issues found, or dry-run completed
    1  plan generated and pending approval (apply left groups unapplied,
       or a group failed simulation or verification)
    2  internal error (scan failure, graph inconsistency, cancellation,
       invalid configuration)
"""

import argparse
import json
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from prunegraph.config import Config, ConfigurationError
from prunegraph.context import AnalysisCancelled, AnalysisContext, ExtractionCache
from prunegraph.engine import AnalysisEngine
from prunegraph.logging_setup import DEFAULT_LOG_DIRNAME, setup_logging
from prunegraph.models import CleanupPlan, GroupStatus
from prunegraph.report import resolve_report_path, summarize, write_report
from prunegraph.scanner import ScanError, SourceScanner
from prunegraph.watcher import TreeWatcher

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PENDING = 1
EXIT_ERROR = 2


def _add_analysis_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="Root of the source tree to analyze")
    parser.add_argument(
        "--language",
        action="append",
        dest="languages",
        metavar="L",
        help="Only profile this language (repeatable); other files stay opaque",
    )
    parser.add_argument(
        "--similarity-threshold",
        type=float,
        default=None,
        metavar="F",
        help="Minimum Jaccard similarity for near duplicates. Default: 0.8",
    )
    parser.add_argument(
        "--shingle-size", type=int, default=None, metavar="N", help="Tokens per shingle. Default: 5"
    )
    parser.add_argument(
        "--entry-point",
        action="append",
        dest="entry_points",
        metavar="SPEC",
        help="Extra root: file glob or 'path::symbol' (repeatable)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        dest="excludes",
        metavar="GLOB",
        help="Extra ignore pattern (repeatable)",
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="Configuration file. Default: PATH/.prunegraph.yml"
    )
    parser.add_argument(
        "--report", type=str, default=None, help="Report file. Default: .prunegraph/report.json"
    )
    parser.add_argument("--max-workers", type=int, default=None, metavar="N")
    parser.add_argument(
        "--timeout", type=float, default=None, metavar="SECONDS", help="Wall-clock budget per run"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Console log level. Default: WARNING",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the report JSON instead of a summary"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="prunegraph",
        description="Find duplicate and unreachable code and plan a safe cleanup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Analyze a tree once")
    _add_analysis_arguments(scan)
    mode = scan.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run", dest="apply", action="store_false", help="Only report the plan (default)"
    )
    mode.add_argument(
        "--apply",
        dest="apply",
        action="store_true",
        help="Apply auto-applicable groups, confirmed by the verify command",
    )
    scan.set_defaults(apply=False)
    scan.add_argument(
        "--verify-command",
        default=None,
        metavar="CMD",
        help="Command whose exit status 0 confirms an applied group",
    )

    watch = subparsers.add_parser("watch", help="Re-run dry-run analysis when files change")
    _add_analysis_arguments(watch)
    watch.add_argument(
        "--debounce", type=float, default=0.5, metavar="SECONDS", help="Quiet period before a run"
    )
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration and apply command-line overrides.

    Raises:
        ConfigurationError: If --config names a missing file.
    """
    root = Path(args.path)
    overrides: Dict[str, Any] = {
        "similarity_threshold": args.similarity_threshold,
        "shingle_size": args.shingle_size,
        "languages": args.languages,
        "max_workers": args.max_workers,
        "timeout_seconds": args.timeout,
        "report_path": args.report,
        "verify_command": getattr(args, "verify_command", None),
    }
    if args.config is not None:
        config = Config(config_path=args.config, overrides=overrides, required=True)
    else:
        config = Config.for_project(root, overrides=overrides)

    # Repeatable flags add to the configured lists
    extended: Dict[str, Any] = {}
    if args.entry_points:
        extended["entry_points"] = config.entry_points + list(args.entry_points)
    if args.excludes:
        extended["ignore_patterns"] = config.ignore_patterns + list(args.excludes)
    config.apply_overrides(extended)
    return config


def exit_code_for(plan: CleanupPlan, apply: bool) -> int:
    """Map a finished plan to the process exit code."""
    if not plan.complete:
        return EXIT_ERROR
    if not plan.actions:
        return EXIT_OK
    if not apply:
        return EXIT_OK
    if all(g.status == GroupStatus.COMMITTED for g in plan.groups):
        return EXIT_OK
    return EXIT_PENDING


def _emit(plan: CleanupPlan, data: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2))
        return
    for line in summarize(plan):
        print(line)
    if data.get("unchanged_since_last_run"):
        print("Nothing changed since the last run")


def _configure_logging(args: argparse.Namespace) -> None:
    root = Path(args.path)
    setup_logging(
        log_dir=root / DEFAULT_LOG_DIRNAME,
        log_level=getattr(logging, args.log_level),
        console_output=True,
        file_output=root.is_dir(),
    )
    # The JSON file log records INFO even when the console is quieter
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.FileHandler):
            handler.setLevel(min(logging.INFO, getattr(logging, args.log_level)))
    logging.getLogger().setLevel(min(logging.INFO, getattr(logging, args.log_level)))


def run_scan(args: argparse.Namespace) -> int:
    """Run the scan command."""
    try:
        config = load_config(args)
        root = Path(args.path)
        engine = AnalysisEngine(AnalysisContext(config=config))
        plan = engine.run(root, apply=args.apply)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except ScanError as e:
        logger.error(f"Scan failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except AnalysisCancelled as e:
        logger.error(f"Analysis cancelled: {e}")
        print(f"error: analysis cancelled ({e})", file=sys.stderr)
        return EXIT_ERROR

    report_path = resolve_report_path(root.resolve(), config.report_path)
    try:
        data = write_report(plan, report_path)
    except OSError as e:
        logger.error(f"Could not write report {report_path}: {e}")
        print(f"error: could not write report: {e}", file=sys.stderr)
        return EXIT_ERROR

    _emit(plan, data, args.json)
    return exit_code_for(plan, args.apply)


def run_watch(args: argparse.Namespace, stop_event: Optional[threading.Event] = None) -> int:
    """Run the watch command until interrupted."""
    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    root = Path(args.path)
    if not root.is_dir():
        print(f"error: not a directory: {root}", file=sys.stderr)
        return EXIT_ERROR

    cache = ExtractionCache()
    report_path = resolve_report_path(root.resolve(), config.report_path)

    def analyze() -> None:
        try:
            plan = AnalysisEngine(AnalysisContext(config=config, cache=cache)).run(root)
            data = write_report(plan, report_path)
        except (ScanError, AnalysisCancelled, OSError) as e:
            logger.error(f"Watch run failed: {e}")
            print(f"error: {e}", file=sys.stderr)
            return
        _emit(plan, data, args.json)

    analyze()
    scanner = SourceScanner(ignore_patterns=set(config.ignore_patterns))
    watcher = TreeWatcher(root, on_change=analyze, scanner=scanner, debounce_seconds=args.debounce)
    stop_event = stop_event or threading.Event()
    watcher.start()
    try:
        watcher.run_forever(stop_event)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping watcher")
    finally:
        watcher.stop()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    if args.command == "scan":
        return run_scan(args)
    return run_watch(args)


if __name__ == "__main__":
    sys.exit(main())
