#!/usr/bin/env python3
"""
Command-line front end for the JSON trimmer.

Reads JSON from a file or stdin, writes the trimmed JSON to stdout.
Configuration comes from JSONTRIM_* environment variables, overridden by flags.
"""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Import sibling modules
script_dir = Path(__file__).parent
sys.path.insert(0, str(script_dir))

from trim_lib import (
    CannotTrimError,
    MalformedInputError,
    StrategyName,
    TrimConfig,
    Trimmer,
    build_strategy,
)

EXIT_OK = 0
EXIT_MALFORMED = 1
EXIT_OVER_BUDGET = 2
EXIT_CONFIG = 3

ENV_HELP = """\
Environment variables:
  JSONTRIM_FIELD_LIMIT: Max serialized bytes per field (default: 500)
  JSONTRIM_TOTAL_LIMIT: Max serialized bytes overall (default: 1024)
  JSONTRIM_BLACKLIST: Comma-separated dot paths, '*' matches one segment
  JSONTRIM_MAX_DEPTH: Recursion ceiling (default: 10)
  JSONTRIM_TRUNCATE_STRINGS: Truncate long strings with '...' (default: false)
  JSONTRIM_REPLACE_WITH_MARKER: Replace removed values with "[TRIMMED]" (default: false)
  JSONTRIM_STRATEGY: remove_largest, fifo or prioritize_keys (default: remove_largest)
  JSONTRIM_KEEP_KEYS: Comma-separated keys kept last by prioritize_keys
  JSONTRIM_REPAIR: Repair malformed input before trimming (default: false)
"""


def setup_logging(verbose: bool = False) -> None:
    """Diagnostics go to stderr; stdout carries only the trimmed JSON."""
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jsontrim",
        description="Trim a JSON payload to per-field and total byte budgets",
        epilog=ENV_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--file", help="JSON file to trim (or use stdin)")
    parser.add_argument("--field-limit", type=int)
    parser.add_argument("--total-limit", type=int)
    parser.add_argument("--max-depth", type=int)
    parser.add_argument(
        "--blacklist", action="append", metavar="PATH",
        help="Path pattern to redact (repeatable), e.g. users.*.password",
    )
    parser.add_argument(
        "--strategy", choices=[s.value for s in StrategyName],
        help="Removal order during total enforcement",
    )
    parser.add_argument(
        "--keep-key", action="append", metavar="KEY",
        help="Key removed last by prioritize_keys (repeatable)",
    )
    parser.add_argument("--truncate-strings", action="store_true", default=None)
    parser.add_argument("--marker", action="store_true", default=None,
                        help='Replace removed values with "[TRIMMED]"')
    parser.add_argument("--repair", action="store_true", default=None,
                        help="Repair malformed JSON before trimming")
    parser.add_argument("--report", action="store_true", help="Print trim report to stderr")
    parser.add_argument("--verbose", action="store_true", help="Debug logging to stderr")
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[TrimConfig] = None) -> TrimConfig:
    """Overlay command-line flags on the environment configuration."""
    config = base if base is not None else TrimConfig.from_env()
    overrides = {}

    if args.field_limit is not None:
        overrides["field_limit"] = args.field_limit
    if args.total_limit is not None:
        overrides["total_limit"] = args.total_limit
    if args.max_depth is not None:
        overrides["max_depth"] = args.max_depth
    if args.blacklist:
        overrides["blacklist"] = tuple(args.blacklist)
    if args.truncate_strings is not None:
        overrides["truncate_strings"] = args.truncate_strings
    if args.marker is not None:
        overrides["replace_with_marker"] = args.marker
    if args.repair is not None:
        overrides["repair_input"] = args.repair
    if args.strategy is not None:
        overrides["strategy"] = build_strategy(args.strategy, args.keep_key or ())
    elif args.keep_key:
        overrides["strategy"] = build_strategy(StrategyName.PRIORITIZE_KEYS, args.keep_key)

    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"[jsontrim] Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    if args.file:
        try:
            with open(args.file, "rb") as f:
                raw = f.read()
        except OSError as e:
            print(f"[jsontrim] Error: cannot read {args.file}: {e.strerror}", file=sys.stderr)
            return EXIT_MALFORMED
    else:
        raw = sys.stdin.buffer.read()

    trimmer = Trimmer(config)
    try:
        out, report = trimmer.trim_with_report(raw)
    except MalformedInputError as e:
        print(f"[jsontrim] Error: {e}", file=sys.stderr)
        return EXIT_MALFORMED
    except CannotTrimError as e:
        print(f"[jsontrim] Error: {e}", file=sys.stderr)
        return EXIT_OVER_BUDGET

    sys.stdout.buffer.write(out)
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()

    if args.report:
        print(json.dumps(report.to_dict(), indent=2), file=sys.stderr)
    else:
        print(f"[jsontrim] {report.to_summary_line()}", file=sys.stderr)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
