#!/usr/bin/env python3
"""
CLI entrypoint for p4reach.

Usage:
    # Direct scan
    p4reach program.json [options]

    # Subcommands
    p4reach scan program.json [options]    # analyse a JSON AST
    p4reach init [dir]                      # write a default .p4reach.yml

Returns:
    0: SAFE / every target unreachable
    1: BUG / some target reachable
    2: UNKNOWN / some target undecided, none reachable
    3: Error (missing file, malformed input, elaboration errors)
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .analyzer import AnalysisReport, Analyzer
from .ci.config import CONFIG_NAMES, ConfigError, P4ReachConfig
from .ci.sarif import results_to_sarif, write_sarif
from .dse.constraint_solver import CancellationToken
from .frontend.loader import LoaderError, load_program


def _add_scan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "--config", type=Path,
        help="Path to a .p4reach.yml (default: look next to the program)",
    )
    parser.add_argument(
        "--timeout-ms", type=int, default=None,
        help="Per-query solver timeout in milliseconds (default: 5000)",
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Worker threads for CFG construction and solving (default: 4)",
    )
    parser.add_argument(
        "--no-parallel", action="store_true",
        help="Run every control and target sequentially",
    )
    parser.add_argument(
        "--output-json", type=Path,
        help="Write the full report as JSON to this path",
    )
    parser.add_argument(
        "--output-sarif", type=Path,
        help="Write results as SARIF 2.1.0 to this path",
    )


def _load_config(args: argparse.Namespace) -> P4ReachConfig:
    """Config file values, overridden by explicit flags."""
    if args.config:
        cfg = P4ReachConfig.load_file(args.config)
    else:
        cfg = P4ReachConfig.load(args.target.resolve().parent)

    if args.timeout_ms is not None:
        cfg.analysis.solver_timeout_ms = args.timeout_ms
    if args.workers is not None:
        cfg.analysis.max_workers = args.workers
    if args.no_parallel:
        cfg.analysis.parallel = False
    if args.output_json is None and cfg.output.json_file:
        args.output_json = Path(cfg.output.json_file)
    if args.output_sarif is None and cfg.output.sarif_file:
        args.output_sarif = Path(cfg.output.sarif_file)
    return cfg


def exit_code(report: AnalysisReport) -> int:
    summary = report.summary()
    if summary["reachable"]:
        return 1
    if summary["errors"]:
        return 3
    if summary["unknown"]:
        return 2
    return 0


def _print_report(report: AnalysisReport) -> None:
    print("=" * 70)
    print(f"p4reach: {report.source}")
    print("=" * 70)
    for control in report.controls:
        status = "analyzed" if control.analyzed else "NOT ANALYZED"
        print(f"\ncontrol {control.name} ({status}, {control.blocks} blocks)")
        for err in control.errors:
            print(f"  ERROR   {err}")
        for result in control.results:
            where = f" [{result.target.location}]" if result.target.location else ""
            verdict = result.verdict
            if verdict.is_reachable:
                print(f"  BUG     {result.target.id}{where}: {result.target.description}")
                for key, value in verdict.witness.items():
                    print(f"            {key} = {json.dumps(value)}")
            elif verdict.is_unknown:
                print(f"  UNKNOWN {result.target.id}{where}: {result.target.description} ({verdict.reason})")
            else:
                print(f"  SAFE    {result.target.id}{where}: {result.target.description}")
    for err in report.errors:
        print(f"\nERROR {err}")

    summary = report.summary()
    print()
    print("-" * 70)
    print(
        f"{summary['targets']} target(s): {summary['reachable']} reachable, "
        f"{summary['unreachable']} unreachable, {summary['unknown']} unknown; "
        f"{summary['errors']} error(s)"
    )
    if report.cancelled:
        print("run canceled: remaining targets reported as unknown")


def _run(analyzer: Analyzer, program, token: CancellationToken) -> AnalysisReport:
    """Analyze on a worker thread so that Ctrl-C can cancel in-flight solver calls."""
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(analyzer.analyze, program, token)
        try:
            return future.result()
        except KeyboardInterrupt:
            token.cancel()
            return future.result()


# ── Subcommand handlers ─────────────────────────────────────────────────────

def _handle_scan(args: argparse.Namespace) -> int:
    """Handle ``p4reach scan <program.json>``."""
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.target.exists():
        print(f"Error: Target not found: {args.target}", file=sys.stderr)
        return 3

    try:
        cfg = _load_config(args)
    except (ConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    try:
        program = load_program(args.target)
    except (LoaderError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 3

    report = _run(Analyzer(cfg.analysis), program, CancellationToken())
    _print_report(report)

    if args.output_json:
        args.output_json.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output_json, "w") as f:
            json.dump(report.to_dict(), f, indent=2)
        print(f"JSON report written to {args.output_json}")
    if args.output_sarif:
        write_sarif(results_to_sarif(report, Path.cwd()), args.output_sarif)
        print(f"SARIF written to {args.output_sarif}")

    return exit_code(report)


def _handle_init(args: argparse.Namespace) -> int:
    """Handle ``p4reach init [dir]``: write the default configuration."""
    root = args.repo
    if not root.is_dir():
        print(f"Error: not a directory: {root}", file=sys.stderr)
        return 3
    path = root / CONFIG_NAMES[0]
    if path.exists() and not args.overwrite:
        print(f"{path} already exists (use --overwrite to replace it)", file=sys.stderr)
        return 3
    path.write_text(P4ReachConfig().to_yaml())
    print(f"wrote {path}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="p4reach",
        description="p4reach: SMT-based reachability checking for P4-style controls",
    )

    subparsers = parser.add_subparsers(dest="command")

    scan_parser = subparsers.add_parser(
        "scan",
        help="Check every bug()/assert() target of a program",
    )
    scan_parser.add_argument(
        "target", type=Path,
        help="JSON AST file of the program to analyze",
    )
    _add_scan_arguments(scan_parser)

    init_parser = subparsers.add_parser(
        "init",
        help="Write a default .p4reach.yml",
    )
    init_parser.add_argument(
        "repo", type=Path, nargs="?", default=Path("."),
        help="Directory to write the configuration into",
    )
    init_parser.add_argument(
        "--overwrite", action="store_true",
        help="Replace an existing configuration file",
    )

    # Legacy: p4reach program.json [--flags]  ==  p4reach scan program.json
    known_subcommands = {"scan", "init"}
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] not in known_subcommands and not argv[0].startswith("-"):
        argv = ["scan"] + argv

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "scan":
        return _handle_scan(args)
    if args.command == "init":
        return _handle_init(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
