"""
fncov command line.

Usage:
    fncov run [--no-clean] -- python -m pytest
    fncov report [--format terminal|json|both] [--output PATH] [--all]
    fncov instrument src/app.py [--source-maps]
    fncov clean
"""

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import load_config
from .errors import FncovError

log = logging.getLogger(__name__)


def cmd_run(args, config):
    from .runner import run_with_instrumentation

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        log.error("No command given. Usage: fncov run -- <command>")
        return 2
    return run_with_instrumentation(command, config, clean_first=not args.no_clean)


def cmd_report(args, config):
    from .coverage import aggregate
    from .inventory import load_execution, load_inventory
    from .report import print_json, print_terminal, write_json
    from .thresholds import evaluate

    inventory = load_inventory(config["output"]["inventory"])
    execution = load_execution(config["output"]["execution"])

    use_maps = config["source_maps"]["enabled"] and not args.no_source_maps
    report = aggregate(inventory, execution, use_source_maps=use_maps)

    rules = dict(config["thresholds"])
    if args.coverage is not None:
        rules["coverage"] = args.coverage
    if args.max_unused is not None:
        rules["max_unused"] = args.max_unused
    result = None
    if any(v is not None for v in rules.values()):
        result = evaluate(report, rules)

    fmt = args.format or config["report"]["format"]
    verbose = args.verbose or config["report"]["verbose"]
    show_all = args.all or config["report"]["show_all"]

    if fmt in ("terminal", "both"):
        print_terminal(report, verbose=verbose, show_all=show_all, thresholds=result)
    if fmt in ("json", "both"):
        output = args.output or config["output"]["report"]
        path = write_json(report, output)
        log.info(f"Report written to {path}")
    if fmt == "json" and not args.output:
        print_json(report)

    if result is not None and not result.passed:
        for failure in result.failures:
            log.error(failure)
        return 1
    return 0


def cmd_instrument(args, config):
    from .runner import instrument_in_place

    if args.source_maps:
        config["source_maps"]["emit"] = True
    missing = [p for p in args.files if not Path(p).is_file()]
    for path in missing:
        log.warning(f"Skipping {path}: not a file")
    paths = [Path(p) for p in args.files if p not in missing]
    total = instrument_in_place(paths, config)
    log.info(f"Instrumented {total} functions in {len(paths)} files")
    return 0


def cmd_clean(args, config):
    from .runner import clean

    clean(config)
    log.info("Removed previous coverage data")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fncov",
        description="Find which functions of a Python codebase actually run",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a config file (JSON or pyproject.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="subcommand", required=True)

    run = sub.add_parser("run", help="Instrument the project, run a command, restore the sources")
    run.add_argument("--no-clean", action="store_true", help="Keep data from previous runs")
    run.add_argument("command", nargs=argparse.REMAINDER, help="Command to run, after --")
    run.set_defaults(func=cmd_run)

    report = sub.add_parser("report", help="Report on the last run")
    report.add_argument("--format", choices=["terminal", "json", "both"])
    report.add_argument("--output", help="Path to write the JSON report")
    report.add_argument("--all", action="store_true", help="List every function")
    report.add_argument("--no-source-maps", action="store_true", help="Do not remap positions")
    report.add_argument("--coverage", type=float, help="Minimum coverage percent")
    report.add_argument("--max-unused", type=int, help="Maximum number of unused functions")
    report.set_defaults(func=cmd_report)

    instrument = sub.add_parser("instrument", help="Instrument files in place (no restore)")
    instrument.add_argument("files", nargs="+")
    instrument.add_argument("--source-maps", action="store_true", help="Write <file>.fncov.map")
    instrument.set_defaults(func=cmd_instrument)

    clean = sub.add_parser("clean", help="Remove inventory and execution data")
    clean.set_defaults(func=cmd_clean)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        return args.func(args, config)
    except FncovError as e:
        log.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
