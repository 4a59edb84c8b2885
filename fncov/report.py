"""Report output: terminal summary and JSON."""

import json
import sys
from collections import defaultdict
from pathlib import Path

TOP_EXECUTED = 10
UNUSED_PREVIEW = 20


def _group_by_file(functions):
    grouped = defaultdict(list)
    for function in functions:
        grouped[function["file"]].append(function)
    for entries in grouped.values():
        entries.sort(key=lambda f: (f["line"], f["column"]))
    return dict(sorted(grouped.items()))


def format_terminal(report, verbose=False, show_all=False, thresholds=None):
    """Render ``report`` as the lines of a terminal summary."""
    summary = report["summary"]
    lines = [
        "",
        "Function Coverage Report",
        "========================",
        f"Total functions:    {summary['totalFunctions']}",
        f"Executed functions: {summary['executedFunctions']}",
        f"Unused functions:   {summary['unusedFunctions']}",
        f"Coverage:           {summary['coveragePercent']:.2f}%",
        f"Total executions:   {summary['totalExecutions']}",
    ]
    if report.get("sourceMapsUsed"):
        lines.append("Positions remapped through source maps")

    unused = report["unusedFunctions"]
    if unused:
        lines.append("")
        lines.append("Unused functions:")
        shown = 0
        limit = None if show_all else UNUSED_PREVIEW
        for file, functions in _group_by_file(unused).items():
            if limit is not None and shown >= limit:
                break
            lines.append(f"  {file}")
            for function in functions:
                if limit is not None and shown >= limit:
                    break
                lines.append(f"    {function['name']} ({function['kind']}) line {function['line']}")
                shown += 1
        if shown < len(unused):
            lines.append(f"  ... and {len(unused) - shown} more (use --all to list every one)")

    if verbose or show_all:
        executed = sorted(report["executedFunctions"], key=lambda f: -f["executionCount"])
        if not show_all:
            executed = executed[:TOP_EXECUTED]
        if executed:
            lines.append("")
            lines.append("Most executed functions:" if not show_all else "Executed functions:")
            for function in executed:
                lines.append(
                    f"  {function['executionCount']:>8}  {function['name']} "
                    f"({function['file']}:{function['line']})"
                )

    if thresholds is not None:
        lines.append("")
        if thresholds.passed:
            lines.append("Thresholds: passed")
        else:
            lines.append("Thresholds: FAILED")
            for failure in thresholds.failures:
                lines.append(f"  - {failure}")

    return lines


def print_terminal(report, verbose=False, show_all=False, thresholds=None, stream=None):
    stream = stream or sys.stdout
    for line in format_terminal(report, verbose, show_all, thresholds):
        print(line, file=stream)


def write_json(report, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
    return path


def print_json(report, stream=None):
    stream = stream or sys.stdout
    print(json.dumps(report, indent=2), file=stream)
