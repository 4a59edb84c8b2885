"""Threshold gating for CI: turns a coverage report into pass/fail."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class ThresholdResult:
    passed: bool
    failures: List[str] = field(default_factory=list)


def evaluate(report, rules):
    """Check ``report`` against ``rules`` ({"coverage": ..., "max_unused": ...}).

    Rules are independent and a rule set to None is skipped. Every failing
    rule is reported.
    """
    rules = rules or {}
    summary = report["summary"]
    failures = []

    coverage = rules.get("coverage")
    if coverage is not None and summary["coveragePercent"] < coverage:
        failures.append(
            f"Coverage {summary['coveragePercent']:.1f}% is below threshold {coverage}%"
        )

    max_unused = rules.get("max_unused")
    if max_unused is not None and summary["unusedFunctions"] > max_unused:
        failures.append(
            f"{summary['unusedFunctions']} unused functions exceeds maximum {max_unused}"
        )

    return ThresholdResult(passed=not failures, failures=failures)
