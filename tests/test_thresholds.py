from fncov.thresholds import evaluate


def report_with(coverage, unused):
    return {"summary": {"coveragePercent": coverage, "unusedFunctions": unused}}


def test_coverage_below_threshold():
    result = evaluate(report_with(70.0, 3), {"coverage": 80})
    assert not result.passed
    assert len(result.failures) == 1
    assert "70.0" in result.failures[0]
    assert "80" in result.failures[0]


def test_too_many_unused_functions():
    result = evaluate(report_with(95.0, 12), {"max_unused": 10})
    assert not result.passed
    assert result.failures == ["12 unused functions exceeds maximum 10"]


def test_both_rules_fail_independently():
    result = evaluate(report_with(50.0, 12), {"coverage": 80, "max_unused": 10})
    assert len(result.failures) == 2


def test_boundaries_pass():
    result = evaluate(report_with(80.0, 10), {"coverage": 80, "max_unused": 10})
    assert result.passed
    assert result.failures == []


def test_no_rules():
    assert evaluate(report_with(0.0, 100), {}).passed
    assert evaluate(report_with(0.0, 100), {"coverage": None, "max_unused": None}).passed
