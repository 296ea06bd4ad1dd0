import pytest

from covgate.errors import ConfigError
from covgate.gate import ThresholdPolicy, Verdict, evaluate
from covgate.report import CoverageSummary, FileSummary


def summary(hit, found):
    return CoverageSummary(files=(FileSummary(filename="/src/a.rs", lines_found=found, lines_hit=hit),))


def test_pass_at_exact_threshold():
    verdict = evaluate(summary(40, 40), ThresholdPolicy(100))
    assert verdict == Verdict(passed=True, measured=100.0, required=100)
    assert verdict.message == "Coverage check passed: 100% line coverage (required 100%)"


def test_fail_below_threshold():
    verdict = evaluate(summary(20, 40), ThresholdPolicy(100))
    assert not verdict.passed
    assert verdict.message == "Required 100% line coverage. Coverage detected: 50"


def test_full_precision_decides():
    # 2/3 = 66.666..., displayed as 66.67
    assert not evaluate(summary(2, 3), ThresholdPolicy(66.67)).passed
    assert evaluate(summary(2, 3), ThresholdPolicy(66.66)).passed
    assert evaluate(summary(2, 3), ThresholdPolicy(80)).message.endswith("Coverage detected: 66.67")


def test_near_miss_is_not_displayed_as_the_threshold():
    verdict = evaluate(summary(99999, 100000), ThresholdPolicy(100))
    assert not verdict.passed
    assert verdict.message == "Required 100% line coverage. Coverage detected: 99.999"


@pytest.mark.parametrize("minimum", [0, 50, 100])
def test_nothing_instrumented_always_fails(minimum):
    verdict = evaluate(CoverageSummary(), ThresholdPolicy(minimum))
    assert not verdict.passed
    assert verdict.measured is None
    assert verdict.message.endswith("Coverage detected: none")


def test_zero_threshold_passes_zero_coverage():
    assert evaluate(summary(0, 10), ThresholdPolicy(0)).passed


@pytest.mark.parametrize("minimum", [-1, 100.5])
def test_policy_range(minimum):
    with pytest.raises(ConfigError):
        ThresholdPolicy(minimum)
