"""
Threshold gate: the pass/fail decision consumed by CI.

evaluate() is a pure function defined for every summary. When nothing was
instrumented the measured coverage is undefined and the gate fails, even
for a zero threshold.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError
from .report import CoverageSummary, format_number


@dataclass(frozen=True)
class ThresholdPolicy:
    minimum: float = 100.0

    def __post_init__(self):
        if not 0.0 <= self.minimum <= 100.0:
            raise ConfigError(f"required coverage must be within 0..100, got {self.minimum}")


@dataclass(frozen=True)
class Verdict:
    passed: bool
    measured: Optional[float]
    required: float

    @property
    def message(self) -> str:
        if self.passed:
            return (f"Coverage check passed: {format_number(self.measured)}% line coverage "
                    f"(required {format_number(self.required)}%)")
        required = format_number(self.required)
        measured = format_number(self.measured)
        # 99.999 must not read as the required 100
        digits = 2
        while measured == required and digits < 8:
            digits += 2
            measured = format_number(self.measured, digits)
        return f"Required {required}% line coverage. Coverage detected: {measured}"


def evaluate(summary: CoverageSummary, policy: ThresholdPolicy) -> Verdict:
    measured = summary.percentage
    passed = measured is not None and measured >= policy.minimum
    return Verdict(passed=passed, measured=measured, required=policy.minimum)
