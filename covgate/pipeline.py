"""
The coverage gate as a chain of stages.

discover -> run -> merge -> summarize -> evaluate. Each stage takes the
previous stage's value and returns a new one, so a run can stop between
any two stages without leaving shared state half written.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from .config import GateConfig
from .discover import BinaryDescriptor, discover_binaries
from .gate import ThresholdPolicy, Verdict, evaluate
from .llvm import LlvmToolchain
from .merge import MergeResult, collect_fragments, merge_fragments
from .report import CoverageSummary, summarize
from .runner import ProfileFragment, run_binaries

LOGGER = logging.getLogger("covgate")


@dataclass(frozen=True)
class PipelineResult:
    binaries: Tuple[BinaryDescriptor, ...]
    fragments: Tuple[ProfileFragment, ...]
    merge: MergeResult
    summary: CoverageSummary
    verdict: Verdict


def merge_stage(fragments, binaries, config: GateConfig) -> MergeResult:
    toolchain = LlvmToolchain(llvm_cov=config.llvm_cov, llvm_profdata=config.llvm_profdata)
    everything = collect_fragments(config.fragments, fragments, binaries, config.fragment_template)
    return merge_fragments(
        everything,
        ignore=config.ignore,
        source_root=config.source_root,
        ignore_not_existing=config.ignore_not_existing,
        toolchain=toolchain,
    )


def run_pipeline(config: GateConfig) -> PipelineResult:
    """Run every stage. Fatal errors propagate; a low score is a failing Verdict."""
    policy = ThresholdPolicy(minimum=config.required)

    binaries = discover_binaries(config)
    fragments = run_binaries(binaries, config)
    merged = merge_stage(fragments, binaries, config)
    summary = summarize(merged.model, merged.warnings)
    verdict = evaluate(summary, policy)

    LOGGER.info("verdict: %s", "pass" if verdict.passed else "fail")
    return PipelineResult(
        binaries=binaries,
        fragments=fragments,
        merge=merged,
        summary=summary,
        verdict=verdict,
    )
