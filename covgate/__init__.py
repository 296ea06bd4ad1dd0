"""Coverage gate: collect, merge and enforce instrumented-build coverage."""

from .config import GateConfig
from .discover import BinaryDescriptor, discover_binaries
from .errors import (
    ConfigError,
    CoverageGateError,
    DiscoveryError,
    ExecutionError,
    FragmentCorruptError,
    MergeError,
    ToolchainError,
)
from .gate import ThresholdPolicy, Verdict, evaluate
from .merge import MergeResult, merge_fragments
from .model import CoverageModel, FileCoverage
from .pipeline import PipelineResult, run_pipeline
from .report import CoverageSummary, FileSummary, summarize
from .runner import ProfileFragment, run_binaries

__all__ = [
    "GateConfig",
    "BinaryDescriptor",
    "discover_binaries",
    "ConfigError",
    "CoverageGateError",
    "DiscoveryError",
    "ExecutionError",
    "FragmentCorruptError",
    "MergeError",
    "ToolchainError",
    "ThresholdPolicy",
    "Verdict",
    "evaluate",
    "MergeResult",
    "merge_fragments",
    "CoverageModel",
    "FileCoverage",
    "PipelineResult",
    "run_pipeline",
    "CoverageSummary",
    "FileSummary",
    "summarize",
    "ProfileFragment",
    "run_binaries",
]
