"""
Error taxonomy for the coverage gate pipeline.

Fatal errors abort the run with EXIT_FATAL. A corrupt fragment is
recoverable: the merger logs it and carries on without it. A coverage
shortfall is not an error at all, it is a failing Verdict.
"""

EXIT_OK = 0
EXIT_POLICY = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


class CoverageGateError(Exception):
    """Base class for every error raised by covgate."""


class ConfigError(CoverageGateError):
    """A configuration value is missing or malformed."""


class DiscoveryError(CoverageGateError):
    """The instrumented build output is missing or holds no test binaries."""


class ExecutionError(CoverageGateError):
    """A discovered binary could not be launched or did not finish in time."""

    def __init__(self, binary, reason):
        super().__init__(f"{binary}: {reason}")
        self.binary = binary
        self.reason = reason


class ToolchainError(CoverageGateError):
    """An external profiling tool needed to read fragments is unavailable."""


class MergeError(CoverageGateError):
    """A fragment could not be folded into the coverage model."""


class FragmentCorruptError(MergeError):
    """A fragment exists but cannot be parsed."""

    def __init__(self, path, reason, line_no=None):
        where = f"{path}:{line_no}" if line_no is not None else str(path)
        super().__init__(f"{where}: {reason}")
        self.path = path
        self.reason = reason
        self.line_no = line_no
