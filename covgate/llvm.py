"""Thin wrapper around llvm-profdata and llvm-cov for raw profile fragments."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import FragmentCorruptError, ToolchainError

LOGGER = logging.getLogger("covgate")

# First eight bytes of an LLVM raw profile (little and big endian).
PROFRAW_MAGIC = (
    b"\x81\x72\x66\x6f\x72\x70\x6c\xff",
    b"\xff\x6c\x70\x72\x6f\x66\x72\x81",
)

TOOL_TIMEOUT = 120


def find_tool(name: str) -> Optional[str]:
    """Find an LLVM tool executable on the system."""
    candidates = [
        name,
        f"/opt/homebrew/opt/llvm/bin/{name}",
        f"/usr/local/opt/llvm/bin/{name}",
        f"/usr/lib/llvm/bin/{name}",
    ]

    for candidate in candidates:
        try:
            result = subprocess.run(
                [candidate, "--version"],
                capture_output=True,
                text=True,
                timeout=2
            )
            if result.returncode == 0:
                return candidate
        except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
            continue

    try:
        result = subprocess.run(
            ["xcrun", "--find", name],
            capture_output=True,
            text=True,
            timeout=2
        )
        if result.returncode == 0:
            path = result.stdout.strip()
            if path:
                return path
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    return None


def is_profraw(head: bytes) -> bool:
    return head[:8] in PROFRAW_MAGIC


@dataclass
class LlvmToolchain:
    llvm_cov: Optional[str] = None
    llvm_profdata: Optional[str] = None

    def resolve(self) -> "LlvmToolchain":
        """Fill in missing tool paths, raising ToolchainError if one is absent."""
        llvm_cov = self.llvm_cov or find_tool("llvm-cov")
        llvm_profdata = self.llvm_profdata or find_tool("llvm-profdata")
        missing = [n for n, p in (("llvm-cov", llvm_cov), ("llvm-profdata", llvm_profdata)) if not p]
        if missing:
            raise ToolchainError(
                f"{', '.join(missing)} not found; set LLVM_COV / LLVM_PROFDATA "
                "to read raw profile fragments"
            )
        return LlvmToolchain(llvm_cov=llvm_cov, llvm_profdata=llvm_profdata)

    def export_lcov(self, profraw: Path, binary: Path) -> str:
        """Index profraw and export the binary's coverage as LCOV text."""
        tools = self.resolve()
        profdata = profraw.with_suffix(".profdata")
        self._run(
            profraw,
            [tools.llvm_profdata, "merge", "-sparse", str(profraw), "-o", str(profdata)],
        )
        try:
            return self._run(
                profraw,
                [tools.llvm_cov, "export", "-format=lcov",
                 f"-instr-profile={profdata}", str(binary)],
            )
        finally:
            profdata.unlink(missing_ok=True)

    @staticmethod
    def _run(profraw, cmd):
        LOGGER.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=TOOL_TIMEOUT)
        except FileNotFoundError:
            raise ToolchainError(f"{cmd[0]} not found") from None
        except subprocess.TimeoutExpired:
            raise FragmentCorruptError(profraw, f"{Path(cmd[0]).name} timed out") from None
        if result.returncode != 0:
            reason = result.stderr.strip().splitlines()[-1:] or [f"exit code {result.returncode}"]
            raise FragmentCorruptError(profraw, f"{Path(cmd[0]).name}: {reason[0]}")
        return result.stdout
