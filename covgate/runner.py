"""
Run every discovered binary once, each with its own profile fragment path.

The fragment path is reserved (created empty) before launch and handed to
the binary through the profile environment variable, so parallel runs
never write to the same file. A binary that exits non-zero still counts:
failing tests produce valid coverage. A binary that cannot be started or
that outlives its timeout aborts the run.
"""

import logging
import os
import signal
import subprocess
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Pattern, Sequence, Tuple

from .config import GateConfig
from .discover import BinaryDescriptor
from .errors import ExecutionError

LOGGER = logging.getLogger("covgate")

TAIL_LINES = 20


@dataclass(frozen=True)
class ProfileFragment:
    # binary is None for a leftover fragment whose owner is unknown
    binary: Optional[BinaryDescriptor]
    path: Path
    token: str
    exit_code: Optional[int] = None
    death_signal: Optional[int] = None
    wall_time: float = 0.0

    @property
    def label(self) -> str:
        return self.binary.name if self.binary is not None else self.path.name

    @property
    def failed(self) -> bool:
        return self.exit_code not in (0, None)


def fragment_path(config: GateConfig, binary: BinaryDescriptor, token: str) -> Path:
    name = config.fragment_template.format(name=binary.name, kind=binary.kind, token=token)
    return (config.fragments / name).resolve()


def clean_fragments(directory: Path, pattern: Optional[Pattern] = None) -> int:
    """Remove leftover fragments from an earlier run. Returns the count.

    Only names matching pattern (the fragment template) are touched.
    """
    removed = 0
    if not directory.is_dir():
        return removed
    for p in directory.iterdir():
        if p.is_file() and (pattern is None or pattern.fullmatch(p.name)):
            p.unlink()
            removed += 1
    if removed:
        LOGGER.info("removed %d stale fragments from %s", removed, directory)
    return removed


def invoke(command: Sequence[str], env: Dict[str, str], cwd: str, timeout: float):
    """Run one command to completion in a worker.

    Returns (exit_code, death_signal, wall_time, output_tail, error). Only
    plain values cross the process boundary; the caller turns error into
    an ExecutionError.
    """
    wall_start = time.monotonic()
    try:
        proc = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return None, None, time.monotonic() - wall_start, "", f"timed out after {timeout:g}s"
    except OSError as e:
        return None, None, time.monotonic() - wall_start, "", f"cannot launch: {e.strerror or e}"

    wall_time = time.monotonic() - wall_start
    exit_code = proc.returncode
    death_signal = None
    if exit_code < 0:
        death_signal = -exit_code
        exit_code = 128 + death_signal
    combined = (proc.stdout or "") + (proc.stderr or "")
    tail = "\n".join(combined.splitlines()[-TAIL_LINES:])
    return exit_code, death_signal, wall_time, tail, None


def _signal_name(signum):
    try:
        return signal.Signals(signum).name
    except (ValueError, AttributeError):
        return str(signum)


def _finish(binary, path, token, outcome) -> ProfileFragment:
    exit_code, death_signal, wall_time, tail, error = outcome
    if error is not None:
        raise ExecutionError(str(binary.path), error)

    # The binary may have removed or never recreated its output.
    if not path.exists():
        path.touch()

    if death_signal:
        LOGGER.warning("%s killed by %s; keeping whatever profile it flushed",
                       binary.name, _signal_name(death_signal))
    elif exit_code != 0:
        LOGGER.warning("%s exited with code %d; coverage is still collected", binary.name, exit_code)
    if tail:
        LOGGER.debug("%s output tail:\n%s", binary.name, tail)

    return ProfileFragment(
        binary=binary,
        path=path,
        token=token,
        exit_code=exit_code,
        death_signal=death_signal,
        wall_time=wall_time,
    )


def run_binaries(binaries: Iterable[BinaryDescriptor], config: GateConfig) -> Tuple[ProfileFragment, ...]:
    """Run each binary and return one fragment per invocation, in input order."""
    binaries = list(binaries)
    directory = config.fragments
    if config.clean:
        clean_fragments(directory, config.fragment_regex)
    directory.mkdir(parents=True, exist_ok=True)

    base_env = {**os.environ, **config.extra_env}
    cwd = str(config.source_root.resolve())
    pid = os.getpid()

    jobs = []
    for seq, binary in enumerate(binaries):
        token = f"{pid}-{seq}"
        path = fragment_path(config, binary, token)
        path.touch()
        env = {**base_env, config.profile_env: str(path)}
        jobs.append((binary, path, token, env))

    workers = min(config.workers, len(jobs)) or 1
    LOGGER.info("running %d binaries with %d parallel workers", len(jobs), workers)

    results: Dict[int, ProfileFragment] = {}
    if workers == 1:
        for index, (binary, path, token, env) in enumerate(jobs):
            outcome = invoke(binary.command, env, cwd, config.timeout)
            results[index] = _finish(binary, path, token, outcome)
    else:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(invoke, binary.command, env, cwd, config.timeout): index
                for index, (binary, path, token, env) in enumerate(jobs)
            }
            try:
                for future in as_completed(futures):
                    index = futures[future]
                    binary, path, token, _ = jobs[index]
                    results[index] = _finish(binary, path, token, future.result())
            except ExecutionError:
                for future in futures:
                    future.cancel()
                raise

    fragments = tuple(results[i] for i in range(len(jobs)))
    for frag in fragments:
        LOGGER.debug("%s -> %s (%.1fs)", frag.binary.name, frag.path, frag.wall_time)
    return fragments
