import os
import stat
from pathlib import Path

import pytest

from covgate.config import GateConfig


def lcov(files):
    """Build LCOV text from {filename: {line_no: hits}}."""
    out = []
    for filename, lines in files.items():
        out.append(f"SF:{filename}")
        for line_no, hits in sorted(lines.items()):
            out.append(f"DA:{line_no},{hits}")
        out.append(f"LF:{len(lines)}")
        out.append(f"LH:{sum(1 for h in lines.values() if h > 0)}")
        out.append("end_of_record")
    return "\n".join(out) + "\n"


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def fake_binary(path: Path, profile: str = "", exit_code: int = 0, sleep: float = 0) -> Path:
    """An executable that writes profile to $LLVM_PROFILE_FILE like an instrumented binary."""
    body = ""
    if sleep:
        body += f"sleep {sleep}\n"
    if profile:
        body += f"cat > \"$LLVM_PROFILE_FILE\" <<'PROFILE'\n{profile}PROFILE\n"
    body += "echo running tests\n"
    body += f"exit {exit_code}\n"
    return write_script(path, body)


def garbage_binary(path: Path) -> Path:
    """Writes a truncated tracefile, as a crash mid-flush would."""
    return write_script(path, 'printf "SF:src/lib.rs\\nDA:1,1\\nDA:2," > "$LLVM_PROFILE_FILE"\n')


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    build = root / "target" / "debug"
    (build / "deps").mkdir(parents=True)
    (build / "examples").mkdir(parents=True)
    return root


@pytest.fixture
def make_config(project):
    def _make(**overrides):
        values = dict(
            build_dir=project / "target" / "debug",
            source_root=project,
            ignore=(),
            ignore_not_existing=False,
            timeout=30,
            jobs=1,
        )
        values.update(overrides)
        return GateConfig(**values)
    return _make


@pytest.fixture
def deps(project):
    return project / "target" / "debug" / "deps"


@pytest.fixture
def examples(project):
    return project / "target" / "debug" / "examples"
