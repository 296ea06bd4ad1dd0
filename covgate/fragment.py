"""
Readers for profile fragments.

A fragment is whatever one binary invocation left behind: an LCOV
tracefile, a covgate JSON export, or a raw LLVM profile that has to be
exported through llvm-cov first. Every reader returns a fresh
CoverageModel or raises FragmentCorruptError.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional

from .errors import FragmentCorruptError
from .llvm import LlvmToolchain, is_profraw
from .model import CoverageModel, FileCoverage

LOGGER = logging.getLogger("covgate")

TAG_RE = re.compile(r"^[A-Z][A-Z_]*:")

# Summary tags carry totals that are recomputed from the data lines.
SUMMARY_TAGS = {"FNF", "FNH", "LF", "LH", "BRF", "BRH"}


def normalize_name(raw: str, source_root: Optional[Path]) -> str:
    if not raw:
        return raw
    if os.path.isabs(raw) or source_root is None:
        return os.path.normpath(raw)
    return os.path.normpath(str(source_root.resolve() / raw))


def _int(value, path, line_no, what):
    try:
        number = int(value)
    except ValueError:
        raise FragmentCorruptError(path, f"bad {what} {value!r}", line_no) from None
    if number < 0:
        raise FragmentCorruptError(path, f"negative {what} {number}", line_no)
    return number


def parse_lcov(text: str, path, source_root: Optional[Path] = None) -> CoverageModel:
    """Parse LCOV tracefile text, summing repeated records for the same file."""
    model = CoverageModel()
    current: Optional[FileCoverage] = None
    fn_lines = {}

    for line_no, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue

        if line == "end_of_record":
            if current is None:
                raise FragmentCorruptError(path, "end_of_record outside a record", line_no)
            current = None
            continue

        if not TAG_RE.match(line):
            raise FragmentCorruptError(path, f"unrecognized line {line[:40]!r}", line_no)

        tag, _, rest = line.partition(":")

        if tag == "SF":
            if current is not None:
                raise FragmentCorruptError(path, "SF before end_of_record", line_no)
            if not rest:
                raise FragmentCorruptError(path, "empty source file name", line_no)
            current = model.file(normalize_name(rest, source_root))
            fn_lines = {}
            continue

        if tag in ("TN", "VER"):
            continue

        if current is None:
            raise FragmentCorruptError(path, f"{tag} outside a record", line_no)

        parts = rest.split(",")
        if tag == "DA":
            if len(parts) < 2:
                raise FragmentCorruptError(path, "short DA line", line_no)
            current.add_line(
                _int(parts[0], path, line_no, "line number"),
                _int(parts[1], path, line_no, "hit count"),
            )
        elif tag == "BRDA":
            if len(parts) < 4:
                raise FragmentCorruptError(path, "short BRDA line", line_no)
            taken = 0 if parts[3] == "-" else _int(parts[3], path, line_no, "branch count")
            key = (
                _int(parts[0], path, line_no, "line number"),
                _int(parts[1], path, line_no, "block id"),
                _int(parts[2], path, line_no, "branch id"),
            )
            current.add_branch(key, taken)
        elif tag == "FN":
            # FN:<line>,<name> or FN:<line>,<end line>,<name>
            if len(parts) < 2:
                raise FragmentCorruptError(path, "short FN line", line_no)
            start = _int(parts[0], path, line_no, "line number")
            if len(parts) >= 3 and parts[1].isdigit():
                name = ",".join(parts[2:])
            else:
                name = ",".join(parts[1:])
            current.add_function(name, start, 0)
        elif tag == "FNDA":
            if len(parts) < 2:
                raise FragmentCorruptError(path, "short FNDA line", line_no)
            current.add_function(",".join(parts[1:]), 0, _int(parts[0], path, line_no, "hit count"))
        elif tag == "FNL":
            # FNL:<index>,<line>[,<end line>]
            if len(parts) < 2:
                raise FragmentCorruptError(path, "short FNL line", line_no)
            fn_lines[parts[0]] = _int(parts[1], path, line_no, "line number")
        elif tag == "FNA":
            # FNA:<index>,<hits>,<name>
            if len(parts) < 3:
                raise FragmentCorruptError(path, "short FNA line", line_no)
            current.add_function(
                ",".join(parts[2:]),
                fn_lines.get(parts[0], 0),
                _int(parts[1], path, line_no, "hit count"),
            )
        elif tag in SUMMARY_TAGS:
            _int(rest, path, line_no, tag)
        else:
            LOGGER.debug("%s:%d: ignoring %s record", path, line_no, tag)

    if current is not None:
        raise FragmentCorruptError(path, f"truncated record for {current.filename}")
    return model


def parse_json(text: str, path, source_root: Optional[Path] = None) -> CoverageModel:
    """Parse a covgate JSON export back into a model."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FragmentCorruptError(path, f"invalid JSON: {e.msg}", e.lineno) from None

    files = data.get("files") if isinstance(data, dict) else None
    if not isinstance(files, dict):
        raise FragmentCorruptError(path, "JSON export has no 'files' object")

    model = CoverageModel()
    try:
        for filename, entry in files.items():
            fc = model.file(normalize_name(filename, source_root))
            for line_no, hits in entry.get("lines", {}).items():
                fc.add_line(_int(line_no, path, None, "line number"), _int(hits, path, None, "hit count"))
            for line_no, block, branch, taken in entry.get("branches", []):
                fc.add_branch((int(line_no), int(block), int(branch)), _int(taken, path, None, "branch count"))
            for name, (line_no, hits) in entry.get("functions", {}).items():
                fc.add_function(name, int(line_no), _int(hits, path, None, "hit count"))
    except (AttributeError, TypeError, ValueError) as e:
        raise FragmentCorruptError(path, f"malformed JSON export: {e}") from None
    return model


def read_fragment(
    path: Path,
    binary: Optional[Path] = None,
    toolchain: Optional[LlvmToolchain] = None,
    source_root: Optional[Path] = None,
) -> Optional[CoverageModel]:
    """Read one fragment file.

    Returns None for an empty fragment (the binary never flushed a
    profile). Raises FragmentCorruptError for data that cannot be parsed.
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise FragmentCorruptError(path, f"unreadable: {e.strerror or e}") from None

    if not data.strip():
        return None

    if is_profraw(data):
        if binary is None:
            raise FragmentCorruptError(path, "raw profile without an owning binary")
        text = (toolchain or LlvmToolchain()).export_lcov(path, binary)
        return parse_lcov(text, path, source_root)

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FragmentCorruptError(path, f"not a text or raw profile (byte {e.start})") from None

    if text.lstrip().startswith("{"):
        return parse_json(text, path, source_root)
    return parse_lcov(text, path, source_root)
