"""
Merged coverage data model.

A CoverageModel maps source file names to FileCoverage records. Every
region (line, branch, function) is keyed within its file and carries a
cumulative hit count. Merging sums hit counts per key and keeps the union
of keys, so merge is associative and commutative and a region seen by only
one binary is never lost.
"""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Tuple

BranchKey = Tuple[int, int, int]  # (line_no, block_id, branch_id)


@dataclass
class FileCoverage:
    filename: str
    lines: Dict[int, int] = field(default_factory=dict)
    branches: Dict[BranchKey, int] = field(default_factory=dict)
    functions: Dict[str, Tuple[int, int]] = field(default_factory=dict)  # name -> (line_no, hits)

    def add_line(self, line_no: int, hits: int):
        self.lines[line_no] = self.lines.get(line_no, 0) + hits

    def add_branch(self, key: BranchKey, taken: int):
        self.branches[key] = self.branches.get(key, 0) + taken

    def add_function(self, name: str, line_no: int, hits: int):
        if name in self.functions:
            first_line, total = self.functions[name]
            if first_line and line_no:
                first_line = min(first_line, line_no)
            self.functions[name] = (first_line or line_no, total + hits)
        else:
            self.functions[name] = (line_no, hits)

    def absorb(self, other: "FileCoverage"):
        """Add other's hit counts into this record in place."""
        for line_no, hits in other.lines.items():
            self.add_line(line_no, hits)
        for key, taken in other.branches.items():
            self.add_branch(key, taken)
        for name, (line_no, hits) in other.functions.items():
            self.add_function(name, line_no, hits)

    def copy(self) -> "FileCoverage":
        return FileCoverage(
            filename=self.filename,
            lines=dict(self.lines),
            branches=dict(self.branches),
            functions=dict(self.functions),
        )

    @property
    def lines_found(self) -> int:
        return len(self.lines)

    @property
    def lines_hit(self) -> int:
        return sum(1 for hits in self.lines.values() if hits > 0)

    @property
    def branches_found(self) -> int:
        return len(self.branches)

    @property
    def branches_hit(self) -> int:
        return sum(1 for taken in self.branches.values() if taken > 0)

    @property
    def functions_found(self) -> int:
        return len(self.functions)

    @property
    def functions_hit(self) -> int:
        return sum(1 for _, hits in self.functions.values() if hits > 0)


@dataclass
class CoverageModel:
    files: Dict[str, FileCoverage] = field(default_factory=dict)

    def file(self, filename: str) -> FileCoverage:
        """Return the record for filename, creating an empty one."""
        fc = self.files.get(filename)
        if fc is None:
            fc = self.files[filename] = FileCoverage(filename=filename)
        return fc

    def absorb(self, other: "CoverageModel"):
        for filename, fc in other.files.items():
            self.file(filename).absorb(fc)

    def merge(self, other: "CoverageModel") -> "CoverageModel":
        """Return a new model holding the sum of both; neither input changes."""
        merged = self.copy()
        merged.absorb(other)
        return merged

    def copy(self) -> "CoverageModel":
        return CoverageModel(files={name: fc.copy() for name, fc in self.files.items()})

    def without(self, patterns: Iterable[str], source_root: Path = None) -> "CoverageModel":
        """Return a model without the files matching any of the glob patterns."""
        patterns = list(patterns)
        if not patterns:
            return self.copy()
        kept = {}
        for name, fc in self.files.items():
            if not is_ignored(name, patterns, source_root):
                kept[name] = fc.copy()
        return CoverageModel(files=kept)

    def existing_only(self, source_root: Path) -> "CoverageModel":
        """Return a model holding only files that exist on disk."""
        return CoverageModel(files={
            name: fc.copy() for name, fc in self.files.items()
            if resolve_source(name, source_root).exists()
        })

    def __eq__(self, other):
        if not isinstance(other, CoverageModel):
            return NotImplemented
        return self.files == other.files


def resolve_source(filename: str, source_root: Path) -> Path:
    path = Path(filename)
    if path.is_absolute() or source_root is None:
        return path
    return source_root / path


def relative_name(filename: str, source_root: Path) -> str:
    """filename relative to source_root when it lies below it."""
    if source_root is None:
        return filename
    for root in (str(source_root.resolve()), os.path.abspath(source_root)):
        if filename.startswith(root + os.sep):
            return filename[len(root) + 1:]
    return filename


def is_ignored(filename: str, patterns, source_root: Path = None) -> bool:
    """Match files under source_root by their relative name only, so the
    checkout's own location never triggers a pattern."""
    name = relative_name(filename, source_root)
    return any(fnmatch.fnmatchcase(name, p) for p in patterns)
